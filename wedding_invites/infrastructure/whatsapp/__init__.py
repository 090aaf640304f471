from .messaging_provider import Connection, ConnectionEvent, ConnectionFactory, EventHandler
from .whatsapp_client import WhatsAppClient

__all__ = [
    "Connection",
    "ConnectionEvent",
    "ConnectionFactory",
    "EventHandler",
    "WhatsAppClient",
]
