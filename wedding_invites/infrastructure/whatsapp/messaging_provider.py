"""
Messaging Provider - Abstraction Layer for WhatsApp Connections
================================================================

One Connection drives one linked WhatsApp device. The session manager never
touches Selenium directly: it constructs connections through a factory and
learns about their progress through a single event handler.

USAGE:
    connection = WhatsAppClient(sender_id, profile_dir, on_event)
    await connection.start()          # launches the browser, returns quickly
    ...                               # on_event(PAIRING_CODE, "2@..."), on_event(READY, wid)
    message_id = await connection.send_message("972501234567", "Hello!")
    await connection.destroy()
"""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional


class ConnectionEvent(Enum):
    """Progress notifications emitted by a connection."""
    STARTED = "started"
    START_FAILED = "start_failed"
    PAIRING_CODE = "pairing_code"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILED = "auth_failed"
    DISCONNECTED = "disconnected"


# on_event(event, payload) - payload is the QR string, the identity, or a reason
EventHandler = Callable[[ConnectionEvent, Any], None]


class Connection(ABC):
    """
    Abstract base class for a single linked-device connection.
    Implement this interface to add new messaging backends.
    """

    @abstractmethod
    async def start(self) -> None:
        """Begin initialization. Progress is reported through the event handler."""
        ...

    @property
    @abstractmethod
    def identity(self) -> Optional[str]:
        """The logged-in account id once WhatsApp has loaded, else None."""
        ...

    @abstractmethod
    async def send_message(self, phone: str, text: str) -> str:
        """Send a text message. Returns the message id or raises TransportError."""
        ...

    @abstractmethod
    async def destroy(self) -> None:
        """Close the connection. Raises TransportError(CLOSED) if it was already gone."""
        ...


# factory(sender_id, profile_dir, on_event) -> Connection
ConnectionFactory = Callable[[str, Path, EventHandler], Connection]
