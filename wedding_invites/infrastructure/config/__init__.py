from .settings import (
    InvitationSettings,
    Settings,
    SheetSettings,
    WhatsAppSettings,
    get_settings,
)

__all__ = [
    "InvitationSettings",
    "Settings",
    "SheetSettings",
    "WhatsAppSettings",
    "get_settings",
]
