"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclasses for safety and clarity
- Single source of truth for all configurable values

Required identifiers (the guest and response sheets) are only checked when
an operation needs them, via Settings.require_sheet().
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from ...domain.errors import ConfigurationError
from ...domain.phone import DEFAULT_COUNTRY_CODE

# Development convenience: pick up a local .env
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class WhatsAppSettings:
    """WhatsApp Web connection and pacing settings."""

    # One Chrome profile per sender is kept under this directory
    auth_root: Path = field(
        default_factory=lambda: Path(os.getenv("WHATSAPP_AUTH_DIR", ".whatsapp_auth"))
    )
    headless: bool = field(default_factory=lambda: _env_bool("WHATSAPP_HEADLESS", True))

    # How often the page is probed for QR / login / identity changes (seconds)
    poll_interval: float = 0.5
    send_timeout: float = 45.0
    # How long /init-whatsapp waits for a QR code (or a saved login) to show up
    pairing_timeout: float = field(default_factory=lambda: _env_float("PAIRING_TIMEOUT", 120.0))

    # SAFETY: pacing between invitations to avoid bulk-send detection
    send_attempts: int = 3
    retry_backoff: float = field(default_factory=lambda: _env_float("SEND_RETRY_BACKOFF", 5.0))
    message_delay: float = field(default_factory=lambda: _env_float("MESSAGE_DELAY", 3.0))

    # Idle reaper periods (seconds)
    pairing_sweep_interval: float = 5 * 60
    stuck_sweep_interval: float = 15 * 60
    stale_after: float = 120.0


@dataclass(frozen=True)
class SheetSettings:
    """Spreadsheet locations. A sheet id is a path to an .xlsx/.xls/.csv workbook."""

    guest_sheet_id: str = field(default_factory=lambda: os.getenv("GUEST_SHEET_ID", ""))
    response_sheet_id: str = field(default_factory=lambda: os.getenv("RESPONSE_SHEET_ID", ""))
    guest_worksheet: str = field(default_factory=lambda: os.getenv("GUEST_WORKSHEET", "חתונה"))


@dataclass(frozen=True)
class InvitationSettings:
    """Invitation content settings."""

    rsvp_base_url: str = field(
        default_factory=lambda: os.getenv("RSVP_BASE_URL", "http://localhost:8080")
    )
    couple_names: str = field(default_factory=lambda: os.getenv("COUPLE_NAMES", "דניאל ויובל"))
    country_code: str = field(
        default_factory=lambda: os.getenv("COUNTRY_CODE", DEFAULT_COUNTRY_CODE)
    )


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from wedding_invites.infrastructure.config import get_settings
        settings = get_settings()
        print(settings.whatsapp.auth_root)
    """

    whatsapp: WhatsAppSettings = field(default_factory=WhatsAppSettings)
    sheets: SheetSettings = field(default_factory=SheetSettings)
    invitation: InvitationSettings = field(default_factory=InvitationSettings)

    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8080")))
    # Diagnostic mode: tracebacks are included in error responses
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG", False))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    def validate(self) -> list[str]:
        """
        Validate settings and return list of warnings.
        Returns empty list if all settings are valid.
        """
        issues = []

        if not self.sheets.guest_sheet_id:
            issues.append("WARNING: GUEST_SHEET_ID not set. Sender and guest lookups will fail.")
        elif not Path(self.sheets.guest_sheet_id).exists():
            issues.append(f"WARNING: Guest sheet not found: {self.sheets.guest_sheet_id}")

        if not self.sheets.response_sheet_id:
            issues.append("WARNING: RESPONSE_SHEET_ID not set. RSVP submissions will fail.")

        if "localhost" in self.invitation.rsvp_base_url:
            issues.append(
                "WARNING: RSVP_BASE_URL points at localhost. "
                "Guests will not be able to open their RSVP links."
            )

        if not self.whatsapp.headless and not os.getenv("DISPLAY"):
            issues.append("WARNING: WHATSAPP_HEADLESS is off but no DISPLAY is available.")

        return issues

    def require_sheet(self, kind: str) -> str:
        """Return the configured sheet id for 'guest' or 'response', or fail fast."""
        sheet_id: Optional[str] = {
            "guest": self.sheets.guest_sheet_id,
            "response": self.sheets.response_sheet_id,
        }.get(kind)
        if not sheet_id:
            raise ConfigurationError(f"{kind.capitalize()} sheet not configured")
        return sheet_id


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Cached to ensure consistent settings throughout application lifecycle.
    """
    return Settings()
