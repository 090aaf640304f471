# Domain Layer
# ============
# Pure types and rules with no external dependencies.

from .errors import (
    AuthFailure,
    ConfigurationError,
    DataSourceError,
    InviteError,
    ReadinessTimeout,
    TransientTransportError,
    TransportError,
    TransportErrorKind,
)
from .models import BatchSummary, DispatchResult, Guest, SessionStatus
from .phone import DEFAULT_COUNTRY_CODE, normalize_phone

__all__ = [
    "AuthFailure",
    "BatchSummary",
    "ConfigurationError",
    "DEFAULT_COUNTRY_CODE",
    "DataSourceError",
    "DispatchResult",
    "Guest",
    "InviteError",
    "ReadinessTimeout",
    "SessionStatus",
    "TransientTransportError",
    "TransportError",
    "TransportErrorKind",
    "normalize_phone",
]
