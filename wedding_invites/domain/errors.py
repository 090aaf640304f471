"""
Error Taxonomy
==============

Every error raised by this package derives from InviteError so the route
layer and the CLI can catch at a single boundary.

Transport failures carry a typed kind instead of a free-text message, so
retry decisions never depend on matching error strings.
"""

from enum import Enum
from typing import Optional


class InviteError(Exception):
    """Base exception for invitation sender errors."""
    pass


class ConfigurationError(InviteError):
    """Raised when a required external identifier is missing."""
    pass


class DataSourceError(InviteError):
    """Raised when the spreadsheet gateway cannot read or write."""
    pass


class AuthFailure(InviteError):
    """WhatsApp rejected the linked device. Terminal for this attempt."""
    pass


class ReadinessTimeout(InviteError, TimeoutError):
    """A session did not become ready within the caller's budget."""
    pass


class TransportErrorKind(Enum):
    """What went wrong inside the messaging transport."""
    PROTOCOL = "protocol"              # page did not respond as expected
    EVALUATION = "evaluation"          # script evaluation inside the page failed
    NOT_REGISTERED = "not_registered"  # WhatsApp reported the number as invalid
    CLOSED = "closed"                  # browser or session already gone
    FATAL = "fatal"                    # anything retrying will not fix


TRANSIENT_KINDS = frozenset({
    TransportErrorKind.PROTOCOL,
    TransportErrorKind.EVALUATION,
    TransportErrorKind.NOT_REGISTERED,
})


class TransportError(InviteError):
    """Raised by a messaging connection. Always carries a kind."""

    def __init__(self, kind: TransportErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS

    @classmethod
    def of(cls, kind: TransportErrorKind, message: str = "",
           cause: Optional[BaseException] = None) -> "TransportError":
        """Build the right subclass for a kind."""
        error_cls = TransientTransportError if kind in TRANSIENT_KINDS else TransportError
        error = error_cls(kind, message)
        if cause is not None:
            error.__cause__ = cause
        return error


class TransientTransportError(TransportError):
    """A transport failure expected to clear up on retry."""
    pass
