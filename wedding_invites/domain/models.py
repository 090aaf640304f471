"""
Domain Models
=============

Plain records passed between the spreadsheet, the dispatcher and the
route layer. None of them are persisted by this package.
"""

from dataclasses import asdict, dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class Guest:
    """A guest row as read from the guest sheet."""
    name: str
    phone: str
    addons: str = ""
    sender: str = ""
    send_confirmation: bool = False
    row_number: Optional[int] = None

    @property
    def has_addons(self) -> bool:
        return bool(self.addons and self.addons.strip())


@dataclass
class DispatchResult:
    """Outcome of sending one invitation."""
    name: str
    phone: str
    success: bool
    to: str = ""
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BatchSummary:
    """Aggregated outcome of a send batch."""
    total: int = 0
    successful: int = 0
    failed: int = 0
    details: List[DispatchResult] = field(default_factory=list)

    def record(self, result: DispatchResult) -> None:
        if result.success:
            self.successful += 1
        else:
            self.failed += 1
        self.details.append(result)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SessionStatus:
    """What callers may know about a sender's connection without blocking."""
    ready: bool = False
    pairing_code: Optional[str] = None
