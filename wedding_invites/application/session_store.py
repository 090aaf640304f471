"""
Session Store - In-Memory Sender Sessions
=========================================

Holds one Session per sender id. The store is a plain object injected into
the session manager and the idle reaper, so tests and multiple app instances
can each have their own.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

from ..infrastructure.whatsapp.messaging_provider import Connection
from .session_state import SessionState

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Session:
    """State bundle for one sender's connection."""
    sender_id: str
    connection: Connection
    state: SessionState = SessionState.EMPTY
    pairing_code: Optional[str] = None
    pending_waiters: Set[asyncio.Future] = field(default_factory=set)
    error: Optional[BaseException] = None
    updated_at: float = field(default_factory=time.monotonic)
    start_task: Optional[asyncio.Task] = None
    close_task: Optional[asyncio.Task] = None
    _changed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def ready(self) -> bool:
        """Cached readiness. The connection identity is authoritative."""
        return self.state is SessionState.READY

    @property
    def idle_for(self) -> float:
        return time.monotonic() - self.updated_at

    def touch(self) -> None:
        """Record progress and wake everyone waiting for a change."""
        self.updated_at = time.monotonic()
        self._changed.set()
        self._changed = asyncio.Event()

    async def wait_for_change(self, timeout: Optional[float]) -> bool:
        """Sleep until the next change or the timeout. Returns True on change."""
        changed = self._changed
        try:
            await asyncio.wait_for(changed.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False


class SessionStore:
    """
    In-memory mapping sender id -> Session.

    Usage:
        store = SessionStore()
        store.put(session)
        store.get("Yuval")
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def get(self, sender_id: str) -> Optional[Session]:
        return self._sessions.get(sender_id)

    def put(self, session: Session) -> None:
        existing = self._sessions.get(session.sender_id)
        if existing is not None and existing is not session:
            raise ValueError(f"Session for {session.sender_id} already exists")
        self._sessions[session.sender_id] = session

    def remove(self, sender_id: str, expected: Optional[Session] = None) -> Optional[Session]:
        """
        Remove a sender's session. When `expected` is given, only that exact
        session is removed, so a replacement created meanwhile survives.
        """
        current = self._sessions.get(sender_id)
        if current is None or (expected is not None and current is not expected):
            return None
        del self._sessions[sender_id]
        logger.info(f"Session removed for {sender_id}")
        return current

    def sessions(self) -> List[Session]:
        """Snapshot of all sessions, safe to iterate while the store changes."""
        return list(self._sessions.values())

    def __iter__(self) -> Iterator[Session]:
        return iter(self.sessions())

    def __contains__(self, sender_id: str) -> bool:
        return sender_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
