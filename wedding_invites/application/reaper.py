"""
Idle Reaper - Periodic Session Cleanup
======================================

Each Chrome instance holds hundreds of MB, so sessions that can no longer make
progress are closed. Two independent sweeps run on their own timers:

- clear_stale_pairing_codes(): once a device is linked its QR code is garbage
- reap_stuck_sessions():       connections with no QR code, no login and no
                               progress for `stale_after` seconds are closed

A session that is showing a QR code is never reaped: someone may be scanning it.
"""

import asyncio
import inspect
import logging
from typing import Callable, List

from .lifecycle import SessionManager
from .session_state import TERMINAL_STATES
from .session_store import Session, SessionStore

logger = logging.getLogger(__name__)


class IdleReaper:
    """
    Usage:
        reaper = IdleReaper(store, manager, pairing_interval=300, stuck_interval=900)
        reaper.start()
        ...
        await reaper.stop()
    """

    def __init__(
        self,
        store: SessionStore,
        manager: SessionManager,
        pairing_interval: float = 5 * 60,
        stuck_interval: float = 15 * 60,
        stale_after: float = 120.0,
    ):
        self._store = store
        self._manager = manager
        self._pairing_interval = pairing_interval
        self._stuck_interval = stuck_interval
        self._stale_after = stale_after
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(
                self._every(self._pairing_interval, self.clear_stale_pairing_codes, "QR code")
            ),
            asyncio.create_task(
                self._every(self._stuck_interval, self.reap_stuck_sessions, "Stuck session")
            ),
        ]
        logger.info(
            f"Idle reaper started (QR codes every {self._pairing_interval:.0f}s, "
            f"stuck sessions every {self._stuck_interval:.0f}s)"
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _every(self, interval: float, sweep: Callable, name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = sweep()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"{name} sweep failed")

    # ── Sweeps ────────────────────────────────────────────────────

    def clear_stale_pairing_codes(self) -> int:
        """Clear QR codes and waiters from sessions that are already linked."""
        cleared = 0
        for session in self._store:
            if session.state in TERMINAL_STATES:
                continue
            stale = session.pairing_code is not None or bool(session.pending_waiters)
            if not self._manager.sync_readiness(session):
                continue
            if stale:
                self._manager.clear_pairing(session)
                cleared += 1

        if cleared:
            logger.info(f"[Memory] Cleared {cleared} stale QR code(s)")
        return cleared

    async def reap_stuck_sessions(self) -> int:
        """Close sessions that are dead or stuck before showing a QR code."""
        victims = [session for session in self._store if self._is_stuck(session)]
        for session in victims:
            logger.info(
                f"[Memory] Closing inactive session for {session.sender_id} "
                f"(state {session.state.value}, idle {session.idle_for:.0f}s)"
            )
            await self._manager.retire(session, "idle reaper")
        return len(victims)

    def _is_stuck(self, session: Session) -> bool:
        if session.state in TERMINAL_STATES:
            return True
        if session.pairing_code is not None:
            return False
        if self._manager.sync_readiness(session):
            return False
        return session.idle_for >= self._stale_after
