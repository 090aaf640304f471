"""
Session Manager - WhatsApp Connection Lifecycle
================================================

Owns exactly one live connection per sender id:

- open():                starts a connection, or joins the one already starting
- wait_until_ready():    suspends until the linked device is usable
- request_pairing_code(): suspends until a QR code is issued (or no QR is needed)
- get_status():          non-blocking view for polling clients
- clear_session():       destroys the connection and its saved login

Connections report progress through a single event handler; every event is
run through the session state machine and its effects are applied here.

READINESS:
    The connection's identity is the source of truth. Session.ready is only
    a cache, refreshed from the identity whenever someone looks.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

from ..domain.errors import (
    AuthFailure,
    InviteError,
    ReadinessTimeout,
    TransportError,
    TransportErrorKind,
)
from ..domain.models import SessionStatus
from ..infrastructure.whatsapp.messaging_provider import (
    Connection,
    ConnectionEvent,
    ConnectionFactory,
)
from .session_state import LIVE_STATES, TERMINAL_STATES, Effect, transition
from .session_store import Session, SessionStore

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Per-sender connection lifecycle manager.

    Usage:
        manager = SessionManager(SessionStore(), WhatsAppClient, Path(".whatsapp_auth"))
        status = await manager.request_pairing_code("Yuval")    # show status.pairing_code as QR
        client = await manager.wait_until_ready("Yuval", 60_000)
        await manager.send(client, "972501234567", "Hello!")
    """

    def __init__(
        self,
        store: SessionStore,
        connection_factory: ConnectionFactory,
        auth_root: Path,
        poll_interval: float = 0.5,
    ):
        self._store = store
        self._connection_factory = connection_factory
        self._auth_root = Path(auth_root)
        self._poll_interval = poll_interval

    @property
    def store(self) -> SessionStore:
        return self._store

    def profile_dir(self, sender_id: str) -> Path:
        """Filesystem-safe credential directory for a sender."""
        return self._auth_root / f"session-{quote(sender_id, safe='')}"

    # ── Opening ───────────────────────────────────────────────────

    async def open(self, sender_id: str) -> Connection:
        """Return the sender's connection, starting one if none is alive."""
        session = await self._open_session(sender_id)
        return session.connection

    async def _open_session(self, sender_id: str) -> Session:
        while True:
            session = self._store.get(sender_id)
            if session is None:
                session = self._spawn(sender_id)
                break
            if session.state in TERMINAL_STATES:
                await self.retire(session, "replaced by a new connection")
                continue
            break

        # Every caller shares the one start; failures reach all of them
        await asyncio.shield(session.start_task)
        return session

    def _spawn(self, sender_id: str) -> Session:
        """Create, register and start a session. Never suspends."""
        session: Optional[Session] = None

        def on_event(event: ConnectionEvent, payload: Any) -> None:
            if session is not None:
                self._handle_event(session, event, payload)

        profile_dir = self.profile_dir(sender_id)
        if profile_dir.exists():
            logger.info(f"Found saved login for {sender_id}; a QR code may not be needed")

        connection = self._connection_factory(sender_id, profile_dir, on_event)
        session = Session(sender_id=sender_id, connection=connection)
        self._store.put(session)
        self._handle_event(session, ConnectionEvent.STARTED, None)
        session.start_task = asyncio.create_task(self._start(session))
        # Waiters may all give up before the start fails
        session.start_task.add_done_callback(_consume_start_error)
        logger.info(f"Starting WhatsApp connection for {sender_id}")
        return session

    async def _start(self, session: Session) -> None:
        try:
            await session.connection.start()
        except Exception as e:
            logger.error(f"Failed to start WhatsApp for {session.sender_id}: {e}")
            if isinstance(e, InviteError):
                error = e
            else:
                error = TransportError.of(
                    TransportErrorKind.FATAL,
                    f"Failed to start WhatsApp for {session.sender_id}: {str(e) or type(e).__name__}",
                    e,
                )
            session.error = error
            self._handle_event(session, ConnectionEvent.START_FAILED, str(error))
            raise error

    # ── Waiting ───────────────────────────────────────────────────

    async def wait_until_ready(self, sender_id: str, max_wait_ms: Optional[float] = None) -> Connection:
        """
        Suspend until the sender's connection is ready to send.

        max_wait_ms=None waits forever. Raises ReadinessTimeout (a TimeoutError)
        when the budget runs out and AuthFailure if WhatsApp rejects the device.
        """
        deadline = _Deadline(max_wait_ms)
        session = await deadline.run(self._open_session(sender_id), f"WhatsApp for {sender_id}")

        while True:
            self._raise_if_closed(session)
            if self.sync_readiness(session):
                return session.connection

            left = deadline.remaining()
            if left is not None and left <= 0:
                raise ReadinessTimeout(
                    f"WhatsApp for {sender_id} not ready after {max_wait_ms:.0f}ms"
                )
            await session.wait_for_change(self._bounded(left))

    async def request_pairing_code(
        self, sender_id: str, max_wait_ms: Optional[float] = None
    ) -> SessionStatus:
        """
        Open the sender's connection and wait for either a QR code or readiness.

        A saved login goes straight to ready without ever issuing a code, so
        callers must accept SessionStatus(ready=True, pairing_code=None).
        """
        status = self.get_status(sender_id)
        if status.ready or status.pairing_code:
            return status

        deadline = _Deadline(max_wait_ms)
        session = await deadline.run(self._open_session(sender_id), f"QR code for {sender_id}")

        waiter = asyncio.get_running_loop().create_future()
        session.pending_waiters.add(waiter)
        try:
            while True:
                if waiter.done():
                    waiter.result()
                    break
                self._raise_if_closed(session)
                if self.sync_readiness(session) or session.pairing_code:
                    break

                left = deadline.remaining()
                if left is not None and left <= 0:
                    raise ReadinessTimeout(
                        f"No QR code or ready state for {sender_id} after {max_wait_ms:.0f}ms"
                    )
                await asyncio.wait({waiter}, timeout=self._bounded(left))
        finally:
            session.pending_waiters.discard(waiter)
            if not waiter.done():
                waiter.cancel()

        return self.get_status(sender_id)

    def _bounded(self, left: Optional[float]) -> float:
        return self._poll_interval if left is None else max(0.0, min(self._poll_interval, left))

    def _raise_if_closed(self, session: Session) -> None:
        if session.state in TERMINAL_STATES:
            raise session.error or TransportError.of(
                TransportErrorKind.CLOSED, f"Session for {session.sender_id} was closed"
            )
        if self._store.get(session.sender_id) is not session:
            raise TransportError.of(
                TransportErrorKind.CLOSED, f"Session for {session.sender_id} was closed"
            )

    # ── Reads ─────────────────────────────────────────────────────

    def get_status(self, sender_id: str) -> SessionStatus:
        """Non-blocking readiness and pending QR code for a sender."""
        session = self._store.get(sender_id)
        if session is None:
            return SessionStatus()
        ready = session.state in LIVE_STATES and session.connection.identity is not None
        return SessionStatus(ready=ready, pairing_code=None if ready else session.pairing_code)

    def get_pairing_code(self, sender_id: str) -> Optional[str]:
        return self.get_status(sender_id).pairing_code

    def sync_readiness(self, session: Session) -> bool:
        """Refresh the cached ready flag from the connection identity."""
        identity = session.connection.identity
        if identity is None:
            return False
        if not session.ready:
            self._handle_event(session, ConnectionEvent.READY, identity)
        return session.ready

    # ── Sending ───────────────────────────────────────────────────

    async def send(self, connection: Connection, phone: str, message: str) -> str:
        """One send attempt. Errors are TransportErrors with a typed kind."""
        if connection.identity is None:
            raise TransportError.of(TransportErrorKind.CLOSED, "WhatsApp is not ready")
        return await connection.send_message(phone, message)

    # ── Teardown ──────────────────────────────────────────────────

    async def clear_session(self, sender_id: str) -> bool:
        """
        Destroy the sender's connection and delete its saved login.
        Returns True if a saved login existed.
        """
        session = self._store.get(sender_id)
        if session is not None:
            await self.retire(session, "session cleared")

        profile_dir = self.profile_dir(sender_id)
        if not profile_dir.exists():
            logger.info(f"No saved login for {sender_id}")
            return False

        await asyncio.to_thread(shutil.rmtree, profile_dir)
        logger.info(f"Deleted saved login for {sender_id} at {profile_dir}")
        return True

    async def retire(self, session: Session, reason: str) -> None:
        """Disconnect a session, close its connection and drop it from the store."""
        if session.state in LIVE_STATES:
            self._handle_event(session, ConnectionEvent.DISCONNECTED, reason)
        await asyncio.shield(self._begin_close(session))

    async def shutdown(self) -> None:
        """Retire every session. Used when the application stops."""
        sessions = self._store.sessions()
        if sessions:
            logger.info(f"Closing {len(sessions)} WhatsApp session(s)")
        await asyncio.gather(*(self.retire(s, "shutdown") for s in sessions))

    def _begin_close(self, session: Session) -> asyncio.Task:
        if session.close_task is None:
            session.close_task = asyncio.create_task(self._close(session))
        return session.close_task

    async def _close(self, session: Session) -> None:
        try:
            # Let an in-flight start finish so no browser is left behind
            if session.start_task is not None and not session.start_task.done():
                await asyncio.wait({session.start_task})
            await session.connection.destroy()
        except TransportError as e:
            logger.warning(f"Ignoring teardown error for {session.sender_id}: {e}")
        except Exception:
            logger.exception(f"Unexpected teardown error for {session.sender_id}")
        finally:
            self._store.remove(session.sender_id, expected=session)
            session.touch()

    # ── State machine ─────────────────────────────────────────────

    def _handle_event(self, session: Session, event: ConnectionEvent, payload: Any) -> None:
        step = transition(session.state, event)
        if step is None:
            logger.debug(
                f"Ignoring {event.value} for {session.sender_id} in state {session.state.value}"
            )
            return

        previous = session.state
        session.state = step.next_state
        for effect in step.effects:
            self._apply(session, effect, event, payload)
        session.touch()

        if previous is not session.state:
            logger.info(f"[{session.sender_id}] {previous.value} -> {session.state.value}")

    def _apply(self, session: Session, effect: Effect, event: ConnectionEvent, payload: Any) -> None:
        if effect is Effect.STORE_PAIRING_CODE:
            session.pairing_code = payload
            logger.info(f"QR code issued for {session.sender_id}")
        elif effect is Effect.CLEAR_PAIRING_CODE:
            session.pairing_code = None
        elif effect is Effect.RESOLVE_WAITERS:
            self._resolve_waiters(session)
        elif effect is Effect.FAIL_WAITERS:
            if session.error is None:
                session.error = self._failure_for(session, event, payload)
            for waiter in session.pending_waiters:
                if not waiter.done():
                    waiter.set_exception(session.error)
            session.pending_waiters.clear()
        elif effect is Effect.TEARDOWN:
            self._begin_close(session)

    def _resolve_waiters(self, session: Session) -> None:
        for waiter in session.pending_waiters:
            if not waiter.done():
                waiter.set_result(session.pairing_code)
        session.pending_waiters.clear()

    def clear_pairing(self, session: Session) -> None:
        """Drop a leftover QR code and settle anyone still waiting for one."""
        session.pairing_code = None
        self._resolve_waiters(session)

    @staticmethod
    def _failure_for(session: Session, event: ConnectionEvent, payload: Any) -> Exception:
        if event is ConnectionEvent.AUTH_FAILED:
            logger.error(f"WhatsApp authentication failed for {session.sender_id}: {payload}")
            return AuthFailure(f"WhatsApp authentication failed for {session.sender_id}: {payload}")
        logger.warning(f"WhatsApp disconnected for {session.sender_id}: {payload}")
        return TransportError.of(
            TransportErrorKind.CLOSED, f"WhatsApp disconnected for {session.sender_id}: {payload}"
        )


def _consume_start_error(task: asyncio.Task) -> None:
    # Already logged and stored on the session
    if not task.cancelled():
        task.exception()


class _Deadline:
    """Remaining-time bookkeeping for an optional millisecond budget."""

    def __init__(self, max_wait_ms: Optional[float]):
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._max_wait_ms = max_wait_ms
        self._at = None if max_wait_ms is None else loop.time() + max_wait_ms / 1000

    def remaining(self) -> Optional[float]:
        return None if self._at is None else self._at - self._loop.time()

    async def run(self, awaitable, what: str):
        try:
            return await asyncio.wait_for(awaitable, self.remaining())
        except asyncio.TimeoutError:
            raise ReadinessTimeout(f"{what} not ready after {self._max_wait_ms:.0f}ms")
