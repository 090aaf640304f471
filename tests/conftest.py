"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import pytest

from wedding_invites.application import SessionManager, SessionStore
from wedding_invites.domain.models import Guest
from wedding_invites.infrastructure.config import (
    InvitationSettings,
    Settings,
    SheetSettings,
    WhatsAppSettings,
)
from wedding_invites.infrastructure.sheets import SpreadsheetGateway
from wedding_invites.infrastructure.whatsapp import Connection, ConnectionEvent, EventHandler

WID = "972500000000@c.us"


@dataclass
class FakeConnection(Connection):
    """Scriptable connection that records what it was asked to do."""

    sender_id: str
    profile_dir: Path
    on_event: EventHandler
    pairing_code_on_start: Optional[str] = None
    ready_on_start: Optional[str] = None
    start_error: Optional[BaseException] = None
    start_delay: float = 0.0
    destroy_error: Optional[BaseException] = None
    # phone -> queued outcomes; an exception is raised, a string is the message id
    send_outcomes: dict[str, list[Union[str, BaseException]]] = field(default_factory=dict)
    wid: Optional[str] = None
    sent: list[tuple[str, str]] = field(default_factory=list)
    starts: int = 0
    destroys: int = 0

    @property
    def identity(self) -> Optional[str]:
        return self.wid

    async def start(self) -> None:
        await asyncio.sleep(self.start_delay)
        self.starts += 1
        if self.start_error is not None:
            raise self.start_error
        if self.pairing_code_on_start:
            self.emit(ConnectionEvent.PAIRING_CODE, self.pairing_code_on_start)
        if self.ready_on_start:
            self.link(self.ready_on_start)

    async def send_message(self, phone: str, text: str) -> str:
        self.sent.append((phone, text))
        queued = self.send_outcomes.get(phone)
        if queued:
            outcome = queued.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return f"true_{phone}@c.us_{len(self.sent)}"

    async def destroy(self) -> None:
        self.destroys += 1
        self.wid = None
        if self.destroy_error is not None:
            raise self.destroy_error

    def emit(self, event: ConnectionEvent, payload: Any = None) -> None:
        self.on_event(event, payload)

    def link(self, wid: str = WID) -> None:
        """Simulate a scanned QR code (or a saved login) finishing to load."""
        self.wid = wid
        self.emit(ConnectionEvent.AUTHENTICATED)
        self.emit(ConnectionEvent.READY, wid)


@dataclass
class CountingFactory:
    """Connection factory that remembers every connection it built."""

    options: dict[str, Any] = field(default_factory=dict)
    connections: list[FakeConnection] = field(default_factory=list)

    def __call__(self, sender_id: str, profile_dir: Path, on_event: EventHandler) -> FakeConnection:
        connection = FakeConnection(sender_id, profile_dir, on_event, **self.options)
        self.connections.append(connection)
        return connection

    @property
    def count(self) -> int:
        return len(self.connections)

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


@dataclass
class InMemoryGateway(SpreadsheetGateway):
    """In-memory spreadsheet gateway for tests."""

    guests: list[Guest] = field(default_factory=list)
    marks: list[tuple[str, str, bool]] = field(default_factory=list)
    responses: list[tuple[str, str, str, bool, int]] = field(default_factory=list)
    error: Optional[Exception] = None

    def fetch_guests(self, sheet_id: str) -> list[Guest]:
        if self.error is not None:
            raise self.error
        return list(self.guests)

    def fetch_senders_distinct(self, sheet_id: str) -> list[str]:
        senders: list[str] = []
        for guest in self.fetch_guests(sheet_id):
            if guest.sender and guest.sender not in senders:
                senders.append(guest.sender)
        return senders

    def mark_send_status(self, sheet_id: str, phone: str, should_send: bool) -> None:
        if self.error is not None:
            raise self.error
        self.marks.append((sheet_id, phone, should_send))

    def append_or_update_response(
        self, sheet_id: str, name: str, phone: str, attending: bool, guest_count: int
    ) -> str:
        if self.error is not None:
            raise self.error
        self.responses.append((sheet_id, name, phone, attending, guest_count))
        return "added"


@dataclass
class SleepRecorder:
    """Stand-in for asyncio.sleep that returns at once."""

    calls: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def factory() -> CountingFactory:
    return CountingFactory()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def manager(store: SessionStore, factory: CountingFactory, tmp_path: Path) -> SessionManager:
    return SessionManager(store, factory, tmp_path / "auth", poll_interval=0.01)


@pytest.fixture
def invitation() -> InvitationSettings:
    return InvitationSettings(
        rsvp_base_url="https://invite.example/rsvp",
        couple_names="דניאל ויובל",
        country_code="972",
    )


@pytest.fixture
def settings(tmp_path: Path, invitation: InvitationSettings) -> Settings:
    return Settings(
        whatsapp=WhatsAppSettings(
            auth_root=tmp_path / "auth",
            headless=True,
            poll_interval=0.01,
            pairing_timeout=0.3,
            retry_backoff=0.0,
            message_delay=0.0,
        ),
        sheets=SheetSettings(
            guest_sheet_id="guests.xlsx",
            response_sheet_id="responses.xlsx",
            guest_worksheet="חתונה",
        ),
        invitation=invitation,
        debug=False,
    )
