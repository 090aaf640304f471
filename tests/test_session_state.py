"""Tests for the session state machine table."""

import asyncio

import pytest

from wedding_invites.application.session_state import (
    LIVE_STATES,
    TERMINAL_STATES,
    Effect,
    SessionState,
    transition,
)
from wedding_invites.infrastructure.whatsapp import ConnectionEvent


def test_start_moves_empty_to_initializing() -> None:
    step = transition(SessionState.EMPTY, ConnectionEvent.STARTED)
    assert step is not None
    assert step.next_state is SessionState.INITIALIZING
    assert step.effects == ()


def test_pairing_code_is_stored_and_wakes_waiters() -> None:
    for state in (SessionState.INITIALIZING, SessionState.PAIRING):
        step = transition(state, ConnectionEvent.PAIRING_CODE)
        assert step.next_state is SessionState.PAIRING
        assert Effect.STORE_PAIRING_CODE in step.effects
        assert Effect.RESOLVE_WAITERS in step.effects


def test_saved_login_goes_straight_to_ready() -> None:
    step = transition(SessionState.INITIALIZING, ConnectionEvent.READY)
    assert step.next_state is SessionState.READY


def test_entering_ready_always_clears_the_pairing_code() -> None:
    for state in SessionState:
        for event in ConnectionEvent:
            step = transition(state, event)
            if step is None or step.next_state is not SessionState.READY:
                continue
            if state is SessionState.READY:
                assert Effect.STORE_PAIRING_CODE not in step.effects
            else:
                assert Effect.CLEAR_PAIRING_CODE in step.effects


def test_ready_session_ignores_new_pairing_codes() -> None:
    assert transition(SessionState.READY, ConnectionEvent.PAIRING_CODE) is None


@pytest.mark.parametrize("state", sorted(LIVE_STATES, key=lambda s: s.value))
def test_failures_tear_down_every_live_state(state: SessionState) -> None:
    auth = transition(state, ConnectionEvent.AUTH_FAILED)
    gone = transition(state, ConnectionEvent.DISCONNECTED)
    assert auth.next_state is SessionState.AUTH_FAILED
    assert gone.next_state is SessionState.DISCONNECTED
    for step in (auth, gone):
        assert Effect.FAIL_WAITERS in step.effects
        assert Effect.TEARDOWN in step.effects


def test_terminal_states_accept_no_events() -> None:
    for state in TERMINAL_STATES:
        for event in ConnectionEvent:
            assert transition(state, event) is None


def test_ready_never_shows_a_pairing_code_through_a_session(manager, factory) -> None:
    async def scenario():
        await manager.open("Yuval")
        session = manager.store.get("Yuval")
        connection = factory.last
        events = [
            (ConnectionEvent.PAIRING_CODE, "2@first"),
            (ConnectionEvent.PAIRING_CODE, "2@second"),
            (ConnectionEvent.AUTHENTICATED, None),
            (ConnectionEvent.PAIRING_CODE, "2@late"),
            (ConnectionEvent.READY, "972500000000@c.us"),
            (ConnectionEvent.PAIRING_CODE, "2@after-ready"),
            (ConnectionEvent.READY, "972500000000@c.us"),
        ]
        for event, payload in events:
            connection.emit(event, payload)
            assert not (session.ready and session.pairing_code)
        return session

    session = asyncio.run(scenario())
    assert session.ready
    assert session.pairing_code is None
