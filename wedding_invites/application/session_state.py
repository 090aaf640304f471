"""
Session State Machine
=====================

The whole lifecycle of a sender's connection as one pure table:

    (current state, event) -> (next state, effects)

    EMPTY -> INITIALIZING -> PAIRING -> AUTHENTICATED -> READY
                          \\-----------> AUTHENTICATED -> READY   (saved login)
    any live state -> AUTH_FAILED | DISCONNECTED -> (removed, EMPTY)

The session manager looks up a transition and carries out its effects;
nothing here touches a session or a connection.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from ..infrastructure.whatsapp.messaging_provider import ConnectionEvent


class SessionState(Enum):
    EMPTY = "empty"
    INITIALIZING = "initializing"
    PAIRING = "pairing"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILED = "auth_failed"
    DISCONNECTED = "disconnected"


class Effect(Enum):
    STORE_PAIRING_CODE = "store_pairing_code"
    CLEAR_PAIRING_CODE = "clear_pairing_code"
    RESOLVE_WAITERS = "resolve_waiters"
    FAIL_WAITERS = "fail_waiters"
    TEARDOWN = "teardown"


# States after which the connection is unusable and must be retired
TERMINAL_STATES: FrozenSet[SessionState] = frozenset({
    SessionState.AUTH_FAILED,
    SessionState.DISCONNECTED,
})

LIVE_STATES: FrozenSet[SessionState] = frozenset({
    SessionState.INITIALIZING,
    SessionState.PAIRING,
    SessionState.AUTHENTICATED,
    SessionState.READY,
})


@dataclass(frozen=True)
class Transition:
    next_state: SessionState
    effects: Tuple[Effect, ...] = ()


_BECOME_READY = Transition(
    SessionState.READY,
    (Effect.CLEAR_PAIRING_CODE, Effect.RESOLVE_WAITERS),
)
_FAIL = (Effect.CLEAR_PAIRING_CODE, Effect.FAIL_WAITERS, Effect.TEARDOWN)

_TABLE: Dict[Tuple[SessionState, ConnectionEvent], Transition] = {
    (SessionState.EMPTY, ConnectionEvent.STARTED): Transition(SessionState.INITIALIZING),

    (SessionState.INITIALIZING, ConnectionEvent.PAIRING_CODE): Transition(
        SessionState.PAIRING, (Effect.STORE_PAIRING_CODE, Effect.RESOLVE_WAITERS)
    ),
    # WhatsApp rotates the QR code every ~20s while nobody scans it
    (SessionState.PAIRING, ConnectionEvent.PAIRING_CODE): Transition(
        SessionState.PAIRING, (Effect.STORE_PAIRING_CODE, Effect.RESOLVE_WAITERS)
    ),

    (SessionState.INITIALIZING, ConnectionEvent.AUTHENTICATED): Transition(
        SessionState.AUTHENTICATED, (Effect.CLEAR_PAIRING_CODE,)
    ),
    (SessionState.PAIRING, ConnectionEvent.AUTHENTICATED): Transition(
        SessionState.AUTHENTICATED, (Effect.CLEAR_PAIRING_CODE,)
    ),

    (SessionState.INITIALIZING, ConnectionEvent.READY): _BECOME_READY,
    (SessionState.PAIRING, ConnectionEvent.READY): _BECOME_READY,
    (SessionState.AUTHENTICATED, ConnectionEvent.READY): _BECOME_READY,
    (SessionState.READY, ConnectionEvent.READY): Transition(SessionState.READY),
    (SessionState.READY, ConnectionEvent.AUTHENTICATED): Transition(SessionState.READY),
}

for _state in LIVE_STATES:
    _TABLE[(_state, ConnectionEvent.AUTH_FAILED)] = Transition(SessionState.AUTH_FAILED, _FAIL)
    _TABLE[(_state, ConnectionEvent.DISCONNECTED)] = Transition(SessionState.DISCONNECTED, _FAIL)
    _TABLE[(_state, ConnectionEvent.START_FAILED)] = Transition(SessionState.DISCONNECTED, _FAIL)


def transition(state: SessionState, event: ConnectionEvent) -> Optional[Transition]:
    """Look up the transition for an event, or None if the event is not valid in this state."""
    return _TABLE.get((state, event))
