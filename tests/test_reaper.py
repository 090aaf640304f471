"""Tests for the idle reaper sweeps."""

import asyncio

from wedding_invites.application import IdleReaper
from wedding_invites.application.session_state import SessionState
from wedding_invites.infrastructure.whatsapp import ConnectionEvent
from tests.conftest import WID


def test_clears_code_left_on_linked_session(store, manager, factory) -> None:
    factory.options = {"pairing_code_on_start": "2@qr"}
    reaper = IdleReaper(store, manager)

    async def scenario():
        await manager.open("Yuval")
        # Linked, but the READY event never arrived
        factory.last.wid = WID
        return reaper.clear_stale_pairing_codes(), store.get("Yuval")

    cleared, session = asyncio.run(scenario())

    assert cleared == 1
    assert session.pairing_code is None
    assert session.state is SessionState.READY


def test_leaves_code_of_session_still_pairing(store, manager, factory) -> None:
    factory.options = {"pairing_code_on_start": "2@qr"}
    reaper = IdleReaper(store, manager)

    async def scenario():
        await manager.open("Yuval")
        return reaper.clear_stale_pairing_codes(), store.get("Yuval")

    cleared, session = asyncio.run(scenario())

    assert cleared == 0
    assert session.pairing_code == "2@qr"
    assert session.state is SessionState.PAIRING


def test_reaps_session_stuck_before_pairing(store, manager, factory) -> None:
    reaper = IdleReaper(store, manager, stale_after=0.0)

    async def scenario():
        await manager.open("Yuval")
        return await reaper.reap_stuck_sessions()

    assert asyncio.run(scenario()) == 1
    assert "Yuval" not in store
    assert factory.last.destroys == 1


def test_never_reaps_pairing_or_ready_sessions(store, manager, factory) -> None:
    reaper = IdleReaper(store, manager, stale_after=0.0)

    async def scenario():
        factory.options = {"pairing_code_on_start": "2@qr"}
        await manager.open("Yuval")
        factory.options = {"ready_on_start": WID}
        await manager.open("Daniel")
        return await reaper.reap_stuck_sessions()

    assert asyncio.run(scenario()) == 0
    assert "Yuval" in store
    assert "Daniel" in store


def test_recent_sessions_get_a_grace_period(store, manager) -> None:
    reaper = IdleReaper(store, manager, stale_after=60.0)

    async def scenario():
        await manager.open("Yuval")
        return await reaper.reap_stuck_sessions()

    assert asyncio.run(scenario()) == 0
    assert "Yuval" in store


def test_reaps_terminal_sessions(store, manager, factory) -> None:
    reaper = IdleReaper(store, manager, stale_after=60.0)

    async def scenario():
        await manager.open("Yuval")
        session = store.get("Yuval")
        # Cut the teardown short so the session is still around
        session.state = SessionState.DISCONNECTED
        return await reaper.reap_stuck_sessions()

    assert asyncio.run(scenario()) == 1
    assert "Yuval" not in store


def test_sweeps_run_on_their_timers(store, manager, factory) -> None:
    factory.options = {"pairing_code_on_start": "2@qr"}
    reaper = IdleReaper(store, manager, pairing_interval=0.01, stuck_interval=0.01, stale_after=0.0)

    async def scenario():
        await manager.open("Yuval")
        await manager.open("Daniel")
        factory.connections[0].wid = WID
        factory.connections[1].emit(ConnectionEvent.AUTHENTICATED)

        reaper.start()
        assert reaper.running
        await asyncio.sleep(0.1)
        await reaper.stop()
        return store.get("Yuval")

    yuval = asyncio.run(scenario())

    assert not reaper.running
    assert yuval.pairing_code is None
    assert yuval.ready
    # Authenticated but never ready, no QR: stuck
    assert "Daniel" not in store
