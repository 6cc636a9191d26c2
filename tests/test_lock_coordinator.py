from datetime import timedelta

import pytest

from event_bus import Broadcaster
from realtime import ConnectionRegistry
from services.lock_coordinator import SYSTEM_CLEANUP, LockCoordinator
from services.lock_store import LockStore, LockStoreError
from conftest import RecordingSink


@pytest.fixture()
def admin_sink():
    return RecordingSink()


@pytest.fixture()
def coordinator(db_session, clock, admin_sink):
    registry = ConnectionRegistry()
    # An observing admin who never holds locks
    registry.register("99-1", "99", "admin", "observer@example.com", admin_sink)
    return LockCoordinator(
        LockStore(db_session),
        Broadcaster(registry, clock=clock),
        registry,
        lease=timedelta(minutes=15),
        clock=clock,
    )


def test_acquire_free_entity(coordinator, clock, admin_sink):
    result = coordinator.acquire("5", "1", "a@example.com", session_id="s1")

    assert result.granted
    assert not result.extended
    assert result.lock.lock_holder_label == "a@example.com"
    assert result.lock.expires_at == clock.now + timedelta(minutes=15)
    assert result.lock.originating_session_id == "s1"
    assert admin_sink.events[-1]["type"] == "lock-acquired"
    assert admin_sink.events[-1]["data"]["entity_id"] == "5"
    assert admin_sink.events[-1]["data"]["holder_label"] == "a@example.com"
    assert admin_sink.events[-1]["data"]["extended"] is False
    assert admin_sink.events[-1]["data"]["triggered_by"] == "a@example.com"


def test_second_holder_is_denied_without_broadcast(coordinator, admin_sink):
    coordinator.acquire("5", "1", "a@example.com")
    frames_before = len(admin_sink.frames)

    result = coordinator.acquire("5", "2", "b@example.com")

    assert not result.granted
    assert result.locked_by == "a@example.com"
    assert len(admin_sink.frames) == frames_before
    assert coordinator.holder_of("5").lock_holder_id == "1"


def test_reacquire_extends_same_lock(coordinator, clock, admin_sink):
    first = coordinator.acquire("5", "1", "a@example.com")
    clock.advance(minutes=10)

    second = coordinator.acquire("5", "1", "a@example.com")

    assert second.granted
    assert second.extended
    assert second.lock.id == first.lock.id
    assert second.lock.expires_at == clock.now + timedelta(minutes=15)
    assert admin_sink.events[-1]["data"]["extended"] is True


def test_expired_lock_can_be_taken_over(coordinator, clock):
    coordinator.acquire("5", "1", "a@example.com")
    clock.advance(minutes=14, seconds=59)
    assert not coordinator.acquire("5", "2", "b@example.com").granted

    clock.advance(seconds=1)
    assert not coordinator.check("5").is_locked
    result = coordinator.acquire("5", "2", "b@example.com")
    assert result.granted
    assert not result.extended
    assert coordinator.holder_of("5").lock_holder_label == "b@example.com"


def test_release_only_by_holder(coordinator, admin_sink):
    coordinator.acquire("5", "1", "a@example.com")

    assert coordinator.release("5", "2").released is False
    assert coordinator.check("5").is_locked

    result = coordinator.release("5", "1")
    assert result.released
    assert not coordinator.check("5").is_locked
    assert admin_sink.events[-1] == {
        "type": "lock-released",
        "data": {
            "entity_id": "5",
            "holder_label": "a@example.com",
            "triggered_by": "a@example.com",
            "timestamp": "2026-01-01T12:00:00",
        },
    }


def test_release_without_lock_is_not_an_error(coordinator, admin_sink):
    frames_before = len(admin_sink.frames)
    assert coordinator.release("404", "1").released is False
    assert len(admin_sink.frames) == frames_before


def test_check_ignores_expired(coordinator, clock):
    coordinator.acquire("5", "1", "a@example.com")
    assert coordinator.check("5").is_locked
    clock.advance(minutes=15)
    check = coordinator.check("5")
    assert not check.is_locked
    assert check.lock is None


def test_lost_race_on_insert_is_denied(coordinator, db_session, monkeypatch):
    # Another worker inserted between our lookup and our insert
    other = LockStore(db_session)
    real_get = coordinator.store.get_for_entity
    calls = []

    def _stale_lookup(entity_id):
        calls.append(entity_id)
        if len(calls) == 1:
            other.insert(entity_id, "2", "b@example.com", coordinator._clock() + timedelta(minutes=15), now=coordinator._clock())
            return None
        return real_get(entity_id)

    monkeypatch.setattr(coordinator.store, "get_for_entity", _stale_lookup)
    result = coordinator.acquire("5", "1", "a@example.com")

    assert not result.granted
    assert result.locked_by == "b@example.com"
    assert coordinator.holder_of("5").lock_holder_id == "2"


def test_lost_race_to_own_tab_is_granted(coordinator, db_session, monkeypatch):
    other = LockStore(db_session)
    real_get = coordinator.store.get_for_entity
    calls = []

    def _stale_lookup(entity_id):
        calls.append(entity_id)
        if len(calls) == 1:
            other.insert(entity_id, "1", "a@example.com", coordinator._clock() + timedelta(minutes=15), now=coordinator._clock())
            return None
        return real_get(entity_id)

    monkeypatch.setattr(coordinator.store, "get_for_entity", _stale_lookup)
    result = coordinator.acquire("5", "1", "a@example.com")

    assert result.granted
    assert result.extended


def test_sweep_keeps_locks_of_connected_holders(coordinator, clock, admin_sink):
    coordinator.acquire("5", "1", "a@example.com")
    coordinator.acquire("6", "2", "b@example.com")
    # Holder 1 still has a stream open
    coordinator.registry.register("1-1", "1", "admin", "a@example.com", RecordingSink())
    clock.advance(minutes=20)

    removed = coordinator.sweep()

    assert [l.locked_entity_id for l in removed] == ["6"]
    assert coordinator.store.get_for_entity("5") is not None
    assert coordinator.store.get_for_entity("6") is None
    released = admin_sink.events[-1]
    assert released["type"] == "lock-released"
    assert released["data"]["entity_id"] == "6"
    assert released["data"]["reason"] == "session_disconnected"
    assert released["data"]["triggered_by"] == SYSTEM_CLEANUP


def test_sweep_leaves_unexpired_locks(coordinator):
    coordinator.acquire("5", "1", "a@example.com")
    assert coordinator.sweep() == []
    assert coordinator.check("5").is_locked


def test_list_active_sweeps_first(coordinator, clock):
    coordinator.acquire("5", "1", "a@example.com")
    clock.advance(minutes=16)
    coordinator.acquire("6", "2", "b@example.com")

    active = coordinator.list_active()

    assert [l.locked_entity_id for l in active] == ["6"]
    assert coordinator.store.get_for_entity("5") is None


def test_purge_removes_even_connected_holders(coordinator, clock, admin_sink):
    coordinator.acquire("5", "1", "a@example.com")
    coordinator.registry.register("1-1", "1", "admin", "a@example.com", RecordingSink())
    clock.advance(minutes=16)

    removed = coordinator.purge_expired()

    assert [l.locked_entity_id for l in removed] == ["5"]
    assert admin_sink.events[-1]["data"]["reason"] == "expired"


def test_store_failure_propagates(coordinator, monkeypatch):
    def _down(*args, **kwargs):
        raise LockStoreError("Lock store lookup failed")

    monkeypatch.setattr(coordinator.store, "get_for_entity", _down)
    with pytest.raises(LockStoreError):
        coordinator.acquire("5", "1", "a@example.com")
