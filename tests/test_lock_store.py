from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from models.user_lock import UserLock
from services.lock_store import DuplicateLockError, LockStore, LockStoreError

NOW = datetime(2026, 1, 1, 12, 0, 0)


def test_insert_and_lookup(db_session):
    store = LockStore(db_session)
    record = store.insert("5", "1", "a@example.com", NOW + timedelta(minutes=15), session_id="s1", now=NOW)

    assert record.id.startswith("lock_")
    assert record.lock_kind == "edit"
    assert record.originating_session_id == "s1"
    assert store.get_for_entity("5") == record
    assert store.get_active("5", NOW) == record
    assert store.get_active("5", NOW + timedelta(minutes=15)) is None
    assert store.get_for_entity("6") is None


def test_second_row_for_same_entity_is_rejected(db_session):
    store = LockStore(db_session)
    store.insert("5", "1", "a@example.com", NOW + timedelta(minutes=15), now=NOW)
    with pytest.raises(DuplicateLockError):
        store.insert("5", "2", "b@example.com", NOW + timedelta(minutes=15), now=NOW)
    # Session still usable after the rollback
    assert store.get_for_entity("5").lock_holder_id == "1"
    assert db_session.query(UserLock).count() == 1


def test_extend_and_delete(db_session):
    store = LockStore(db_session)
    record = store.insert("5", "1", "a@example.com", NOW + timedelta(minutes=1), now=NOW)

    extended = store.extend(record.id, NOW + timedelta(minutes=30))
    assert extended.expires_at == NOW + timedelta(minutes=30)
    assert extended.id == record.id
    assert store.extend("lock_missing", NOW) is None

    assert store.delete(record.id) is True
    assert store.delete(record.id) is False


def test_delete_owned_only_removes_holders_row(db_session):
    store = LockStore(db_session)
    store.insert("5", "1", "a@example.com", NOW + timedelta(minutes=15), now=NOW)

    assert store.delete_owned("5", "2") is None
    assert store.get_for_entity("5") is not None
    removed = store.delete_owned("5", "1")
    assert removed.lock_holder_label == "a@example.com"
    assert store.get_for_entity("5") is None


def test_expiry_scans(db_session):
    store = LockStore(db_session)
    old = store.insert("1", "1", "a@example.com", NOW - timedelta(minutes=1), now=NOW - timedelta(minutes=16))
    fresh = store.insert("2", "1", "a@example.com", NOW + timedelta(minutes=10), now=NOW - timedelta(minutes=5))
    newer = store.insert("3", "2", "b@example.com", NOW + timedelta(minutes=14), now=NOW - timedelta(minutes=1))

    assert store.list_expired(NOW) == [old]
    assert store.list_active(NOW) == [fresh, newer]

    assert store.delete_if_expired(fresh.id, NOW) is False
    assert store.delete_if_expired(old.id, NOW) is True

    store.insert("4", "3", "c@example.com", NOW, now=NOW - timedelta(minutes=15))
    purged = store.purge_expired(NOW)
    assert [r.locked_entity_id for r in purged] == ["4"]
    assert {r.locked_entity_id for r in store.list_active(NOW)} == {"2", "3"}


def test_database_failure_is_reported_as_store_error(db_session, monkeypatch):
    store = LockStore(db_session)

    def _broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is down"))

    monkeypatch.setattr(db_session, "query", _broken)
    with pytest.raises(LockStoreError):
        store.get_for_entity("5")
    with pytest.raises(LockStoreError):
        store.list_active(NOW)


def test_record_to_dict(db_session):
    record = LockStore(db_session).insert("5", "1", "a@example.com", NOW + timedelta(minutes=15), now=NOW)
    data = record.to_dict()
    assert data["locked_entity_id"] == "5"
    assert data["expires_at"] == "2026-01-01T12:15:00"
    assert data["created_at"] == "2026-01-01T12:00:00"
