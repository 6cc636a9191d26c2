from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from models.user_lock import UserLock

logger = logging.getLogger(__name__)


class LockStoreError(Exception):
    """The lock table could not be read or written; lock state is unknown."""
    code = "lock_store_unavailable"


class DuplicateLockError(Exception):
    """Another row for the same entity was written first."""
    code = "duplicate_lock"


@dataclass(frozen=True)
class LockRecord:
    id: str
    locked_entity_id: str
    lock_holder_id: str
    lock_holder_label: str
    lock_kind: str
    originating_session_id: Optional[str]
    expires_at: datetime
    created_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "locked_entity_id": self.locked_entity_id,
            "lock_holder_id": self.lock_holder_id,
            "lock_holder_label": self.lock_holder_label,
            "lock_kind": self.lock_kind,
            "originating_session_id": self.originating_session_id,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _record(row: UserLock) -> LockRecord:
    return LockRecord(
        id=row.id,
        locked_entity_id=row.locked_entity_id,
        lock_holder_id=row.lock_holder_id,
        lock_holder_label=row.lock_holder_label,
        lock_kind=row.lock_kind,
        originating_session_id=row.originating_session_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


class LockStore:
    """Durable lock rows. Each mutation is committed before it returns."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except DuplicateLockError:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Lock store %s failed: %s", operation, e)
            raise LockStoreError(f"Lock store {operation} failed") from e

    def get_for_entity(self, entity_id: str) -> Optional[LockRecord]:
        """Row for the entity whether or not it has expired."""
        with self._guard("lookup"):
            row = self.db.query(UserLock).filter(UserLock.locked_entity_id == entity_id).first()
            return _record(row) if row else None

    def get_active(self, entity_id: str, now: datetime) -> Optional[LockRecord]:
        with self._guard("lookup"):
            row = (
                self.db.query(UserLock)
                .filter(UserLock.locked_entity_id == entity_id, UserLock.expires_at > now)
                .first()
            )
            return _record(row) if row else None

    def insert(
        self,
        entity_id: str,
        holder_id: str,
        holder_label: str,
        expires_at: datetime,
        kind: str = "edit",
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LockRecord:
        with self._guard("insert"):
            row = UserLock(
                locked_entity_id=entity_id,
                lock_holder_id=holder_id,
                lock_holder_label=holder_label,
                lock_kind=kind,
                originating_session_id=session_id,
                expires_at=expires_at,
                created_at=now or datetime.utcnow(),
            )
            self.db.add(row)
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise DuplicateLockError(f"Entity {entity_id} already has a lock row") from e
            self.db.refresh(row)
            return _record(row)

    def extend(self, lock_id: str, expires_at: datetime) -> Optional[LockRecord]:
        with self._guard("extend"):
            row = self.db.query(UserLock).filter(UserLock.id == lock_id).first()
            if row is None:
                return None
            row.expires_at = expires_at
            self.db.commit()
            self.db.refresh(row)
            return _record(row)

    def delete(self, lock_id: str) -> bool:
        with self._guard("delete"):
            count = self.db.query(UserLock).filter(UserLock.id == lock_id).delete(synchronize_session=False)
            self.db.commit()
            return count > 0

    def delete_owned(self, entity_id: str, holder_id: str) -> Optional[LockRecord]:
        """Delete the entity's lock only when ``holder_id`` owns it."""
        with self._guard("delete"):
            row = (
                self.db.query(UserLock)
                .filter(UserLock.locked_entity_id == entity_id, UserLock.lock_holder_id == holder_id)
                .first()
            )
            if row is None:
                return None
            record = _record(row)
            self.db.delete(row)
            self.db.commit()
            return record

    def delete_if_expired(self, lock_id: str, now: datetime) -> bool:
        """Delete only if the row is still expired (it may have been renewed meanwhile)."""
        with self._guard("delete"):
            count = (
                self.db.query(UserLock)
                .filter(UserLock.id == lock_id, UserLock.expires_at <= now)
                .delete(synchronize_session=False)
            )
            self.db.commit()
            return count > 0

    def list_expired(self, now: datetime) -> List[LockRecord]:
        with self._guard("scan"):
            rows = self.db.query(UserLock).filter(UserLock.expires_at <= now).all()
            return [_record(r) for r in rows]

    def list_active(self, now: datetime) -> List[LockRecord]:
        with self._guard("scan"):
            rows = (
                self.db.query(UserLock)
                .filter(UserLock.expires_at > now)
                .order_by(UserLock.created_at.asc())
                .all()
            )
            return [_record(r) for r in rows]

    def purge_expired(self, now: datetime) -> List[LockRecord]:
        with self._guard("purge"):
            rows = self.db.query(UserLock).filter(UserLock.expires_at <= now).all()
            records = [_record(r) for r in rows]
            for row in rows:
                self.db.delete(row)
            self.db.commit()
            return records
