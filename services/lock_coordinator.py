"""Edit-lock leases over the durable lock table.

A lock is a lease: it is granted for ``lease`` and renewed in place when its
holder acquires again. Nothing expires locks on a timer. Expired locks are
treated as absent by ``acquire`` and are physically removed by ``sweep``,
which runs whenever an admin lists the active locks. ``sweep`` only removes
an expired lock if its holder has no open stream connection.

The registry is in-memory, so after a restart every holder looks
disconnected until its browser reconnects; the first sweep in that window
clears all expired locks.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from fastapi import Depends
from sqlalchemy.orm import Session
import logging

from config import settings
from database import get_db
from event_bus import Broadcaster, RealtimeEventType, get_broadcaster
from realtime import ConnectionRegistry, get_registry
from services.lock_store import DuplicateLockError, LockRecord, LockStore

logger = logging.getLogger(__name__)

SYSTEM_CLEANUP = "system_cleanup"


@dataclass
class AcquireResult:
    granted: bool
    lock: Optional[LockRecord] = None
    extended: bool = False
    locked_by: Optional[str] = None


@dataclass
class ReleaseResult:
    released: bool
    lock: Optional[LockRecord] = None


@dataclass
class CheckResult:
    is_locked: bool
    lock: Optional[LockRecord] = None


class LockCoordinator:
    def __init__(
        self,
        store: LockStore,
        broadcaster: Broadcaster,
        registry: ConnectionRegistry,
        lease: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.registry = registry
        self.lease = lease
        self._clock = clock

    def acquire(
        self,
        entity_id: str,
        holder_id: str,
        holder_label: str,
        session_id: Optional[str] = None,
        kind: str = "edit",
    ) -> AcquireResult:
        now = self._clock()
        existing = self.store.get_for_entity(entity_id)

        if existing is not None and not existing.is_expired(now):
            if existing.lock_holder_id == holder_id:
                renewed = self.store.extend(existing.id, now + self.lease)
                if renewed is not None:
                    logger.info("Extended lock on %s for %s until %s", entity_id, holder_label, renewed.expires_at)
                    self._announce_acquired(renewed, extended=True)
                    return AcquireResult(granted=True, lock=renewed, extended=True)
                # Row vanished between read and write; fall through to a fresh insert
            else:
                logger.info("Lock on %s denied to %s; held by %s", entity_id, holder_label, existing.lock_holder_label)
                return AcquireResult(granted=False, lock=existing, locked_by=existing.lock_holder_label)
        elif existing is not None:
            logger.info("Removing expired lock %s on %s held by %s", existing.id, entity_id, existing.lock_holder_label)
            self.store.delete(existing.id)

        try:
            lock = self.store.insert(
                entity_id,
                holder_id,
                holder_label,
                expires_at=now + self.lease,
                kind=kind,
                session_id=session_id,
                now=now,
            )
        except DuplicateLockError:
            winner = self.store.get_for_entity(entity_id)
            if winner is not None and winner.lock_holder_id == holder_id:
                # Our own other tab won the race
                return AcquireResult(granted=True, lock=winner, extended=True)
            logger.info("Lock on %s lost race for %s", entity_id, holder_label)
            return AcquireResult(
                granted=False,
                lock=winner,
                locked_by=winner.lock_holder_label if winner else None,
            )

        logger.info("Lock %s on %s granted to %s", lock.id, entity_id, holder_label)
        self._announce_acquired(lock, extended=False)
        return AcquireResult(granted=True, lock=lock, extended=False)

    def release(self, entity_id: str, holder_id: str) -> ReleaseResult:
        lock = self.store.delete_owned(entity_id, holder_id)
        if lock is None:
            return ReleaseResult(released=False)
        logger.info("Lock %s on %s released by %s", lock.id, entity_id, lock.lock_holder_label)
        self.broadcaster.broadcast(
            RealtimeEventType.LOCK_RELEASED,
            {"entity_id": entity_id, "holder_label": lock.lock_holder_label},
            triggered_by=lock.lock_holder_label,
        )
        return ReleaseResult(released=True, lock=lock)

    def check(self, entity_id: str) -> CheckResult:
        lock = self.store.get_active(entity_id, self._clock())
        return CheckResult(is_locked=lock is not None, lock=lock)

    def holder_of(self, entity_id: str) -> Optional[LockRecord]:
        return self.check(entity_id).lock

    def sweep(self) -> List[LockRecord]:
        """Delete expired locks whose holder has no open stream connection."""
        now = self._clock()
        expired = self.store.list_expired(now)
        if not expired:
            return []
        connected = self.registry.connected_holder_ids()
        removed: List[LockRecord] = []
        for lock in expired:
            if lock.lock_holder_id in connected:
                # Holder still connected; it keeps the lock until it leaves or releases
                continue
            if not self.store.delete_if_expired(lock.id, now):
                continue
            removed.append(lock)
            self.broadcaster.broadcast(
                RealtimeEventType.LOCK_RELEASED,
                {
                    "entity_id": lock.locked_entity_id,
                    "holder_label": lock.lock_holder_label,
                    "reason": "session_disconnected",
                },
                triggered_by=SYSTEM_CLEANUP,
            )
        if removed:
            logger.info("Swept %d expired locks from disconnected holders", len(removed))
        return removed

    def list_active(self) -> List[LockRecord]:
        self.sweep()
        return self.store.list_active(self._clock())

    def purge_expired(self) -> List[LockRecord]:
        """Maintenance: remove every expired lock, connected holder or not."""
        removed = self.store.purge_expired(self._clock())
        for lock in removed:
            self.broadcaster.broadcast(
                RealtimeEventType.LOCK_RELEASED,
                {
                    "entity_id": lock.locked_entity_id,
                    "holder_label": lock.lock_holder_label,
                    "reason": "expired",
                },
                triggered_by=SYSTEM_CLEANUP,
            )
        if removed:
            logger.info("Purged %d expired locks", len(removed))
        return removed

    def _announce_acquired(self, lock: LockRecord, extended: bool) -> None:
        self.broadcaster.broadcast(
            RealtimeEventType.LOCK_ACQUIRED,
            {
                "entity_id": lock.locked_entity_id,
                "holder_label": lock.lock_holder_label,
                "lock_id": lock.id,
                "extended": extended,
            },
            triggered_by=lock.lock_holder_label,
        )


def get_lock_coordinator(
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> LockCoordinator:
    return LockCoordinator(
        LockStore(db),
        broadcaster,
        registry,
        lease=timedelta(minutes=settings.LOCK_LEASE_MINUTES),
    )
