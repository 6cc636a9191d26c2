"""Role-filtered realtime event fan-out.

Two fixed tables govern realtime events:

* ``EVENT_PERMISSIONS``: which roles *receive* an event type.
* ``BROADCAST_PERMISSIONS``: which roles may *trigger* an event type through
  the broadcast endpoint. Always a subset of the receiving roles. Lock events
  have no producers; only the lock coordinator emits them.

Unknown event types resolve to an empty role set on both sides.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional
from fastapi import Request
import logging

from realtime import ConnectionRegistry, encode_sse

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    TECHNICIAN = "technician"
    ACCOUNTING = "accounting"
    USER = "user"


class RealtimeEventType(str, Enum):
    USER_CREATED = "user-created"
    USER_UPDATED = "user-updated"
    USER_DELETED = "user-deleted"
    USER_CREATION_STARTED = "user-creation-started"
    USER_CREATION_COMPLETED = "user-creation-completed"
    LOCK_ACQUIRED = "lock-acquired"
    LOCK_RELEASED = "lock-released"
    JOB_CARD_CREATED = "job-card-created"
    JOB_CARD_UPDATED = "job-card-updated"
    JOB_CARD_COMPLETED = "job-card-completed"
    INVENTORY_UPDATED = "inventory-updated"
    STOCK_LOW = "stock-low"
    STOCK_OUT = "stock-out"
    SALARY_UPDATED = "salary-updated"
    PAYMENT_PROCESSED = "payment-processed"
    INVOICE_GENERATED = "invoice-generated"
    TASK_ASSIGNED = "task-assigned"
    TASK_COMPLETED = "task-completed"
    TASK_OVERDUE = "task-overdue"
    NOTIFICATION_SENT = "notification-sent"
    SYSTEM_ANNOUNCEMENT = "system-announcement"
    ORDER_CREATED = "order-created"
    ORDER_UPDATED = "order-updated"
    ORDER_CANCELLED = "order-cancelled"


def _roles(*roles: Role) -> FrozenSet[str]:
    # Plain strings: str-Enum members hash by name, not value
    return frozenset(r.value for r in roles)


_ALL = _roles(Role.ADMIN, Role.MANAGER, Role.TECHNICIAN, Role.ACCOUNTING, Role.USER)
_ADMIN = _roles(Role.ADMIN)
_FIELD = _roles(Role.ADMIN, Role.USER, Role.MANAGER, Role.TECHNICIAN)
_STOCK = _roles(Role.ADMIN, Role.MANAGER, Role.TECHNICIAN)
_FINANCE = _roles(Role.ADMIN, Role.ACCOUNTING)
_OFFICE = _roles(Role.ADMIN, Role.MANAGER)

E = RealtimeEventType

EVENT_PERMISSIONS: Mapping[str, FrozenSet[str]] = MappingProxyType({
    # User management and collaborative editing - admin only
    E.USER_CREATED.value: _ADMIN,
    E.USER_UPDATED.value: _ADMIN,
    E.USER_DELETED.value: _ADMIN,
    E.USER_CREATION_STARTED.value: _ADMIN,
    E.USER_CREATION_COMPLETED.value: _ADMIN,
    E.LOCK_ACQUIRED.value: _ADMIN,
    E.LOCK_RELEASED.value: _ADMIN,
    E.JOB_CARD_CREATED.value: _FIELD,
    E.JOB_CARD_UPDATED.value: _FIELD,
    E.JOB_CARD_COMPLETED.value: _FIELD,
    E.INVENTORY_UPDATED.value: _STOCK,
    E.STOCK_LOW.value: _STOCK,
    E.STOCK_OUT.value: _STOCK,
    E.SALARY_UPDATED.value: _FINANCE,
    E.PAYMENT_PROCESSED.value: _FINANCE,
    E.INVOICE_GENERATED.value: _FINANCE,
    E.TASK_ASSIGNED.value: _FIELD,
    E.TASK_COMPLETED.value: _FIELD,
    E.TASK_OVERDUE.value: _FIELD,
    E.NOTIFICATION_SENT.value: _ALL,
    E.SYSTEM_ANNOUNCEMENT.value: _ALL,
    E.ORDER_CREATED.value: _OFFICE,
    E.ORDER_UPDATED.value: _OFFICE,
    E.ORDER_CANCELLED.value: _OFFICE,
})

BROADCAST_PERMISSIONS: Mapping[str, FrozenSet[str]] = MappingProxyType({
    E.USER_CREATED.value: _ADMIN,
    E.USER_UPDATED.value: _ADMIN,
    E.USER_DELETED.value: _ADMIN,
    E.USER_CREATION_STARTED.value: _ADMIN,
    E.USER_CREATION_COMPLETED.value: _ADMIN,
    E.JOB_CARD_CREATED.value: _FIELD,
    E.JOB_CARD_UPDATED.value: _FIELD,
    E.JOB_CARD_COMPLETED.value: _FIELD,
    E.INVENTORY_UPDATED.value: _STOCK,
    E.STOCK_LOW.value: _STOCK,
    E.STOCK_OUT.value: _STOCK,
    E.SALARY_UPDATED.value: _FINANCE,
    E.PAYMENT_PROCESSED.value: _FINANCE,
    E.INVOICE_GENERATED.value: _FINANCE,
    # Assignment and overdue notices come from supervisors or the system
    E.TASK_ASSIGNED.value: _OFFICE,
    E.TASK_COMPLETED.value: _FIELD,
    E.TASK_OVERDUE.value: _OFFICE,
    E.NOTIFICATION_SENT.value: _OFFICE,
    E.SYSTEM_ANNOUNCEMENT.value: _ADMIN,
    E.ORDER_CREATED.value: _OFFICE,
    E.ORDER_UPDATED.value: _OFFICE,
    E.ORDER_CANCELLED.value: _OFFICE,
})


def eligible_roles(event_type: str) -> FrozenSet[str]:
    return EVENT_PERMISSIONS.get(str(getattr(event_type, "value", event_type)), frozenset())


def producer_roles(event_type: str) -> FrozenSet[str]:
    return BROADCAST_PERMISSIONS.get(str(getattr(event_type, "value", event_type)), frozenset())


class BroadcastPermissionError(Exception):
    code = "permission_denied"

    def __init__(self, event_type: str, role: str, required_roles: FrozenSet[str]):
        self.event_type = event_type
        self.role = role
        self.required_roles = sorted(required_roles)
        super().__init__(f"Role '{role}' may not broadcast {event_type}")


def authorize_broadcast(event_type: str, role: str) -> None:
    required = producer_roles(event_type)
    if role not in required:
        raise BroadcastPermissionError(str(getattr(event_type, "value", event_type)), role, required)


def build_message(event_type: str, payload: Optional[Dict[str, Any]], triggered_by: Optional[str], timestamp: datetime) -> Dict[str, Any]:
    data = dict(payload) if isinstance(payload, dict) else {}
    data["triggered_by"] = triggered_by
    data["timestamp"] = timestamp.isoformat()
    return {"type": str(getattr(event_type, "value", event_type)), "data": data}


@dataclass
class BroadcastResult:
    event_type: str
    eligible: int = 0
    delivered: int = 0
    dropped: List[str] = field(default_factory=list)


class Broadcaster:
    def __init__(self, registry: ConnectionRegistry, clock: Callable[[], datetime] = datetime.utcnow) -> None:
        self.registry = registry
        self._clock = clock

    def broadcast(self, event_type: str, payload: Optional[Dict[str, Any]] = None, triggered_by: Optional[str] = None) -> BroadcastResult:
        etype = str(getattr(event_type, "value", event_type))
        roles = eligible_roles(etype)
        result = BroadcastResult(event_type=etype)
        if not roles:
            logger.warning("No eligible roles for event type %s; nothing sent", etype)
            return result
        targets = self.registry.list_by_roles(roles)
        result.eligible = len(targets)
        frame = encode_sse(build_message(etype, payload, triggered_by, self._clock()))
        for client in targets:
            if self.registry.send(client, frame):
                result.delivered += 1
            else:
                result.dropped.append(client.client_id)
        logger.info(
            "Broadcast %s (triggered by %s): %d/%d eligible of %d connected, %d dropped",
            etype, triggered_by or "system", result.delivered, result.eligible, len(self.registry), len(result.dropped),
        )
        return result


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster
