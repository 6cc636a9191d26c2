from datetime import datetime
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from database import get_db
from models.user import User
from schemas.user import AdminUserRow, BulkBanRequest, BulkUpdateRequest, UserCreate, UserUpdate, User as UserOut
from security import Identity, require_admin
from auth_service import create_user_as_admin, get_user_by_id
from audit_service import AuditService, USER_CREATED, USER_UPDATED, USER_DELETED, USER_BANNED, USER_UNBANNED, ROLE_CHANGED
from event_bus import RealtimeEventType
from services.lock_coordinator import LockCoordinator, get_lock_coordinator
from services.lock_store import LockStoreError
from endpoints.locks import LOCK_STATE_UNKNOWN
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/users", tags=["admin"])


def _user_event_payload(user: User) -> dict:
    return {
        "user_id": str(user.id),
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "banned": user.banned,
        "email_verified": user.email_verified,
    }


def _holder_or_503(coordinator: LockCoordinator, entity_id: str):
    try:
        return coordinator.holder_of(entity_id)
    except LockStoreError:
        raise HTTPException(status_code=503, detail=LOCK_STATE_UNKNOWN)


@router.get("", response_model=List[AdminUserRow])
async def list_users(
    identity: Identity = Depends(require_admin),
    coordinator: LockCoordinator = Depends(get_lock_coordinator),
    db: Session = Depends(get_db),
):
    """All users, each with the label of the admin currently editing it."""
    try:
        owners = {l.locked_entity_id: l.lock_holder_label for l in coordinator.list_active()}
    except LockStoreError:
        raise HTTPException(status_code=503, detail=LOCK_STATE_UNKNOWN)
    users = db.query(User).order_by(User.created_at.asc(), User.id.asc()).all()
    rows = []
    for u in users:
        row = AdminUserRow.model_validate(u)
        row.locked_by = owners.get(str(u.id))
        rows.append(row)
    return rows


@router.post("", response_model=UserOut, status_code=201)
async def create_user(
    body: UserCreate,
    request: Request,
    identity: Identity = Depends(require_admin),
    coordinator: LockCoordinator = Depends(get_lock_coordinator),
    db: Session = Depends(get_db),
):
    user = await create_user_as_admin(db, body)
    AuditService(db).log_admin_action(
        identity, USER_CREATED,
        target_user_id=str(user.id), target_email=user.email,
        details={"role": user.role}, request=request,
    )
    coordinator.broadcaster.broadcast(RealtimeEventType.USER_CREATED, _user_event_payload(user), triggered_by=identity.holder_label)
    return user


# Declared before PATCH /{user_id} so the path parameter does not capture it
@router.patch("/bulk-update")
async def bulk_update(
    body: BulkUpdateRequest,
    request: Request,
    identity: Identity = Depends(require_admin),
    coordinator: LockCoordinator = Depends(get_lock_coordinator),
    db: Session = Depends(get_db),
):
    """Set account flags on many users, skipping ones another admin is editing."""
    users = db.query(User).filter(User.id.in_(body.user_ids)).all()
    if not users:
        raise HTTPException(status_code=404, detail="No users found")
    found = {u.id for u in users}
    changes = body.model_dump(exclude={"user_ids"}, exclude_none=True)
    updated, skipped = [], []
    for missing_id in sorted(set(body.user_ids) - found):
        skipped.append({"user_id": missing_id, "reason": "not_found"})
    for user in users:
        lock = _holder_or_503(coordinator, str(user.id))
        if lock is not None and lock.lock_holder_id != identity.holder_id:
            skipped.append({"user_id": user.id, "reason": "locked", "locked_by": lock.lock_holder_label})
            continue
        for field, value in changes.items():
            setattr(user, field, value)
        user.updated_at = datetime.utcnow()
        updated.append(user)
    db.commit()

    audit = AuditService(db)
    for user in updated:
        db.refresh(user)
        audit.log_admin_action(
            identity, USER_UPDATED,
            target_user_id=str(user.id), target_email=user.email,
            details=changes, request=request,
        )
        coordinator.broadcaster.broadcast(RealtimeEventType.USER_UPDATED, _user_event_payload(user), triggered_by=identity.holder_label)
    logger.info("%s bulk-updated %d users (%d skipped): %s", identity.holder_label, len(updated), len(skipped), changes)
    return {
        "success": True,
        "message": f"Updated {len(updated)} user(s) successfully",
        "updated": [u.id for u in updated],
        "skipped": skipped,
        "users": [UserOut.model_validate(u).model_dump(mode="json") for u in updated],
        "updated_by": identity.holder_label,
    }


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: int,
    body: UserUpdate,
    request: Request,
    identity: Identity = Depends(require_admin),
    coordinator: LockCoordinator = Depends(get_lock_coordinator),
    db: Session = Depends(get_db),
):
    """Edit a user. The caller must hold the active edit lock on that user."""
    user = await get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    lock = _holder_or_503(coordinator, str(user_id))
    if lock is None:
        raise HTTPException(status_code=409, detail="Acquire the edit lock before updating this user")
    if lock.lock_holder_id != identity.holder_id:
        raise HTTPException(status_code=409, detail=f"User is being edited by {lock.lock_holder_label}")

    if body.email is not None and str(user_id) == identity.holder_id:
        raise HTTPException(status_code=400, detail="Cannot update your own email address")

    changes = body.model_dump(exclude_none=True)
    previous_role = user.role
    for field, value in changes.items():
        setattr(user, field, value)
    user.updated_at = datetime.utcnow()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Email address already exists")
    db.refresh(user)

    audit = AuditService(db)
    audit.log_admin_action(
        identity, USER_UPDATED,
        target_user_id=str(user.id), target_email=user.email,
        details={"fields": sorted(changes)}, request=request,
    )
    if "role" in changes and previous_role != user.role:
        audit.log_admin_action(
            identity, ROLE_CHANGED,
            target_user_id=str(user.id), target_email=user.email,
            details={"from": previous_role, "to": user.role}, request=request,
        )
    coordinator.broadcaster.broadcast(RealtimeEventType.USER_UPDATED, _user_event_payload(user), triggered_by=identity.holder_label)
    return user


@router.post("/bulk-ban")
async def bulk_ban(
    body: BulkBanRequest,
    request: Request,
    identity: Identity = Depends(require_admin),
    coordinator: LockCoordinator = Depends(get_lock_coordinator),
    db: Session = Depends(get_db),
):
    """Ban or unban many users, skipping ones another admin is editing."""
    users = db.query(User).filter(User.id.in_(body.user_ids)).all()
    found = {u.id for u in users}
    updated, skipped = [], []
    for missing_id in sorted(set(body.user_ids) - found):
        skipped.append({"user_id": missing_id, "reason": "not_found"})
    for user in users:
        if str(user.id) == identity.holder_id:
            skipped.append({"user_id": user.id, "reason": "self"})
            continue
        lock = _holder_or_503(coordinator, str(user.id))
        if lock is not None and lock.lock_holder_id != identity.holder_id:
            skipped.append({"user_id": user.id, "reason": "locked", "locked_by": lock.lock_holder_label})
            continue
        user.banned = body.banned
        user.updated_at = datetime.utcnow()
        updated.append(user)
    db.commit()

    audit = AuditService(db)
    action = USER_BANNED if body.banned else USER_UNBANNED
    for user in updated:
        db.refresh(user)
        audit.log_admin_action(identity, action, target_user_id=str(user.id), target_email=user.email, request=request)
        coordinator.broadcaster.broadcast(RealtimeEventType.USER_UPDATED, _user_event_payload(user), triggered_by=identity.holder_label)
    logger.info("%s set banned=%s on %d users (%d skipped)", identity.holder_label, body.banned, len(updated), len(skipped))
    return {"success": True, "updated": [u.id for u in updated], "skipped": skipped}


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    request: Request,
    identity: Identity = Depends(require_admin),
    coordinator: LockCoordinator = Depends(get_lock_coordinator),
    db: Session = Depends(get_db),
):
    user = await get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if str(user_id) == identity.holder_id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")

    entity_id = str(user_id)
    lock = _holder_or_503(coordinator, entity_id)
    if lock is not None and lock.lock_holder_id != identity.holder_id:
        raise HTTPException(status_code=409, detail=f"User is being edited by {lock.lock_holder_label}")

    payload = _user_event_payload(user)
    db.delete(user)
    db.commit()
    if lock is not None:
        try:
            coordinator.release(entity_id, identity.holder_id)
        except LockStoreError:
            raise HTTPException(status_code=503, detail=LOCK_STATE_UNKNOWN)

    AuditService(db).log_admin_action(
        identity, USER_DELETED,
        target_user_id=entity_id, target_email=payload["email"], request=request,
    )
    coordinator.broadcaster.broadcast(RealtimeEventType.USER_DELETED, payload, triggered_by=identity.holder_label)
    return {"success": True, "deleted": user_id}
