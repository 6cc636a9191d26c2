from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from security import Identity, require_admin
from schemas.lock import LockAction, LockListOut, LockOut, LockRequest
from services.lock_coordinator import LockCoordinator, get_lock_coordinator
from services.lock_store import LockRecord, LockStoreError
from typing import Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/locks", tags=["locks"])

LOCK_STATE_UNKNOWN = "Could not determine lock state"


def _lock_out(lock: Optional[LockRecord]):
    return LockOut.model_validate(lock, from_attributes=True) if lock else None


@router.get("", response_model=LockListOut)
async def list_active_locks(
    identity: Identity = Depends(require_admin),
    coordinator: LockCoordinator = Depends(get_lock_coordinator),
):
    """Active locks; expired locks of disconnected holders are swept first."""
    try:
        locks = coordinator.list_active()
    except LockStoreError:
        raise HTTPException(status_code=503, detail=LOCK_STATE_UNKNOWN)
    logger.info("Returning %d active locks to %s", len(locks), identity.holder_label)
    return {"success": True, "locks": [_lock_out(l) for l in locks]}


@router.post("")
async def manage_lock(
    body: LockRequest,
    identity: Identity = Depends(require_admin),
    coordinator: LockCoordinator = Depends(get_lock_coordinator),
):
    try:
        if body.action == LockAction.ACQUIRE:
            result = coordinator.acquire(
                body.entity_id,
                identity.holder_id,
                identity.holder_label,
                session_id=identity.session_id,
            )
            if not result.granted:
                return JSONResponse(
                    status_code=409,
                    content=jsonable_encoder({
                        "success": False,
                        "granted": False,
                        "error": "Entity is already being edited",
                        "locked_by": result.locked_by,
                    }),
                )
            return {
                "success": True,
                "granted": True,
                "extended": result.extended,
                "lock": _lock_out(result.lock),
            }
        if body.action == LockAction.RELEASE:
            result = coordinator.release(body.entity_id, identity.holder_id)
            return {"success": True, "released": result.released}
        result = coordinator.check(body.entity_id)
        return {"success": True, "is_locked": result.is_locked, "lock": _lock_out(result.lock)}
    except LockStoreError:
        raise HTTPException(status_code=503, detail=LOCK_STATE_UNKNOWN)


@router.delete("")
async def purge_expired_locks(
    identity: Identity = Depends(require_admin),
    coordinator: LockCoordinator = Depends(get_lock_coordinator),
):
    """Maintenance: remove every expired lock."""
    try:
        removed = coordinator.purge_expired()
    except LockStoreError:
        raise HTTPException(status_code=503, detail=LOCK_STATE_UNKNOWN)
    logger.info("%s purged %d expired locks", identity.holder_label, len(removed))
    return {"success": True, "cleaned": len(removed)}
