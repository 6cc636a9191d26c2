from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from database import get_db
from models.audit_log import AdminAuditLog
from schemas.audit import AuditLogOut
from security import Identity, require_admin

router = APIRouter(prefix="/admin/audit-logs", tags=["admin"])


def _parse_timestamp(name: str, value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid datetime for {name}: {value}")


@router.get("", response_model=List[AuditLogOut])
def list_admin_audit_logs(
    admin_user_id: Optional[str] = Query(None),
    target_user_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    success: Optional[bool] = Query(None),
    since: Optional[str] = Query(None, description="ISO8601, inclusive"),
    until: Optional[str] = Query(None, description="ISO8601, inclusive"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Newest first. Every filter is optional and they combine with AND."""
    since_dt = _parse_timestamp("since", since)
    until_dt = _parse_timestamp("until", until)

    filters = []
    if admin_user_id is not None:
        filters.append(AdminAuditLog.admin_user_id == admin_user_id)
    if target_user_id is not None:
        filters.append(AdminAuditLog.target_user_id == target_user_id)
    if action is not None:
        filters.append(AdminAuditLog.action == action)
    if success is not None:
        filters.append(AdminAuditLog.success == success)
    if since_dt is not None:
        filters.append(AdminAuditLog.created_at >= since_dt)
    if until_dt is not None:
        filters.append(AdminAuditLog.created_at <= until_dt)

    return (
        db.query(AdminAuditLog)
        .filter(*filters)
        .order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
