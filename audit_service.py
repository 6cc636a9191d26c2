from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from fastapi import Request
from models.audit_log import AdminAuditLog
from security import Identity
from datetime import datetime
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

# Recorded admin actions
ADMIN_BOOTSTRAP_SUCCESS = "ADMIN_BOOTSTRAP_SUCCESS"
ADMIN_BOOTSTRAP_FAILED = "ADMIN_BOOTSTRAP_FAILED"
USER_CREATED = "USER_CREATED"
USER_UPDATED = "USER_UPDATED"
USER_DELETED = "USER_DELETED"
USER_BANNED = "USER_BANNED"
USER_UNBANNED = "USER_UNBANNED"
ROLE_CHANGED = "ROLE_CHANGED"


class AuditService:
    def __init__(self, db: Session):
        self.db = db

    def log_admin_action(
        self,
        actor: Identity,
        action: str,
        target_user_id: Optional[str] = None,
        target_email: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> Optional[AdminAuditLog]:
        """
        Store an admin audit entry.

        Auditing never fails the admin action it describes: database errors
        are rolled back and logged instead of raised.
        """
        entry = AdminAuditLog(
            admin_user_id=actor.holder_id,
            admin_email=actor.holder_label,
            action=action,
            target_user_id=target_user_id,
            target_email=target_email,
            details=details or {},
            ip_address=request.client.host if request is not None and request.client else None,
            user_agent=request.headers.get("user-agent") if request is not None else None,
            success=success,
            error_message=error_message,
            created_at=datetime.utcnow(),
        )
        try:
            self.db.add(entry)
            self.db.commit()
            self.db.refresh(entry)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to write audit entry %s by %s: %s", action, actor.holder_label, e)
            return None
        logger.info("Audit %s by %s target=%s success=%s", action, actor.holder_label, target_email or target_user_id, success)
        return entry
