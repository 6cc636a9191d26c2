from models.user import User
from models.user_lock import UserLock
from models.audit_log import AdminAuditLog

__all__ = ["User", "UserLock", "AdminAuditLog"]
