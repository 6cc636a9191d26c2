from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel


class AuditLogOut(BaseModel):
    id: int
    admin_user_id: str
    admin_email: str
    action: str
    target_user_id: Optional[str] = None
    target_email: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    success: bool
    error_message: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
