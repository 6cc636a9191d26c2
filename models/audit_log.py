from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON as GenericJSON
import os
from database import Base


# Determine if using SQLite (e.g., in tests) to fallback from JSONB
_DATABASE_URL = os.getenv("DATABASE_URL", "")
if _DATABASE_URL.startswith("sqlite") or _DATABASE_URL == "" or os.getenv("TESTING"):
    JSONType = GenericJSON  # fallback for tests
else:
    JSONType = JSONB


class AdminAuditLog(Base):
    """Admin action trail (actor -> target user)."""
    __tablename__ = "admin_audit_logs"
    __table_args__ = (
        Index("ix_admin_audit_logs_admin_action_created", "admin_user_id", "action", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    admin_user_id = Column(String(128), nullable=False)
    admin_email = Column(String(255), nullable=False)
    action = Column(String(50), nullable=False)
    target_user_id = Column(String(128), nullable=True, index=True)
    target_email = Column(String(255), nullable=True)
    details = Column(JSONType, nullable=True)  # JSONB in prod, JSON in tests
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
