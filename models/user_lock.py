import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Index
from database import Base


def _lock_id() -> str:
    return f"lock_{uuid.uuid4().hex}"


class UserLock(Base):
    """Time-bounded exclusive edit claim on one entity (usually a user row).

    ``locked_entity_id`` is unique: a second row for the same entity can only
    be written after the first is deleted, which is what keeps two racing
    acquirers from both succeeding.
    """
    __tablename__ = "user_locks"
    __table_args__ = (
        Index("ix_user_locks_holder_expires", "lock_holder_id", "expires_at"),
    )

    id = Column(String(64), primary_key=True, default=_lock_id)
    locked_entity_id = Column(String(128), nullable=False, unique=True, index=True)
    lock_holder_id = Column(String(128), nullable=False)
    lock_holder_label = Column(String(255), nullable=False)  # e.g. admin email, for display
    lock_kind = Column(String(20), nullable=False, default="edit")  # 'edit', 'create'
    originating_session_id = Column(String(128), nullable=True)  # diagnostics only
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
