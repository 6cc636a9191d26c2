from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class LockAction(str, Enum):
    ACQUIRE = "acquire"
    RELEASE = "release"
    CHECK = "check"


class LockRequest(BaseModel):
    entity_id: str = Field(min_length=1)
    action: LockAction


class LockOut(BaseModel):
    id: str
    locked_entity_id: str
    lock_holder_id: str
    lock_holder_label: str
    lock_kind: str
    originating_session_id: Optional[str] = None
    expires_at: datetime
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LockListOut(BaseModel):
    success: bool = True
    locks: List[LockOut]
