from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class TargetEntity(BaseModel):
    type: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None


class BroadcastRequest(BaseModel):
    event_type: str = Field(min_length=1)
    data: Optional[Dict[str, Any]] = None
    target_entity: Optional[TargetEntity] = None
