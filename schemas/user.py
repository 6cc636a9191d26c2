
from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import List, Literal, Optional

RoleName = Literal["admin", "manager", "technician", "accounting", "user"]

class UserBase(BaseModel):
    email: EmailStr

class UserSignup(UserBase):
    password: str = Field(min_length=8)
    name: str | None = None

class UserCreate(UserSignup):
    role: RoleName = "user"

class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    role: RoleName | None = None

class User(UserBase):
    id: int
    name: str
    role: str
    banned: bool
    email_verified: bool
    created_at: datetime | None
    updated_at: datetime | None
    class Config:
        from_attributes = True

class AdminUserRow(User):
    # Label of the admin currently holding the edit lock, if any
    locked_by: str | None = None

class BulkBanRequest(BaseModel):
    user_ids: List[int] = Field(min_length=1)
    banned: bool = True

class BulkUpdateRequest(BaseModel):
    user_ids: List[int] = Field(min_length=1)
    email_verified: bool | None = None

class Token(BaseModel):
    access_token: str
    token_type: str
    refresh_token: str

class RefreshRequest(BaseModel):
    refresh_token: str
