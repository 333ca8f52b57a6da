import uuid
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, EmailStr, Field


class PermissionCreate(BaseModel):
    email: EmailStr
    role: Literal["editor", "uploader"] = "uploader"


class PermissionRoleUpdate(BaseModel):
    role: Literal["editor", "uploader"]


class VerificationCode(BaseModel):
    code: str = Field(..., pattern=r"^\d{6}$")


class PermissionRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    link_id: uuid.UUID
    email: str
    role: str
    effective_role: str
    is_verified: bool
    verified_at: datetime | None
    last_activity_at: datetime | None
    created_at: datetime
