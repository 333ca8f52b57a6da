import uuid
from dataclasses import dataclass
from pydantic import BaseModel, EmailStr, Field

from app.core.files.schemas import FileRead
from app.core.permissions.schemas import PermissionRead


@dataclass
class IncomingFile:
    filename: str
    content_type: str
    content: bytes


class ContributorDetails(BaseModel):
    email: EmailStr
    name: str | None = Field(None, max_length=255)
    message: str | None = Field(None, max_length=2000)
    folder_id: uuid.UUID | None = None
    create_contributor_folder: bool = False


class ContributionResult(BaseModel):
    link_id: uuid.UUID
    folder_id: uuid.UUID | None
    files: list[FileRead]


class EditorVerification(BaseModel):
    email: EmailStr
    code: str = Field(..., pattern=r"^\d{6}$")


class EditorSession(BaseModel):
    permission: PermissionRead
    access_token: str
    token_type: str = "bearer"
