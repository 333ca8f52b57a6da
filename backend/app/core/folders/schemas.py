import uuid
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator


def _clean_name(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("name must not be empty")
    if "/" in v or "\\" in v:
        raise ValueError("name must not contain path separators")
    return v


class FolderCreate(BaseModel):
    name: str = Field(..., max_length=255)
    parent_folder_id: uuid.UUID | None = None
    link_id: uuid.UUID | None = None
    uploader_email: EmailStr | None = None
    uploader_name: str | None = Field(None, max_length=255)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return _clean_name(v)


class FolderUpdate(BaseModel):
    name: str = Field(..., max_length=255)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return _clean_name(v)


class FolderMove(BaseModel):
    new_parent_folder_id: uuid.UUID | None = None


class FolderRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    workspace_id: uuid.UUID
    link_id: uuid.UUID | None
    parent_folder_id: uuid.UUID | None
    name: str
    uploader_email: str | None
    uploader_name: str | None
    created_at: datetime
    updated_at: datetime


class FolderDepthRead(BaseModel):
    folder_id: uuid.UUID
    depth: int


class TreeFileRead(BaseModel):
    id: uuid.UUID
    filename: str
    file_size: int
    mime_type: str
    storage_path: str
    parent_folder_id: uuid.UUID | None
    folder_path: list[str]
