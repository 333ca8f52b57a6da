import uuid
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator


def _clean_filename(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("filename must not be empty")
    if "/" in v or "\\" in v:
        raise ValueError("filename must not contain path separators")
    return v


class FileRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    workspace_id: uuid.UUID
    parent_folder_id: uuid.UUID | None
    link_id: uuid.UUID | None
    filename: str
    file_size: int
    mime_type: str
    storage_path: str
    checksum: str | None
    uploader_email: str | None
    uploader_name: str | None
    uploader_message: str | None
    scan_status: str
    processing_status: str
    thumbnail_path: str | None
    uploaded_at: datetime
    updated_at: datetime


class FileCreate(BaseModel):
    filename: str = Field(..., max_length=255)
    mime_type: str = "application/octet-stream"
    parent_folder_id: uuid.UUID | None = None
    link_id: uuid.UUID | None = None
    checksum: str | None = Field(None, max_length=64)
    uploader_email: EmailStr | None = None
    uploader_name: str | None = Field(None, max_length=255)
    uploader_message: str | None = None

    @field_validator("filename")
    @classmethod
    def check_filename(cls, v: str) -> str:
        return _clean_filename(v)


class FileUpdate(BaseModel):
    filename: str = Field(..., max_length=255)

    @field_validator("filename")
    @classmethod
    def check_filename(cls, v: str) -> str:
        return _clean_filename(v)


class FileMove(BaseModel):
    file_ids: list[uuid.UUID] = Field(..., min_length=1)
    target_folder_id: uuid.UUID | None = None


class BulkDeleteRequest(BaseModel):
    file_ids: list[uuid.UUID] = Field(..., min_length=1)


class BulkDeleteFailure(BaseModel):
    file_id: uuid.UUID
    reason: str


class BulkDeleteResult(BaseModel):
    deleted: list[uuid.UUID] = []
    failed: list[BulkDeleteFailure] = []


class ScanResult(BaseModel):
    scan_status: str


class ThumbnailResult(BaseModel):
    thumbnail_path: str | None = None
    processing_status: str = "completed"
