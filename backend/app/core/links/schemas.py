import uuid
from datetime import datetime
from pydantic import BaseModel, Field

_HEX_COLOR = r"^#[0-9a-fA-F]{6}$"


class LinkCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100)
    is_public: bool = False


class LinkUpdate(BaseModel):
    name: str | None = Field(None, min_length=3, max_length=255)
    slug: str | None = Field(None, min_length=1, max_length=100)
    is_public: bool | None = None
    is_active: bool | None = None


class LinkActive(BaseModel):
    is_active: bool


class LinkConfigPatch(BaseModel):
    notify_on_upload: bool | None = None
    custom_message: str | None = Field(None, max_length=500)
    requires_name: bool | None = None
    requires_message: bool | None = None


class BrandingColorsPatch(BaseModel):
    accent_color: str | None = Field(None, pattern=_HEX_COLOR)
    background_color: str | None = Field(None, pattern=_HEX_COLOR)


class BrandingLogoPatch(BaseModel):
    url: str | None = Field(None, max_length=1000)
    alt_text: str | None = Field(None, max_length=255)


class BrandingPatch(BaseModel):
    enabled: bool | None = None
    colors: BrandingColorsPatch | None = None
    logo: BrandingLogoPatch | None = None


class LinkRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    workspace_id: uuid.UUID
    slug: str
    name: str
    is_public: bool
    is_active: bool
    link_config: dict
    branding: dict
    total_uploads: int
    total_files: int
    total_size: int
    last_upload_at: datetime | None
    created_at: datetime
    updated_at: datetime


class PublicLinkRead(BaseModel):
    """What a contributor sees on the upload page."""
    model_config = {"from_attributes": True}
    slug: str
    name: str
    is_public: bool
    link_config: dict
    branding: dict


class SlugAvailability(BaseModel):
    slug: str
    available: bool


class ShareFolderWithLink(BaseModel):
    link_id: uuid.UUID
