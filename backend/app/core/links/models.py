import uuid
from datetime import datetime
from sqlalchemy import BigInteger, Boolean, DateTime, Integer, JSON, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, WorkspaceScopedMixin

JSONType = JSON().with_variant(JSONB(), "postgresql")

DEFAULT_LINK_CONFIG = {
    "notify_on_upload": True,
    "custom_message": None,
    "requires_name": False,
    "requires_message": False,
}

DEFAULT_BRANDING = {
    "enabled": False,
    "colors": None,
    "logo": None,
}


class Link(Base, TimestampMixin, WorkspaceScopedMixin):
    """
    Shareable, URL-addressable root folder: {username}/{slug}.
    is_public: anyone may contribute. Otherwise only emails holding a permission row.
    is_active: paused links keep permissions and content but reject contributions.
    """
    __tablename__ = "links"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    link_config: Mapped[dict] = mapped_column(JSONType, nullable=False, default=lambda: dict(DEFAULT_LINK_CONFIG))
    branding: Mapped[dict] = mapped_column(JSONType, nullable=False, default=lambda: dict(DEFAULT_BRANDING))

    total_uploads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_upload_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
