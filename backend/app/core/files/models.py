import uuid
from datetime import datetime
from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, WorkspaceScopedMixin, utcnow
from app.db.deletion import OnDelete

SCAN_STATUSES = {"pending", "clean", "infected", "failed"}
PROCESSING_STATUSES = {"pending", "processing", "completed", "failed"}


class File(Base, WorkspaceScopedMixin):
    """
    Ledger row for one stored object. Bytes live in object storage under storage_path.
    scan_status / processing_status / thumbnail_path are written back by the
    scanning and thumbnail collaborators.
    """
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    parent_folder_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("folders.id", ondelete=OnDelete.DETACH.value), nullable=True, index=True)
    link_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("links.id", ondelete=OnDelete.DETACH.value), nullable=True, index=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)

    uploader_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    uploader_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    uploader_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    scan_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    processing_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    thumbnail_path: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("workspace_id", "parent_folder_id", "filename", name="uq_file_sibling_name"),
        Index(
            "uq_file_root_name", "workspace_id", "filename", unique=True,
            postgresql_where=text("parent_folder_id IS NULL"),
            sqlite_where=text("parent_folder_id IS NULL"),
        ),
        Index("ix_files_workspace_uploaded", "workspace_id", "uploaded_at"),
        Index("ix_files_workspace_uploader_email", "workspace_id", "uploader_email"),
        CheckConstraint("scan_status IN ('pending', 'clean', 'infected', 'failed')", name="ck_files_scan_status"),
        CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed')", name="ck_files_processing_status",
        ),
    )
