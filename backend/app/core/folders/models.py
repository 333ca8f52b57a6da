import uuid
from sqlalchemy import ForeignKey, Index, String, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, WorkspaceScopedMixin
from app.db.deletion import OnDelete


class Folder(Base, TimestampMixin, WorkspaceScopedMixin):
    """
    Tree node addressed by parent pointer only; depth and path are derived by query.
    link_id set: part of a shareable link's tree. Null: personal.
    uploader_email set: created by an external contributor.
    """
    __tablename__ = "folders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    link_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("links.id", ondelete=OnDelete.DETACH.value), nullable=True, index=True)
    parent_folder_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("folders.id", ondelete=OnDelete.DETACH.value), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    uploader_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    uploader_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("workspace_id", "parent_folder_id", "name", name="uq_folder_sibling_name"),
        Index(
            "uq_folder_root_name", "workspace_id", "name", unique=True,
            postgresql_where=text("parent_folder_id IS NULL"),
            sqlite_where=text("parent_folder_id IS NULL"),
        ),
    )
