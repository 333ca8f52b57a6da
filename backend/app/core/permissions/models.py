import uuid
from datetime import datetime
from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin
from app.db.deletion import OnDelete

ROLE_OWNER = "owner"
ROLE_EDITOR = "editor"
ROLE_UPLOADER = "uploader"

# Higher rank = more privilege.
ROLE_RANK = {ROLE_UPLOADER: 1, ROLE_EDITOR: 2, ROLE_OWNER: 3}


class Permission(Base, TimestampMixin):
    """
    Access entry keyed on an unverified email, one per (link, email).
    role is the requested role; is_verified gates whether it takes effect.
    An unverified editor acts as an uploader.
    """
    __tablename__ = "permissions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    link_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("links.id", ondelete=OnDelete.CASCADE.value), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=ROLE_UPLOADER)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verification_code_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verification_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("link_id", "email", name="uq_permission_link_email"),
        CheckConstraint("role IN ('owner', 'editor', 'uploader')", name="ck_permissions_role"),
    )

    @property
    def effective_role(self) -> str:
        if self.role == ROLE_EDITOR and not self.is_verified:
            return ROLE_UPLOADER
        return self.role
