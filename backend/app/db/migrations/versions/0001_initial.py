"""Initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00
"""
from typing import Sequence, Union
import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("avatar_url", sa.Text, nullable=True),
        sa.Column("storage_used", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("username"),
    )

    op.create_table(
        "workspaces",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("user_id", sa.Uuid, nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default="My Workspace"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "links",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("workspace_id", sa.Uuid, nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_public", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("link_config", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("branding", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("total_uploads", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_files", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_size", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("last_upload_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )
    op.create_index("ix_links_workspace_id", "links", ["workspace_id"])

    op.create_table(
        "folders",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("workspace_id", sa.Uuid, nullable=False),
        sa.Column("link_id", sa.Uuid, nullable=True),
        sa.Column("parent_folder_id", sa.Uuid, nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("uploader_email", sa.String(255), nullable=True),
        sa.Column("uploader_name", sa.String(255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["link_id"], ["links.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["parent_folder_id"], ["folders.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "parent_folder_id", "name", name="uq_folder_sibling_name"),
    )
    op.create_index("ix_folders_workspace_id", "folders", ["workspace_id"])
    op.create_index("ix_folders_link_id", "folders", ["link_id"])
    op.create_index("ix_folders_parent_folder_id", "folders", ["parent_folder_id"])
    # NULL parents never collide under the unique constraint; the root level gets its own index.
    op.create_index(
        "uq_folder_root_name", "folders", ["workspace_id", "name"],
        unique=True, postgresql_where=sa.text("parent_folder_id IS NULL"),
    )

    op.create_table(
        "files",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("workspace_id", sa.Uuid, nullable=False),
        sa.Column("parent_folder_id", sa.Uuid, nullable=True),
        sa.Column("link_id", sa.Uuid, nullable=True),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("file_size", sa.BigInteger, nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=False),
        sa.Column("storage_path", sa.String(1000), nullable=False),
        sa.Column("checksum", sa.String(64), nullable=True),
        sa.Column("uploader_email", sa.String(255), nullable=True),
        sa.Column("uploader_name", sa.String(255), nullable=True),
        sa.Column("uploader_message", sa.Text, nullable=True),
        sa.Column("scan_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("thumbnail_path", sa.String(1000), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_folder_id"], ["folders.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["link_id"], ["links.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "parent_folder_id", "filename", name="uq_file_sibling_name"),
        sa.CheckConstraint("scan_status IN ('pending', 'clean', 'infected', 'failed')", name="ck_files_scan_status"),
        sa.CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed')", name="ck_files_processing_status",
        ),
    )
    op.create_index("ix_files_workspace_id", "files", ["workspace_id"])
    op.create_index("ix_files_parent_folder_id", "files", ["parent_folder_id"])
    op.create_index("ix_files_link_id", "files", ["link_id"])
    op.create_index(
        "uq_file_root_name", "files", ["workspace_id", "filename"],
        unique=True, postgresql_where=sa.text("parent_folder_id IS NULL"),
    )
    # by-date listing and by-email filtering across the whole tree
    op.create_index("ix_files_workspace_uploaded", "files", ["workspace_id", "uploaded_at"])
    op.create_index("ix_files_workspace_uploader_email", "files", ["workspace_id", "uploader_email"])

    # ILIKE '%term%' search
    op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")
    for column in ("filename", "uploader_email", "uploader_name"):
        op.create_index(
            f"ix_files_{column}_trgm", "files", [column],
            postgresql_using="gin", postgresql_ops={column: "gin_trgm_ops"},
        )

    op.create_table(
        "permissions",
        sa.Column("id", sa.Uuid, nullable=False),
        sa.Column("link_id", sa.Uuid, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="uploader"),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verification_code_hash", sa.String(255), nullable=True),
        sa.Column("verification_expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["link_id"], ["links.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("link_id", "email", name="uq_permission_link_email"),
        sa.CheckConstraint("role IN ('owner', 'editor', 'uploader')", name="ck_permissions_role"),
    )
    op.create_index("ix_permissions_link_id", "permissions", ["link_id"])
    op.create_index("ix_permissions_email", "permissions", ["email"])


def downgrade() -> None:
    op.drop_table("permissions")
    for column in ("filename", "uploader_email", "uploader_name"):
        op.drop_index(f"ix_files_{column}_trgm", table_name="files")
    op.drop_table("files")
    op.drop_table("folders")
    op.drop_table("links")
    op.drop_table("workspaces")
    op.drop_table("users")
