"""
Contribution pipeline: an external party drops files through a link.

No account is involved. The contributor is identified only by the email they
type in, which the permission ledger either admits (public link, recorded as
an uploader) or looks up (dedicated link).
"""
import logging
import uuid
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth.security import decode_editor_token
from app.core.errors import Forbidden, LinkInactive, NotFound, Unauthorized, ValidationFailed
from app.core.files.models import File
from app.core.files import service as files_service
from app.core.files.schemas import FileCreate, FileRead
from app.core.files.storage import ObjectStorage
from app.core.folders import service as folders_service
from app.core.folders.models import Folder
from app.core.folders.schemas import FolderCreate
from app.core.links import service as links_service
from app.core.links.models import Link
from app.core.permissions import service as permissions_service
from app.core.permissions.models import Permission, ROLE_EDITOR
from app.core.uploads.schemas import ContributionResult, ContributorDetails, IncomingFile
from app.db.base import same_parent, utcnow

logger = logging.getLogger(__name__)


async def resolve_open_link(db: AsyncSession, username: str, slug: str) -> Link:
    link = await links_service.get_link_by_address(db, username, slug)
    if not link.is_active:
        raise LinkInactive("This link is not accepting uploads right now")
    return link


def _check_required_fields(link: Link, details: ContributorDetails) -> None:
    config = link.link_config or {}
    if config.get("requires_name") and not (details.name or "").strip():
        raise ValidationFailed("Your name is required for this link")
    if config.get("requires_message") and not (details.message or "").strip():
        raise ValidationFailed("A message is required for this link")


async def _target_folder(db: AsyncSession, link: Link, folder_id: uuid.UUID | None) -> uuid.UUID | None:
    if folder_id:
        folder = await folders_service.get_folder(db, link.workspace_id, folder_id)
        if not folder or folder.link_id != link.id:
            raise NotFound("Folder not found")
        return folder.id
    top = await links_service.get_top_folder(db, link)
    return top.id if top else None


async def _contributor_folder(
    db: AsyncSession, link: Link, parent_id: uuid.UUID | None, details: ContributorDetails,
) -> uuid.UUID:
    name = ((details.name or "").strip() or details.email.lower()).replace("/", "-").replace("\\", "-")
    existing = await db.execute(
        select(Folder).where(
            Folder.workspace_id == link.workspace_id,
            Folder.name == name,
            same_parent(Folder.parent_folder_id, parent_id),
        )
    )
    folder = existing.scalar_one_or_none()
    if folder:
        return folder.id
    folder = await folders_service.create_folder(db, link.workspace_id, FolderCreate(
        name=name,
        parent_folder_id=parent_id,
        link_id=link.id,
        uploader_email=details.email,
        uploader_name=details.name,
    ))
    return folder.id


async def contribute(
    db: AsyncSession,
    username: str,
    slug: str,
    details: ContributorDetails,
    incoming: list[IncomingFile],
    storage: ObjectStorage,
) -> ContributionResult:
    if not incoming:
        raise ValidationFailed("No files were sent")

    link = await resolve_open_link(db, username, slug)
    _check_required_fields(link, details)
    await permissions_service.authorize_contribution(db, link, details.email)

    folder_id = await _target_folder(db, link, details.folder_id)
    if details.create_contributor_folder:
        folder_id = await _contributor_folder(db, link, folder_id, details)

    stored, keys = [], []
    try:
        for item in incoming:
            name = await files_service.next_available_name(db, link.workspace_id, folder_id, item.filename)
            f = await files_service.create_file(db, link.workspace_id, FileCreate(
                filename=name,
                mime_type=item.content_type or "application/octet-stream",
                parent_folder_id=folder_id,
                link_id=link.id,
                uploader_email=details.email,
                uploader_name=details.name,
                uploader_message=details.message,
            ), storage, item.content)
            stored.append(f)
            keys.append(f.storage_path)
        await links_service.record_upload(db, link, len(stored), sum(f.file_size for f in stored))
    except Exception:
        # The request rolls back, so objects stored by earlier files lose their rows.
        logger.warning("Contribution to link %s failed after %d file(s), discarding them", link.id, len(stored))
        await files_service.discard_stored(storage, keys)
        raise

    logger.info("Contribution to link %s: %d file(s) into folder %s", link.id, len(stored), folder_id)
    return ContributionResult(
        link_id=link.id,
        folder_id=folder_id,
        files=[FileRead.model_validate(f) for f in stored],
    )


async def verify_editor(db: AsyncSession, username: str, slug: str, email: str, code: str) -> Permission:
    link = await links_service.get_link_by_address(db, username, slug)
    permission = await permissions_service.get_permission_for_email(db, link.id, email)
    if permission is None:
        raise NotFound("Link not found")
    return await permissions_service.verify_and_activate(db, permission, code)


# ── Editor actions ────────────────────────────────────────────────────────────

async def require_editor(db: AsyncSession, username: str, slug: str, token: str | None) -> tuple[Link, Permission]:
    """Resolves an editor session. The role is read from the ledger now, not from the token."""
    link = await links_service.get_link_by_address(db, username, slug)
    if not token:
        raise Unauthorized("Editor session required")
    try:
        permission_id, link_id = decode_editor_token(token)
    except JWTError as exc:
        logger.warning("Rejected editor token for link %s: %s", link.id, exc)
        raise Unauthorized("Invalid editor session")
    permission = await db.get(Permission, permission_id)
    if permission is None or link_id != link.id or permission.link_id != link.id:
        raise Unauthorized("Invalid editor session")
    if not permissions_service.has_role(permission, ROLE_EDITOR):
        raise Forbidden("Editor access is required")
    permission.last_activity_at = utcnow()
    await db.flush()
    return link, permission


async def list_link_files(db: AsyncSession, username: str, slug: str, token: str | None) -> list[File]:
    link, _ = await require_editor(db, username, slug, token)
    result = await db.execute(
        select(File).where(File.link_id == link.id).order_by(File.uploaded_at.desc(), File.id)
    )
    return list(result.scalars().all())


async def delete_link_file(
    db: AsyncSession, username: str, slug: str, token: str | None, file_id: uuid.UUID, storage: ObjectStorage,
) -> None:
    link, permission = await require_editor(db, username, slug, token)
    f = await files_service.get_file(db, link.workspace_id, file_id)
    if not f or f.link_id != link.id:
        raise NotFound("File not found")
    await files_service.delete_file(db, link.workspace_id, f.id, storage)
    logger.info("Editor %s removed file %s from link %s", permission.email, file_id, link.id)
