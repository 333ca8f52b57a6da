import logging
import os
import uuid
from datetime import datetime
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict, NotFound, StorageError, ValidationFailed
from app.core.files.models import File, PROCESSING_STATUSES, SCAN_STATUSES
from app.core.files.schemas import BulkDeleteFailure, BulkDeleteResult, FileCreate
from app.core.files.storage import ObjectStorage, build_storage_key
from app.core.folders.service import require_folder
from app.core.links.models import Link
from app.core.users.models import User
from app.core.workspaces.models import Workspace
from app.db.base import same_parent
from app.db.deletion import delete_with_policies
from app.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_MAX_NAME_SUFFIX = 1000


# ── Storage accounting ────────────────────────────────────────────────────────

async def adjust_storage_used(db: AsyncSession, workspace_id: uuid.UUID, delta: int) -> None:
    if delta == 0:
        return
    owner_id = select(Workspace.user_id).where(Workspace.id == workspace_id).scalar_subquery()
    new_value = User.storage_used + delta
    await db.execute(
        update(User)
        .where(User.id == owner_id)
        .values(storage_used=case((new_value > 0, new_value), else_=0))
        .execution_options(synchronize_session="fetch")
    )


# ── Lookups ───────────────────────────────────────────────────────────────────

async def get_file(db: AsyncSession, workspace_id: uuid.UUID, file_id: uuid.UUID) -> File | None:
    result = await db.execute(select(File).where(File.id == file_id, File.workspace_id == workspace_id))
    return result.scalar_one_or_none()


async def require_file(db: AsyncSession, workspace_id: uuid.UUID, file_id: uuid.UUID) -> File:
    f = await get_file(db, workspace_id, file_id)
    if not f:
        raise NotFound("File not found")
    return f


async def check_duplicate_name(
    db: AsyncSession,
    workspace_id: uuid.UUID,
    parent_folder_id: uuid.UUID | None,
    filename: str,
    exclude_file_id: uuid.UUID | None = None,
) -> bool:
    q = select(File.id).where(
        File.workspace_id == workspace_id,
        File.filename == filename,
        same_parent(File.parent_folder_id, parent_folder_id),
    )
    if exclude_file_id:
        q = q.where(File.id != exclude_file_id)
    return (await db.execute(q.limit(1))).first() is not None


async def next_available_name(
    db: AsyncSession, workspace_id: uuid.UUID, parent_folder_id: uuid.UUID | None, filename: str,
) -> str:
    """``report.pdf`` -> ``report (1).pdf`` -> ``report (2).pdf`` ..."""
    if not await check_duplicate_name(db, workspace_id, parent_folder_id, filename):
        return filename
    stem, ext = os.path.splitext(filename)
    for n in range(1, _MAX_NAME_SUFFIX + 1):
        candidate = f"{stem} ({n}){ext}"
        if not await check_duplicate_name(db, workspace_id, parent_folder_id, candidate):
            return candidate
    raise Conflict("Too many files with this name in this location")


# ── Listing & search ──────────────────────────────────────────────────────────

def _newest_first(q):
    return q.order_by(File.uploaded_at.desc(), File.id)


async def list_by_folder(db: AsyncSession, workspace_id: uuid.UUID, parent_folder_id: uuid.UUID | None) -> list[File]:
    result = await db.execute(_newest_first(
        select(File).where(File.workspace_id == workspace_id, same_parent(File.parent_folder_id, parent_folder_id))
    ))
    return list(result.scalars().all())


async def list_by_workspace(db: AsyncSession, workspace_id: uuid.UUID, limit: int = 100, offset: int = 0) -> list[File]:
    result = await db.execute(
        _newest_first(select(File).where(File.workspace_id == workspace_id)).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


async def list_by_uploader_email(db: AsyncSession, workspace_id: uuid.UUID, email: str) -> list[File]:
    result = await db.execute(_newest_first(
        select(File).where(File.workspace_id == workspace_id, func.lower(File.uploader_email) == email.strip().lower())
    ))
    return list(result.scalars().all())


async def list_by_date_range(
    db: AsyncSession, workspace_id: uuid.UUID, start: datetime, end: datetime | None = None,
) -> list[File]:
    q = select(File).where(File.workspace_id == workspace_id, File.uploaded_at >= start)
    if end is not None:
        if end < start:
            raise ValidationFailed("End of range is before its start")
        q = q.where(File.uploaded_at <= end)
    result = await db.execute(_newest_first(q))
    return list(result.scalars().all())


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def search(db: AsyncSession, workspace_id: uuid.UUID, query: str, limit: int = 50) -> list[File]:
    """Partial, case-insensitive match on filename and uploader; best filename matches first."""
    query = query.strip()
    if not query:
        return []
    term = _escape_like(query)
    contains = f"%{term}%"
    rank = case(
        (func.lower(File.filename) == query.lower(), 0),
        (File.filename.ilike(f"{term}%", escape="\\"), 1),
        else_=2,
    )
    result = await db.execute(
        select(File)
        .where(
            File.workspace_id == workspace_id,
            File.filename.ilike(contains, escape="\\")
            | File.uploader_email.ilike(contains, escape="\\")
            | File.uploader_name.ilike(contains, escape="\\"),
        )
        .order_by(rank, File.uploaded_at.desc(), File.id)
        .limit(limit)
    )
    return list(result.scalars().all())


# ── Writes ────────────────────────────────────────────────────────────────────

async def create_file(
    db: AsyncSession,
    workspace_id: uuid.UUID,
    data: FileCreate,
    storage: ObjectStorage,
    content: bytes,
) -> File:
    if data.parent_folder_id:
        await require_folder(db, workspace_id, data.parent_folder_id)
    if data.link_id:
        owned = await db.execute(select(Link.id).where(Link.id == data.link_id, Link.workspace_id == workspace_id))
        if not owned.first():
            raise NotFound("Link not found")
    if await check_duplicate_name(db, workspace_id, data.parent_folder_id, data.filename):
        logger.warning("File name collision: workspace=%s parent=%s name=%r", workspace_id, data.parent_folder_id, data.filename)
        raise Conflict("A file with this name already exists in this location")

    key = build_storage_key(workspace_id, data.filename)
    await storage.put(key, content, data.mime_type)

    f = File(
        workspace_id=workspace_id,
        storage_path=key,
        file_size=len(content),
        **data.model_dump(exclude={"uploader_email"}),
        uploader_email=data.uploader_email.lower() if data.uploader_email else None,
    )
    try:
        async with db.begin_nested():
            db.add(f)
            await db.flush()
    except IntegrityError:
        await _discard_stored(storage, key)
        raise Conflict("A file with this name already exists in this location")
    except Exception:
        await _discard_stored(storage, key)
        raise

    await adjust_storage_used(db, workspace_id, f.file_size)
    await db.refresh(f)
    logger.info("File stored: id=%s workspace=%s size=%d", f.id, workspace_id, f.file_size)
    return f


async def _discard_stored(storage: ObjectStorage, key: str) -> None:
    try:
        await storage.delete(key)
    except StorageError:
        logger.error("Orphaned storage object %s left behind after failed insert", key)


async def discard_stored(storage: ObjectStorage, keys: list[str]) -> None:
    for key in keys:
        await _discard_stored(storage, key)


async def commit_or_discard(db: AsyncSession, storage: ObjectStorage, keys: list[str]) -> None:
    """Commits the request transaction; if that fails, objects stored for it are removed."""
    try:
        await db.commit()
    except Exception:
        logger.error("Commit failed, discarding %d stored object(s)", len(keys))
        await discard_stored(storage, keys)
        raise


async def rename_file(db: AsyncSession, f: File, filename: str) -> File:
    filename = filename.strip()
    if not filename:
        raise ValidationFailed("Filename must not be empty")
    if filename == f.filename:
        return f
    if await check_duplicate_name(db, f.workspace_id, f.parent_folder_id, filename, f.id):
        raise Conflict("A file with this name already exists in this location")
    f.filename = filename
    try:
        async with db.begin_nested():
            await db.flush()
    except IntegrityError:
        raise Conflict("A file with this name already exists in this location")
    await db.refresh(f)
    return f


async def move_files(
    db: AsyncSession,
    workspace_id: uuid.UUID,
    file_ids: list[uuid.UUID],
    target_folder_id: uuid.UUID | None,
) -> list[File]:
    """Metadata only. Storage keys do not encode the folder."""
    if target_folder_id:
        await require_folder(db, workspace_id, target_folder_id)

    moved, names = [], set()
    for file_id in dict.fromkeys(file_ids):
        f = await require_file(db, workspace_id, file_id)
        if f.parent_folder_id == target_folder_id:
            continue
        if f.filename in names or await check_duplicate_name(db, workspace_id, target_folder_id, f.filename, f.id):
            raise Conflict(f"A file named {f.filename!r} already exists in the destination")
        names.add(f.filename)
        moved.append(f)

    for f in moved:
        f.parent_folder_id = target_folder_id
    try:
        async with db.begin_nested():
            await db.flush()
    except IntegrityError:
        raise Conflict("A file with this name already exists in the destination")
    logger.info("Moved %d file(s) to folder=%s in workspace=%s", len(moved), target_folder_id, workspace_id)
    return moved


async def delete_stored_objects(storage: ObjectStorage, storage_path: str, thumbnail_path: str | None) -> None:
    """Primary object first: if that fails nothing is removed and the row stays valid."""
    await storage.delete(storage_path)
    if thumbnail_path:
        try:
            await storage.delete(thumbnail_path)
        except StorageError:
            logger.error("Orphaned thumbnail %s left behind for deleted object %s", thumbnail_path, storage_path)


async def delete_file(db: AsyncSession, workspace_id: uuid.UUID, file_id: uuid.UUID, storage: ObjectStorage) -> None:
    f = await require_file(db, workspace_id, file_id)
    # Storage first: a failure here leaves the row, never an orphaned object.
    await delete_stored_objects(storage, f.storage_path, f.thumbnail_path)
    size = f.file_size
    await delete_with_policies(db, File, [f.id])
    await adjust_storage_used(db, workspace_id, -size)
    logger.info("File deleted: id=%s workspace=%s", file_id, workspace_id)


async def bulk_delete_files(
    db: AsyncSession, workspace_id: uuid.UUID, file_ids: list[uuid.UUID], storage: ObjectStorage,
) -> BulkDeleteResult:
    file_ids = list(dict.fromkeys(file_ids))
    if len(file_ids) > settings.MAX_BULK_DELETE:
        raise ValidationFailed(f"At most {settings.MAX_BULK_DELETE} files can be deleted at once")

    result = await db.execute(select(File).where(File.workspace_id == workspace_id, File.id.in_(file_ids)))
    found = {f.id: f for f in result.scalars().all()}

    outcome = BulkDeleteResult()
    freed = 0
    for file_id in file_ids:
        f = found.get(file_id)
        if not f:
            outcome.failed.append(BulkDeleteFailure(file_id=file_id, reason="not_found"))
            continue
        try:
            await delete_stored_objects(storage, f.storage_path, f.thumbnail_path)
        except StorageError:
            outcome.failed.append(BulkDeleteFailure(file_id=file_id, reason="storage_error"))
            continue
        outcome.deleted.append(file_id)
        freed += f.file_size

    await delete_with_policies(db, File, outcome.deleted)
    await adjust_storage_used(db, workspace_id, -freed)
    if outcome.failed:
        logger.warning("Bulk delete in workspace=%s: %d deleted, %d failed", workspace_id, len(outcome.deleted), len(outcome.failed))
    return outcome


# ── Collaborator callbacks ────────────────────────────────────────────────────

async def _require_any_file(db: AsyncSession, file_id: uuid.UUID) -> File:
    f = await db.get(File, file_id)
    if not f:
        raise NotFound("File not found")
    return f


async def record_scan_result(db: AsyncSession, file_id: uuid.UUID, scan_status: str) -> File:
    if scan_status not in SCAN_STATUSES:
        raise ValidationFailed(f"Unknown scan status {scan_status!r}")
    f = await _require_any_file(db, file_id)
    f.scan_status = scan_status
    if scan_status == "infected":
        logger.warning("Scanner flagged file %s in workspace %s as infected", f.id, f.workspace_id)
    await db.flush()
    await db.refresh(f)
    return f


async def record_thumbnail(
    db: AsyncSession, file_id: uuid.UUID, thumbnail_path: str | None, processing_status: str = "completed",
) -> File:
    if processing_status not in PROCESSING_STATUSES:
        raise ValidationFailed(f"Unknown processing status {processing_status!r}")
    f = await _require_any_file(db, file_id)
    f.processing_status = processing_status
    if thumbnail_path:
        f.thumbnail_path = thumbnail_path
    await db.flush()
    await db.refresh(f)
    return f
