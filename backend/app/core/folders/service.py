import logging
import uuid
from sqlalchemy import Integer, func, literal_column, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.core.errors import Conflict, CyclicMove, DepthExceeded, NotFound, ValidationFailed
from app.core.files.models import File
from app.core.folders.models import Folder
from app.core.folders.schemas import FolderCreate, TreeFileRead
from app.core.links.models import Link
from app.db.base import same_parent
from app.db.deletion import delete_with_policies
from app.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Bound on recursive traversals so a corrupted parent chain cannot loop forever.
_TRAVERSAL_LIMIT = 256


# ── Tree traversal ────────────────────────────────────────────────────────────

def _ancestors_cte(folder_id: uuid.UUID):
    """The folder itself at level 0, its parent at level 1, and so on up to the root."""
    cte = (
        select(Folder.id, Folder.parent_folder_id, literal_column("0", Integer).label("level"))
        .where(Folder.id == folder_id)
        .cte("ancestors", recursive=True)
    )
    up = cte.alias("up")
    parent = aliased(Folder)
    return cte.union_all(
        select(parent.id, parent.parent_folder_id, (up.c.level + 1).label("level"))
        .where(parent.id == up.c.parent_folder_id, up.c.level < _TRAVERSAL_LIMIT)
    )


def _descendants_cte(folder_id: uuid.UUID):
    """Every folder below ``folder_id``; direct children at level 1."""
    cte = (
        select(Folder.id, literal_column("1", Integer).label("level"))
        .where(Folder.parent_folder_id == folder_id)
        .cte("descendants", recursive=True)
    )
    down = cte.alias("down")
    child = aliased(Folder)
    return cte.union_all(
        select(child.id, (down.c.level + 1).label("level"))
        .where(child.parent_folder_id == down.c.id, down.c.level < _TRAVERSAL_LIMIT)
    )


async def get_depth(db: AsyncSession, folder_id: uuid.UUID) -> int:
    ancestors = _ancestors_cte(folder_id)
    depth = (await db.execute(select(func.max(ancestors.c.level)))).scalar_one_or_none()
    if depth is None:
        raise NotFound("Folder not found")
    return depth


async def get_ancestor_path(db: AsyncSession, folder_id: uuid.UUID) -> list[Folder]:
    """Breadcrumb: root first, ``folder_id`` last."""
    ancestors = _ancestors_cte(folder_id)
    result = await db.execute(
        select(Folder).join(ancestors, Folder.id == ancestors.c.id).order_by(ancestors.c.level.desc())
    )
    return list(result.scalars().all())


async def get_descendants(db: AsyncSession, folder_id: uuid.UUID) -> list[Folder]:
    descendants = _descendants_cte(folder_id)
    result = await db.execute(
        select(Folder).join(descendants, Folder.id == descendants.c.id).order_by(descendants.c.level, Folder.name)
    )
    return list(result.scalars().all())


async def get_subtree_height(db: AsyncSession, folder_id: uuid.UUID) -> int:
    descendants = _descendants_cte(folder_id)
    height = (await db.execute(select(func.max(descendants.c.level)))).scalar_one_or_none()
    return height or 0


async def get_tree_files(db: AsyncSession, folder: Folder) -> list[TreeFileRead]:
    """Every file in ``folder`` and below, with the folder names leading to it."""
    subtree = [folder, *await get_descendants(db, folder.id)]
    by_id = {f.id: f for f in subtree}

    def path_of(fid: uuid.UUID) -> list[str]:
        names = []
        while fid in by_id:
            names.append(by_id[fid].name)
            if fid == folder.id:
                break
            fid = by_id[fid].parent_folder_id
        return list(reversed(names))

    result = await db.execute(
        select(File)
        .where(File.workspace_id == folder.workspace_id, File.parent_folder_id.in_(list(by_id)))
        .order_by(File.filename)
    )
    rows = [
        TreeFileRead(
            id=f.id, filename=f.filename, file_size=f.file_size, mime_type=f.mime_type,
            storage_path=f.storage_path, parent_folder_id=f.parent_folder_id,
            folder_path=path_of(f.parent_folder_id),
        )
        for f in result.scalars().all()
    ]
    rows.sort(key=lambda r: (r.folder_path, r.filename))
    return rows


# ── Lookups ───────────────────────────────────────────────────────────────────

async def get_folder(db: AsyncSession, workspace_id: uuid.UUID, folder_id: uuid.UUID) -> Folder | None:
    result = await db.execute(select(Folder).where(Folder.id == folder_id, Folder.workspace_id == workspace_id))
    return result.scalar_one_or_none()


async def require_folder(db: AsyncSession, workspace_id: uuid.UUID, folder_id: uuid.UUID) -> Folder:
    folder = await get_folder(db, workspace_id, folder_id)
    if not folder:
        raise NotFound("Folder not found")
    return folder


async def list_folders(db: AsyncSession, workspace_id: uuid.UUID, parent_folder_id: uuid.UUID | None) -> list[Folder]:
    result = await db.execute(
        select(Folder)
        .where(Folder.workspace_id == workspace_id, same_parent(Folder.parent_folder_id, parent_folder_id))
        .order_by(Folder.created_at.desc())
    )
    return list(result.scalars().all())


async def is_folder_name_available(
    db: AsyncSession,
    workspace_id: uuid.UUID,
    name: str,
    parent_folder_id: uuid.UUID | None,
    exclude_folder_id: uuid.UUID | None = None,
) -> bool:
    q = select(Folder.id).where(
        Folder.workspace_id == workspace_id,
        Folder.name == name,
        same_parent(Folder.parent_folder_id, parent_folder_id),
    )
    if exclude_folder_id:
        q = q.where(Folder.id != exclude_folder_id)
    return (await db.execute(q.limit(1))).first() is None


# ── Mutations ─────────────────────────────────────────────────────────────────

async def _flush_unique(db: AsyncSession, folder: Folder, message: str) -> None:
    # The unique indexes are the final word on sibling names; the pre-checks only save a round trip.
    try:
        async with db.begin_nested():
            db.add(folder)
            await db.flush()
    except IntegrityError:
        raise Conflict(message)


async def create_folder(db: AsyncSession, workspace_id: uuid.UUID, data: FolderCreate) -> Folder:
    name = data.name.strip()
    if not name:
        raise ValidationFailed("Folder name must not be empty")

    link_id = data.link_id
    if data.parent_folder_id:
        parent = await require_folder(db, workspace_id, data.parent_folder_id)
        depth = await get_depth(db, parent.id) + 1
        if depth > settings.MAX_FOLDER_DEPTH:
            logger.warning("Folder depth limit hit: workspace=%s parent=%s depth=%d", workspace_id, parent.id, depth)
            raise DepthExceeded(f"Maximum nesting depth ({settings.MAX_FOLDER_DEPTH}) reached")
        link_id = link_id or parent.link_id

    if link_id:
        link = (await db.execute(select(Link.id).where(Link.id == link_id, Link.workspace_id == workspace_id))).first()
        if not link:
            raise NotFound("Link not found")

    if not await is_folder_name_available(db, workspace_id, name, data.parent_folder_id):
        logger.warning("Folder name collision: workspace=%s parent=%s name=%r", workspace_id, data.parent_folder_id, name)
        raise Conflict("A folder with this name already exists in this location")

    folder = Folder(
        workspace_id=workspace_id,
        name=name,
        parent_folder_id=data.parent_folder_id,
        link_id=link_id,
        uploader_email=data.uploader_email.lower() if data.uploader_email else None,
        uploader_name=data.uploader_name,
    )
    await _flush_unique(db, folder, "A folder with this name already exists in this location")
    await db.refresh(folder)
    logger.info("Folder created: id=%s workspace=%s parent=%s", folder.id, workspace_id, folder.parent_folder_id)
    return folder


async def rename_folder(db: AsyncSession, folder: Folder, name: str) -> Folder:
    name = name.strip()
    if not name:
        raise ValidationFailed("Folder name must not be empty")
    if name == folder.name:
        return folder
    if not await is_folder_name_available(db, folder.workspace_id, name, folder.parent_folder_id, folder.id):
        raise Conflict("A folder with this name already exists in this location")
    folder.name = name
    await _flush_unique(db, folder, "A folder with this name already exists in this location")
    await db.refresh(folder)
    return folder


async def move_folder(
    db: AsyncSession,
    workspace_id: uuid.UUID,
    folder_id: uuid.UUID,
    new_parent_folder_id: uuid.UUID | None,
) -> Folder:
    """Re-parent a subtree. Metadata only; stored objects are keyed independently of the tree."""
    folder = await require_folder(db, workspace_id, folder_id)
    if folder.parent_folder_id == new_parent_folder_id:
        return folder

    new_depth = 0
    if new_parent_folder_id is not None:
        if new_parent_folder_id == folder.id:
            raise CyclicMove("A folder cannot be moved into itself")
        await require_folder(db, workspace_id, new_parent_folder_id)
        target_path = await get_ancestor_path(db, new_parent_folder_id)
        if any(f.id == folder.id for f in target_path):
            logger.warning("Cyclic folder move rejected: folder=%s target=%s", folder.id, new_parent_folder_id)
            raise CyclicMove("A folder cannot be moved into its own subfolder")
        new_depth = len(target_path)

    # The deepest descendant moves with the folder.
    deepest = new_depth + await get_subtree_height(db, folder.id)
    if deepest > settings.MAX_FOLDER_DEPTH:
        logger.warning("Folder move exceeds depth: folder=%s target=%s deepest=%d", folder.id, new_parent_folder_id, deepest)
        raise DepthExceeded(f"Maximum nesting depth ({settings.MAX_FOLDER_DEPTH}) would be exceeded")

    if not await is_folder_name_available(db, workspace_id, folder.name, new_parent_folder_id, folder.id):
        raise Conflict("A folder with this name already exists in the destination")

    old_parent = folder.parent_folder_id
    folder.parent_folder_id = new_parent_folder_id
    await _flush_unique(db, folder, "A folder with this name already exists in the destination")
    await db.refresh(folder)
    logger.info("Folder moved: id=%s from=%s to=%s", folder.id, old_parent, new_parent_folder_id)
    return folder


async def _root_collisions(db: AsyncSession, folder: Folder) -> list[str]:
    root_folders = select(Folder.name).where(
        Folder.workspace_id == folder.workspace_id, Folder.parent_folder_id.is_(None), Folder.id != folder.id,
    )
    root_files = select(File.filename).where(File.workspace_id == folder.workspace_id, File.parent_folder_id.is_(None))
    clashing_folders = await db.execute(
        select(Folder.name).where(Folder.parent_folder_id == folder.id, Folder.name.in_(root_folders))
    )
    clashing_files = await db.execute(
        select(File.filename).where(File.parent_folder_id == folder.id, File.filename.in_(root_files))
    )
    return [*clashing_folders.scalars().all(), *clashing_files.scalars().all()]


async def delete_folder(db: AsyncSession, folder: Folder) -> None:
    """Removes this node only. Subfolders and files detach to the workspace root."""
    clashes = await _root_collisions(db, folder)
    if clashes:
        logger.warning("Folder delete blocked: folder=%s would collide at root on %s", folder.id, clashes)
        raise Conflict(f"Deleting this folder would move items onto existing names at the top level: {', '.join(sorted(clashes))}")

    if folder.link_id:
        parent_link_id = None
        if folder.parent_folder_id:
            parent_link_id = (await db.execute(
                select(Folder.link_id).where(Folder.id == folder.parent_folder_id)
            )).scalar_one_or_none()
        if parent_link_id != folder.link_id:
            # Top folder of a shared tree: the link would point at nothing, pause it.
            link = await db.get(Link, folder.link_id)
            if link and link.is_active:
                link.is_active = False
                logger.info("Link %s paused because its top folder %s was deleted", link.id, folder.id)
    await delete_with_policies(db, Folder, [folder.id])
    logger.info("Folder deleted: id=%s workspace=%s", folder.id, folder.workspace_id)
