import logging
import uuid
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StorageError, ValidationFailed
from app.core.files.models import File
from app.core.files.service import adjust_storage_used, delete_stored_objects
from app.core.files.storage import ObjectStorage
from app.core.users.models import User
from app.core.workspaces.models import Workspace
from app.db.deletion import delete_with_policies

logger = logging.getLogger(__name__)


async def get_workspace_by_user(db: AsyncSession, user_id: uuid.UUID) -> Workspace | None:
    result = await db.execute(select(Workspace).where(Workspace.user_id == user_id))
    return result.scalar_one_or_none()


async def rename_workspace(db: AsyncSession, workspace: Workspace, name: str) -> Workspace:
    name = name.strip()
    if not name:
        raise ValidationFailed("Workspace name must not be empty")
    workspace.name = name
    await db.flush()
    await db.refresh(workspace)
    return workspace


async def purge_stored_objects(db: AsyncSession, workspace_id: uuid.UUID, storage: ObjectStorage) -> int:
    """
    Deletes every stored object of the workspace. Stops at the first storage
    failure, after dropping the rows whose objects are already gone.
    """
    result = await db.execute(
        select(File.id, File.storage_path, File.thumbnail_path, File.file_size).where(File.workspace_id == workspace_id)
    )
    purged, freed = [], 0
    try:
        for file_id, storage_path, thumbnail_path, file_size in result.all():
            await delete_stored_objects(storage, storage_path, thumbnail_path)
            purged.append(file_id)
            freed += file_size
    except StorageError:
        logger.error("Purge of workspace %s stopped after %d object(s)", workspace_id, len(purged))
        await delete_with_policies(db, File, purged)
        await adjust_storage_used(db, workspace_id, -freed)
        raise
    return len(purged)


async def delete_workspace(db: AsyncSession, workspace: Workspace, storage: ObjectStorage) -> None:
    workspace_id, user_id = workspace.id, workspace.user_id
    purged = await purge_stored_objects(db, workspace_id, storage)
    await delete_with_policies(db, Workspace, [workspace_id])
    await db.execute(
        update(User).where(User.id == user_id).values(storage_used=0).execution_options(synchronize_session="fetch")
    )
    logger.info("Workspace %s deleted with %d stored object(s)", workspace_id, purged)
