import logging
import uuid
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.files.storage import ObjectStorage
from app.core.users.models import User
from app.core.workspaces.service import get_workspace_by_user, purge_stored_objects
from app.db.base import utcnow
from app.db.deletion import delete_with_policies

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    return await db.get(User, user_id)


async def deactivate_user(db: AsyncSession, user: User) -> User:
    """Soft delete. Public links of an inactive user stop resolving."""
    user.is_active = False
    user.deleted_at = utcnow()
    await db.flush()
    await db.refresh(user)
    logger.info("User %s deactivated", user.id)
    return user


async def delete_user(db: AsyncSession, user: User, storage: ObjectStorage) -> None:
    user_id = user.id
    workspace = await get_workspace_by_user(db, user_id)
    if workspace:
        await purge_stored_objects(db, workspace.id, storage)
    await delete_with_policies(db, User, [user_id])
    logger.info("User %s deleted", user_id)
