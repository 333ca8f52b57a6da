from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StorageError
from app.core.files.storage import ObjectStorage
from app.core.users import service as users_service
from app.core.users.schemas import UserRead
from app.core.workspaces import service
from app.core.workspaces.schemas import WorkspaceRead, WorkspaceUpdate
from app.dependencies import get_db, get_current_workspace, get_storage, CurrentWorkspace

router = APIRouter(tags=["workspaces"])


@router.get("/workspace", response_model=WorkspaceRead)
async def get_workspace(current: CurrentWorkspace = Depends(get_current_workspace)):
    return current.workspace


@router.patch("/workspace", response_model=WorkspaceRead)
async def rename_workspace(
    data: WorkspaceUpdate,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.rename_workspace(db, current.workspace, data.name)


@router.delete("/workspace", status_code=204)
async def delete_workspace(
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
    storage: ObjectStorage = Depends(get_storage),
):
    try:
        await service.delete_workspace(db, current.workspace, storage)
    except StorageError:
        # Rows of objects already purged must not come back with a rollback.
        await db.commit()
        raise


# ── Account ───────────────────────────────────────────────────────────────────

@router.get("/account", response_model=UserRead)
async def get_account(current: CurrentWorkspace = Depends(get_current_workspace)):
    return current.user


@router.post("/account/deactivate", response_model=UserRead)
async def deactivate_account(
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await users_service.deactivate_user(db, current.user)


@router.delete("/account", status_code=204)
async def delete_account(
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
    storage: ObjectStorage = Depends(get_storage),
):
    try:
        await users_service.delete_user(db, current.user, storage)
    except StorageError:
        await db.commit()
        raise
