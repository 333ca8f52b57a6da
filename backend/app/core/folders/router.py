import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.folders import service
from app.core.folders.schemas import (
    FolderCreate, FolderUpdate, FolderMove, FolderRead, FolderDepthRead, TreeFileRead,
)
from app.dependencies import get_db, get_current_workspace, CurrentWorkspace

router = APIRouter(prefix="/folders", tags=["folders"])


@router.post("", response_model=FolderRead, status_code=201)
async def create_folder(
    data: FolderCreate,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.create_folder(db, current.workspace_id, data)


@router.get("", response_model=list[FolderRead])
async def list_folders(
    parent_folder_id: uuid.UUID | None = None,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.list_folders(db, current.workspace_id, parent_folder_id)


@router.get("/{folder_id}", response_model=FolderRead)
async def get_folder(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.require_folder(db, current.workspace_id, folder_id)


@router.patch("/{folder_id}", response_model=FolderRead)
async def rename_folder(
    folder_id: uuid.UUID,
    data: FolderUpdate,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    folder = await service.require_folder(db, current.workspace_id, folder_id)
    return await service.rename_folder(db, folder, data.name)


@router.post("/{folder_id}/move", response_model=FolderRead)
async def move_folder(
    folder_id: uuid.UUID,
    data: FolderMove,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.move_folder(db, current.workspace_id, folder_id, data.new_parent_folder_id)


@router.get("/{folder_id}/path", response_model=list[FolderRead])
async def get_ancestor_path(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    await service.require_folder(db, current.workspace_id, folder_id)
    return await service.get_ancestor_path(db, folder_id)


@router.get("/{folder_id}/depth", response_model=FolderDepthRead)
async def get_depth(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    await service.require_folder(db, current.workspace_id, folder_id)
    return FolderDepthRead(folder_id=folder_id, depth=await service.get_depth(db, folder_id))


@router.get("/{folder_id}/descendants", response_model=list[FolderRead])
async def get_descendants(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    await service.require_folder(db, current.workspace_id, folder_id)
    return await service.get_descendants(db, folder_id)


@router.get("/{folder_id}/tree-files", response_model=list[TreeFileRead])
async def get_tree_files(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    folder = await service.require_folder(db, current.workspace_id, folder_id)
    return await service.get_tree_files(db, folder)


@router.delete("/{folder_id}", status_code=204)
async def delete_folder(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    folder = await service.require_folder(db, current.workspace_id, folder_id)
    await service.delete_folder(db, folder)
