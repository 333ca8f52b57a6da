import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.links.service import require_link
from app.core.permissions import service
from app.core.permissions.notifier import CodeNotifier
from app.core.permissions.schemas import PermissionCreate, PermissionRead, PermissionRoleUpdate
from app.dependencies import get_db, get_current_workspace, get_notifier, CurrentWorkspace

router = APIRouter(tags=["permissions"])


@router.get("/links/{link_id}/permissions", response_model=list[PermissionRead])
async def list_permissions(
    link_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    link = await require_link(db, current.workspace_id, link_id)
    return await service.list_permissions(db, link.id)


@router.post("/links/{link_id}/permissions", response_model=PermissionRead, status_code=201)
async def create_permission(
    link_id: uuid.UUID,
    data: PermissionCreate,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
    notifier: CodeNotifier = Depends(get_notifier),
):
    link = await require_link(db, current.workspace_id, link_id)
    permission = await service.create_permission(db, link.id, data.email, "uploader")
    if data.role == "editor":
        permission = await service.promote_to_editor(db, permission, notifier)
    return permission


@router.patch("/permissions/{permission_id}", response_model=PermissionRead)
async def update_role(
    permission_id: uuid.UUID,
    data: PermissionRoleUpdate,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
    notifier: CodeNotifier = Depends(get_notifier),
):
    permission = await service.require_permission(db, current.workspace_id, permission_id)
    return await service.update_role(db, permission, data.role, notifier)


@router.delete("/permissions/{permission_id}", status_code=204)
async def remove_permission(
    permission_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    permission = await service.require_permission(db, current.workspace_id, permission_id)
    await service.remove_permission(db, permission)
