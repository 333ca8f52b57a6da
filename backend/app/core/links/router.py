import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.folders.service import require_folder
from app.core.links import service
from app.core.links.schemas import (
    LinkCreate, LinkUpdate, LinkActive, LinkConfigPatch, BrandingPatch,
    LinkRead, SlugAvailability, ShareFolderWithLink,
)
from app.dependencies import get_db, get_current_workspace, CurrentWorkspace

router = APIRouter(tags=["links"])


@router.post("/links", response_model=LinkRead, status_code=201)
async def create_link(
    data: LinkCreate,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.create_link(db, current.workspace_id, data)


@router.get("/links", response_model=list[LinkRead])
async def list_links(
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.list_links(db, current.workspace_id)


@router.get("/links/slug-availability", response_model=SlugAvailability)
async def slug_availability(
    slug: str,
    exclude_link_id: uuid.UUID | None = None,
    db: AsyncSession = Depends(get_db),
    _: CurrentWorkspace = Depends(get_current_workspace),
):
    clean = service.sanitize_slug(slug)
    available = clean not in service.RESERVED_SLUGS and len(clean) >= service.SLUG_MIN_LENGTH
    if available:
        available = await service.is_slug_available(db, clean, exclude_link_id)
    return SlugAvailability(slug=clean, available=available)


@router.get("/links/{link_id}", response_model=LinkRead)
async def get_link(
    link_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.require_link(db, current.workspace_id, link_id)


@router.patch("/links/{link_id}", response_model=LinkRead)
async def update_link(
    link_id: uuid.UUID,
    data: LinkUpdate,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    link = await service.require_link(db, current.workspace_id, link_id)
    return await service.update_link(db, link, data)


@router.put("/links/{link_id}/active", response_model=LinkRead)
async def set_active(
    link_id: uuid.UUID,
    data: LinkActive,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    link = await service.require_link(db, current.workspace_id, link_id)
    return await service.set_active(db, link, data.is_active)


@router.patch("/links/{link_id}/config", response_model=LinkRead)
async def update_config(
    link_id: uuid.UUID,
    data: LinkConfigPatch,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    link = await service.require_link(db, current.workspace_id, link_id)
    return await service.update_config(db, link, data)


@router.patch("/links/{link_id}/branding", response_model=LinkRead)
async def update_branding(
    link_id: uuid.UUID,
    data: BrandingPatch,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    link = await service.require_link(db, current.workspace_id, link_id)
    return await service.update_branding(db, link, data)


@router.delete("/links/{link_id}", status_code=204)
async def delete_link(
    link_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    link = await service.require_link(db, current.workspace_id, link_id)
    await service.delete_link(db, link)


# ── Folder sharing ────────────────────────────────────────────────────────────

@router.post("/folders/{folder_id}/share", response_model=LinkRead, status_code=201)
async def share_folder_with_new_link(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    folder = await require_folder(db, current.workspace_id, folder_id)
    return await service.share_folder_with_new_link(db, current.workspace_id, folder)


@router.put("/folders/{folder_id}/share", response_model=LinkRead)
async def share_folder_with_link(
    folder_id: uuid.UUID,
    data: ShareFolderWithLink,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    folder = await require_folder(db, current.workspace_id, folder_id)
    return await service.share_folder_with_link(db, current.workspace_id, folder, data.link_id)


@router.delete("/folders/{folder_id}/share", status_code=204)
async def unshare_folder(
    folder_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    folder = await require_folder(db, current.workspace_id, folder_id)
    await service.unshare_folder(db, current.workspace_id, folder)
