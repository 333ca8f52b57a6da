import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, File as FormFile, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.files import service
from app.core.files.schemas import (
    FileCreate, FileRead, FileUpdate, FileMove,
    BulkDeleteRequest, BulkDeleteResult, ScanResult, ThumbnailResult,
)
from app.core.files.storage import ObjectStorage
from app.dependencies import get_db, get_current_workspace, get_storage, require_service_token, CurrentWorkspace

router = APIRouter(prefix="/files", tags=["files"])
internal_router = APIRouter(prefix="/internal/files", tags=["internal"], dependencies=[Depends(require_service_token)])


@router.post("", response_model=FileRead, status_code=201)
async def upload_file(
    file: UploadFile = FormFile(...),
    parent_folder_id: uuid.UUID | None = Form(None),
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
    storage: ObjectStorage = Depends(get_storage),
):
    data = FileCreate(
        filename=file.filename or "upload",
        mime_type=file.content_type or "application/octet-stream",
        parent_folder_id=parent_folder_id,
        uploader_email=current.user.email,
        uploader_name=" ".join(p for p in (current.user.first_name, current.user.last_name) if p) or None,
    )
    f = await service.create_file(db, current.workspace_id, data, storage, await file.read())
    await service.commit_or_discard(db, storage, [f.storage_path])
    return f


@router.get("", response_model=list[FileRead])
async def list_files(
    folder_id: uuid.UUID | None = None,
    root: bool = False,
    uploader_email: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    if folder_id or root:
        if folder_id:
            await service.require_folder(db, current.workspace_id, folder_id)
        return await service.list_by_folder(db, current.workspace_id, folder_id)
    if uploader_email:
        return await service.list_by_uploader_email(db, current.workspace_id, uploader_email)
    if start:
        return await service.list_by_date_range(db, current.workspace_id, start, end)
    return await service.list_by_workspace(db, current.workspace_id, min(limit, 500), offset)


@router.get("/search", response_model=list[FileRead])
async def search_files(
    q: str,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.search(db, current.workspace_id, q)


@router.post("/move", response_model=list[FileRead])
async def move_files(
    data: FileMove,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.move_files(db, current.workspace_id, data.file_ids, data.target_folder_id)


@router.post("/bulk-delete", response_model=BulkDeleteResult)
async def bulk_delete_files(
    data: BulkDeleteRequest,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
    storage: ObjectStorage = Depends(get_storage),
):
    return await service.bulk_delete_files(db, current.workspace_id, data.file_ids, storage)


@router.get("/{file_id}", response_model=FileRead)
async def get_file(
    file_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    return await service.require_file(db, current.workspace_id, file_id)


@router.patch("/{file_id}", response_model=FileRead)
async def rename_file(
    file_id: uuid.UUID,
    data: FileUpdate,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
):
    f = await service.require_file(db, current.workspace_id, file_id)
    return await service.rename_file(db, f, data.filename)


@router.delete("/{file_id}", status_code=204)
async def delete_file(
    file_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentWorkspace = Depends(get_current_workspace),
    storage: ObjectStorage = Depends(get_storage),
):
    await service.delete_file(db, current.workspace_id, file_id, storage)


# ── Scanner / thumbnail callbacks ─────────────────────────────────────────────

@internal_router.post("/{file_id}/scan", response_model=FileRead)
async def record_scan_result(
    file_id: uuid.UUID,
    data: ScanResult,
    db: AsyncSession = Depends(get_db),
):
    return await service.record_scan_result(db, file_id, data.scan_status)


@internal_router.post("/{file_id}/thumbnail", response_model=FileRead)
async def record_thumbnail(
    file_id: uuid.UUID,
    data: ThumbnailResult,
    db: AsyncSession = Depends(get_db),
):
    return await service.record_thumbnail(db, file_id, data.thumbnail_path, data.processing_status)
