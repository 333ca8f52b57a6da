import uuid
from typing import Annotated
from fastapi import APIRouter, Depends, File as FormFile, Form, UploadFile
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth.security import create_editor_token
from app.core.files import service as files_service
from app.core.files.schemas import FileRead
from app.core.files.storage import ObjectStorage
from app.core.links.schemas import PublicLinkRead
from app.core.permissions.schemas import PermissionRead
from app.core.uploads import service
from app.core.uploads.schemas import ContributionResult, ContributorDetails, EditorSession, EditorVerification, IncomingFile
from app.dependencies import bearer, get_db, get_storage

router = APIRouter(prefix="/u", tags=["uploads"])

EditorCredentials = Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)]


@router.get("/{username}/{slug}", response_model=PublicLinkRead)
async def get_upload_page(
    username: str,
    slug: str,
    db: AsyncSession = Depends(get_db),
):
    return await service.resolve_open_link(db, username, slug)


@router.post("/{username}/{slug}/files", response_model=ContributionResult, status_code=201)
async def contribute(
    username: str,
    slug: str,
    files: list[UploadFile] = FormFile(...),
    email: EmailStr = Form(...),
    name: str | None = Form(None),
    message: str | None = Form(None),
    folder_id: uuid.UUID | None = Form(None),
    create_contributor_folder: bool = Form(False),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    details = ContributorDetails(
        email=email, name=name, message=message,
        folder_id=folder_id, create_contributor_folder=create_contributor_folder,
    )
    incoming = [
        IncomingFile(
            filename=f.filename or "upload",
            content_type=f.content_type or "application/octet-stream",
            content=await f.read(),
        )
        for f in files
    ]
    result = await service.contribute(db, username, slug, details, incoming, storage)
    await files_service.commit_or_discard(db, storage, [f.storage_path for f in result.files])
    return result


@router.post("/{username}/{slug}/verify", response_model=EditorSession)
async def verify_editor(
    username: str,
    slug: str,
    data: EditorVerification,
    db: AsyncSession = Depends(get_db),
):
    permission = await service.verify_editor(db, username, slug, data.email, data.code)
    return EditorSession(
        permission=PermissionRead.model_validate(permission),
        access_token=create_editor_token(permission.id, permission.link_id),
    )


# ── Editor actions ────────────────────────────────────────────────────────────

@router.get("/{username}/{slug}/files", response_model=list[FileRead])
async def list_link_files(
    username: str,
    slug: str,
    credentials: EditorCredentials,
    db: AsyncSession = Depends(get_db),
):
    token = credentials.credentials if credentials else None
    return await service.list_link_files(db, username, slug, token)


@router.delete("/{username}/{slug}/files/{file_id}", status_code=204)
async def delete_link_file(
    username: str,
    slug: str,
    file_id: uuid.UUID,
    credentials: EditorCredentials,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    token = credentials.credentials if credentials else None
    await service.delete_link_file(db, username, slug, token, file_id, storage)
