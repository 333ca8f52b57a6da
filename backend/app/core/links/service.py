import logging
import re
import uuid
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict, NotFound, SlugTaken, ValidationFailed
from app.core.folders.models import Folder
from app.core.links.models import DEFAULT_BRANDING, DEFAULT_LINK_CONFIG, Link
from app.core.links.schemas import BrandingPatch, LinkConfigPatch, LinkCreate, LinkUpdate
from app.core.permissions.models import ROLE_OWNER
from app.core.permissions.service import create_permission
from app.core.users.models import User
from app.core.workspaces.models import Workspace
from app.db.base import utcnow
from app.db.deletion import delete_with_policies

logger = logging.getLogger(__name__)

SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 100

# First path segments the web app routes itself.
RESERVED_SLUGS = frozenset({
    "about", "admin", "api", "app", "assets", "auth", "billing", "dashboard", "docs",
    "health", "help", "internal", "login", "logout", "pricing", "settings",
    "sign-in", "sign-up", "signin", "signup", "static", "support", "upload", "uploads", "www",
})

_SHARE_SLUG_ATTEMPTS = 10


def sanitize_slug(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.strip().lower())
    return slug.strip("-")[:SLUG_MAX_LENGTH].rstrip("-")


def validate_slug(value: str) -> str:
    slug = sanitize_slug(value)
    if len(slug) < SLUG_MIN_LENGTH:
        raise ValidationFailed(f"Slug must be at least {SLUG_MIN_LENGTH} characters after sanitization")
    if slug in RESERVED_SLUGS:
        raise ValidationFailed("This slug is reserved and cannot be used")
    return slug


# ── Lookups ───────────────────────────────────────────────────────────────────

async def get_link(db: AsyncSession, workspace_id: uuid.UUID, link_id: uuid.UUID) -> Link | None:
    result = await db.execute(select(Link).where(Link.id == link_id, Link.workspace_id == workspace_id))
    return result.scalar_one_or_none()


async def require_link(db: AsyncSession, workspace_id: uuid.UUID, link_id: uuid.UUID) -> Link:
    link = await get_link(db, workspace_id, link_id)
    if not link:
        raise NotFound("Link not found")
    return link


async def list_links(db: AsyncSession, workspace_id: uuid.UUID) -> list[Link]:
    result = await db.execute(select(Link).where(Link.workspace_id == workspace_id).order_by(Link.created_at.desc()))
    return list(result.scalars().all())


async def is_slug_available(db: AsyncSession, slug: str, exclude_link_id: uuid.UUID | None = None) -> bool:
    q = select(Link.id).where(Link.slug == sanitize_slug(slug))
    if exclude_link_id:
        q = q.where(Link.id != exclude_link_id)
    return (await db.execute(q.limit(1))).first() is None


async def get_link_by_address(db: AsyncSession, username: str, slug: str) -> Link:
    """Resolves the public ``{username}/{slug}`` address. Inactive links still resolve."""
    result = await db.execute(
        select(Link)
        .join(Workspace, Workspace.id == Link.workspace_id)
        .join(User, User.id == Workspace.user_id)
        .where(
            func.lower(User.username) == username.strip().lower(),
            User.is_active == True,
            Link.slug == slug.strip().lower(),
        )
    )
    link = result.scalar_one_or_none()
    if not link:
        raise NotFound("Link not found")
    return link


async def get_top_folder(db: AsyncSession, link: Link) -> Folder | None:
    """The folder a shared tree hangs from: linked, and its parent is not in the same link."""
    parent = Folder.__table__.alias("parent")
    result = await db.execute(
        select(Folder)
        .outerjoin(parent, parent.c.id == Folder.parent_folder_id)
        .where(
            Folder.link_id == link.id,
            (Folder.parent_folder_id.is_(None)) | (parent.c.link_id.is_(None)) | (parent.c.link_id != link.id),
        )
        .order_by(Folder.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


# ── Writes ────────────────────────────────────────────────────────────────────

async def _flush_link(db: AsyncSession, link: Link) -> None:
    try:
        async with db.begin_nested():
            db.add(link)
            await db.flush()
    except IntegrityError:
        raise SlugTaken("This slug is already taken")


async def _owner_email(db: AsyncSession, workspace_id: uuid.UUID) -> str:
    result = await db.execute(
        select(User.email).join(Workspace, Workspace.user_id == User.id).where(Workspace.id == workspace_id)
    )
    email = result.scalar_one_or_none()
    if not email:
        raise NotFound("Workspace not found")
    return email


async def create_link(db: AsyncSession, workspace_id: uuid.UUID, data: LinkCreate) -> Link:
    slug = validate_slug(data.slug)
    if not await is_slug_available(db, slug):
        raise SlugTaken("This slug is already taken")

    link = Link(workspace_id=workspace_id, slug=slug, name=data.name.strip(), is_public=data.is_public)
    await _flush_link(db, link)
    await create_permission(db, link.id, await _owner_email(db, workspace_id), ROLE_OWNER)
    await db.refresh(link)
    logger.info("Link created: id=%s slug=%s workspace=%s", link.id, slug, workspace_id)
    return link


async def update_link(db: AsyncSession, link: Link, data: LinkUpdate) -> Link:
    patch = data.model_dump(exclude_unset=True, exclude_none=True)
    if "slug" in patch:
        slug = validate_slug(patch["slug"])
        if slug != link.slug:
            if not await is_slug_available(db, slug, exclude_link_id=link.id):
                raise SlugTaken("This slug is already taken")
            link.slug = slug
    if "name" in patch:
        link.name = patch["name"].strip()
    if "is_public" in patch:
        link.is_public = patch["is_public"]
    if "is_active" in patch:
        link.is_active = patch["is_active"]
    await _flush_link(db, link)
    await db.refresh(link)
    return link


async def set_active(db: AsyncSession, link: Link, is_active: bool) -> Link:
    link.is_active = is_active
    await db.flush()
    await db.refresh(link)
    logger.info("Link %s %s", link.id, "activated" if is_active else "paused")
    return link


async def update_config(db: AsyncSession, link: Link, patch: LinkConfigPatch) -> Link:
    # Reassign rather than mutate so the JSON column is marked dirty.
    link.link_config = {**DEFAULT_LINK_CONFIG, **(link.link_config or {}), **patch.model_dump(exclude_unset=True)}
    await db.flush()
    await db.refresh(link)
    return link


def merge_branding(current: dict | None, patch: BrandingPatch) -> dict:
    merged = {**DEFAULT_BRANDING, **(current or {})}
    changes = patch.model_dump(exclude_unset=True)
    if "enabled" in changes:
        merged["enabled"] = bool(changes["enabled"])
    for section in ("colors", "logo"):
        if section not in changes:
            continue
        if changes[section] is None:
            merged[section] = None
        else:
            merged[section] = {**(merged.get(section) or {}), **getattr(patch, section).model_dump(exclude_unset=True)}
    return merged


async def update_branding(db: AsyncSession, link: Link, patch: BrandingPatch) -> Link:
    link.branding = merge_branding(link.branding, patch)
    await db.flush()
    await db.refresh(link)
    return link


async def delete_link(db: AsyncSession, link: Link) -> None:
    """Permissions go with the link; folders and files stay, detached."""
    link_id, workspace_id = link.id, link.workspace_id
    await delete_with_policies(db, Link, [link_id])
    logger.info("Link deleted: id=%s workspace=%s", link_id, workspace_id)


async def record_upload(db: AsyncSession, link: Link, file_count: int, total_bytes: int) -> Link:
    link.total_uploads = (link.total_uploads or 0) + 1
    link.total_files = (link.total_files or 0) + file_count
    link.total_size = (link.total_size or 0) + total_bytes
    link.last_upload_at = utcnow()
    await db.flush()
    return link


# ── Folder sharing ────────────────────────────────────────────────────────────

async def share_folder_with_new_link(db: AsyncSession, workspace_id: uuid.UUID, folder: Folder) -> Link:
    if folder.link_id:
        raise Conflict("Folder is already linked to a shareable link")

    base = f"{sanitize_slug(folder.name) or 'folder'}-link"
    candidates = [base] + [f"{base}-{n}" for n in range(2, _SHARE_SLUG_ATTEMPTS + 1)]
    for slug in candidates:
        if await is_slug_available(db, slug):
            break
    else:
        logger.error("No free slug for folder %s after %d attempts (base %s)", folder.id, _SHARE_SLUG_ATTEMPTS, base)
        raise SlugTaken("Unable to generate a unique link address")

    link = await create_link(db, workspace_id, LinkCreate(name=f"{folder.name} Link"[:255], slug=slug, is_public=True))
    folder.link_id = link.id
    await db.flush()
    logger.info("Folder %s shared through new link %s (%s)", folder.id, link.id, link.slug)
    return link


async def share_folder_with_link(db: AsyncSession, workspace_id: uuid.UUID, folder: Folder, link_id: uuid.UUID) -> Link:
    if folder.link_id:
        raise Conflict("Folder is already linked to a shareable link")
    link = await require_link(db, workspace_id, link_id)
    if link.is_active:
        raise Conflict("Link is already active and cannot be reused")
    folder.link_id = link.id
    link.is_active = True
    await db.flush()
    await db.refresh(link)
    logger.info("Folder %s attached to existing link %s", folder.id, link.id)
    return link


async def unshare_folder(db: AsyncSession, workspace_id: uuid.UUID, folder: Folder) -> None:
    """The folder becomes personal. The link is paused and kept for reuse."""
    if not folder.link_id:
        logger.warning("Attempted to unshare folder %s that is not linked", folder.id)
        return
    link = await get_link(db, workspace_id, folder.link_id)
    folder.link_id = None
    if link:
        link.is_active = False
    await db.flush()
    logger.info("Folder %s unshared; link %s paused", folder.id, link.id if link else None)
