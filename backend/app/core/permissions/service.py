import logging
import uuid
from datetime import datetime, timezone
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth.security import generate_verification_code, hash_code, verify_code
from app.core.errors import Conflict, NotFound, ValidationFailed
from app.core.links.models import Link
from app.core.permissions.models import Permission, ROLE_EDITOR, ROLE_OWNER, ROLE_RANK, ROLE_UPLOADER
from app.core.permissions.notifier import CodeNotifier
from app.db.base import utcnow

logger = logging.getLogger(__name__)


def _normalize(email: str) -> str:
    return email.strip().lower()


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def effective_role(permission: Permission) -> str:
    """An editor who has not confirmed their code acts as an uploader."""
    return permission.effective_role


def has_role(permission: Permission, role: str) -> bool:
    return ROLE_RANK[effective_role(permission)] >= ROLE_RANK[role]


# ── Lookups ───────────────────────────────────────────────────────────────────

async def get_permission(db: AsyncSession, workspace_id: uuid.UUID, permission_id: uuid.UUID) -> Permission | None:
    result = await db.execute(
        select(Permission)
        .join(Link, Link.id == Permission.link_id)
        .where(Permission.id == permission_id, Link.workspace_id == workspace_id)
    )
    return result.scalar_one_or_none()


async def require_permission(db: AsyncSession, workspace_id: uuid.UUID, permission_id: uuid.UUID) -> Permission:
    p = await get_permission(db, workspace_id, permission_id)
    if not p:
        raise NotFound("Permission not found")
    return p


async def get_permission_for_email(db: AsyncSession, link_id: uuid.UUID, email: str) -> Permission | None:
    result = await db.execute(
        select(Permission).where(Permission.link_id == link_id, Permission.email == _normalize(email))
    )
    return result.scalar_one_or_none()


async def list_permissions(db: AsyncSession, link_id: uuid.UUID) -> list[Permission]:
    result = await db.execute(
        select(Permission).where(Permission.link_id == link_id).order_by(Permission.created_at, Permission.email)
    )
    return list(result.scalars().all())


# ── Writes ────────────────────────────────────────────────────────────────────

async def create_permission(db: AsyncSession, link_id: uuid.UUID, email: str, role: str = ROLE_UPLOADER) -> Permission:
    if role not in ROLE_RANK:
        raise ValidationFailed(f"Unknown role {role!r}")
    email = _normalize(email)
    if await get_permission_for_email(db, link_id, email):
        raise Conflict("This email already has access to the link")

    is_owner = role == ROLE_OWNER
    p = Permission(
        link_id=link_id,
        email=email,
        role=role,
        is_verified=is_owner,
        verified_at=utcnow() if is_owner else None,
    )
    try:
        async with db.begin_nested():
            db.add(p)
            await db.flush()
    except IntegrityError:
        raise Conflict("This email already has access to the link")
    await db.refresh(p)
    return p


def _reject_owner(permission: Permission) -> None:
    if permission.role == ROLE_OWNER:
        logger.warning("Attempt to modify owner permission %s on link %s", permission.id, permission.link_id)
        raise Conflict("The owner's permission cannot be modified or removed")


async def promote_to_editor(db: AsyncSession, permission: Permission, notifier: CodeNotifier) -> Permission:
    """Editor rights take effect only once the email proves it can receive the code."""
    _reject_owner(permission)
    code, expires_at = generate_verification_code()
    permission.role = ROLE_EDITOR
    permission.is_verified = False
    permission.verified_at = None
    permission.verification_code_hash = hash_code(code)
    permission.verification_expires_at = expires_at
    await db.flush()
    await notifier.send_code(permission.email, code, expires_at)
    await db.refresh(permission)
    return permission


async def verify_and_activate(db: AsyncSession, permission: Permission, code: str) -> Permission:
    if not permission.verification_code_hash or not permission.verification_expires_at:
        raise ValidationFailed("No verification is pending for this permission")
    if _as_utc(permission.verification_expires_at) < utcnow():
        raise ValidationFailed("Verification code has expired")
    if not verify_code(code, permission.verification_code_hash):
        logger.warning("Wrong verification code for permission %s", permission.id)
        raise ValidationFailed("Invalid verification code")

    permission.is_verified = True
    permission.verified_at = utcnow()
    permission.verification_code_hash = None
    permission.verification_expires_at = None
    await db.flush()
    await db.refresh(permission)
    logger.info("Permission %s verified as %s", permission.id, permission.role)
    return permission


async def update_role(db: AsyncSession, permission: Permission, role: str, notifier: CodeNotifier) -> Permission:
    _reject_owner(permission)
    if role == ROLE_OWNER or role not in ROLE_RANK:
        raise ValidationFailed(f"Role {role!r} cannot be assigned")
    if role == ROLE_EDITOR:
        if permission.role == ROLE_EDITOR and permission.is_verified:
            return permission
        return await promote_to_editor(db, permission, notifier)

    permission.role = role
    permission.verification_code_hash = None
    permission.verification_expires_at = None
    await db.flush()
    await db.refresh(permission)
    return permission


async def remove_permission(db: AsyncSession, permission: Permission) -> None:
    _reject_owner(permission)
    await db.delete(permission)
    await db.flush()


async def ensure_uploader_permission(db: AsyncSession, link_id: uuid.UUID, email: str) -> Permission:
    """Idempotent under concurrency: a lost insert race re-reads the winner's row."""
    email = _normalize(email)
    existing = await get_permission_for_email(db, link_id, email)
    if existing:
        return existing
    p = Permission(link_id=link_id, email=email, role=ROLE_UPLOADER)
    try:
        async with db.begin_nested():
            db.add(p)
            await db.flush()
    except IntegrityError:
        existing = await get_permission_for_email(db, link_id, email)
        if existing is None:
            raise
        return existing
    return p


async def authorize_contribution(db: AsyncSession, link: Link, email: str) -> Permission:
    """Public links admit anyone and record them; dedicated links need an existing row."""
    if link.is_public:
        permission = await ensure_uploader_permission(db, link.id, email)
    else:
        permission = await get_permission_for_email(db, link.id, email)
        if permission is None:
            logger.warning("Contribution refused: link=%s is dedicated and %s is not listed", link.id, _normalize(email))
            raise NotFound("Link not found")
    permission.last_activity_at = utcnow()
    await db.flush()
    return permission
