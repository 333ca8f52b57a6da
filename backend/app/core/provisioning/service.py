"""
First-login provisioning.

    idempotency check
    -> user -> workspace -> first link -> owner permission   (one transaction)
    -> commit
    -> identity provider sync                                 (best effort)

The transactional part is retried as a whole. The sync runs after commit and
can only add a warning to an otherwise successful result.
"""
import asyncio
import logging
import re

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth.service import Caller
from app.core.errors import ActionResult, Conflict, TransactionFailed, ValidationFailed, external_sync_warning
from app.core.links.models import Link
from app.core.permissions.models import Permission, ROLE_OWNER
from app.core.provisioning.identity import IdentityProviderClient
from app.core.provisioning.schemas import ProvisionedAccount
from app.core.users.models import User
from app.core.workspaces.models import Workspace
from app.core.workspaces.service import get_workspace_by_user
from app.db.base import utcnow
from app.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

USERNAME_MIN_LENGTH = 4
USERNAME_MAX_LENGTH = 32
_MAX_BACKOFF_SECONDS = 1.0


def sanitize_username(value: str) -> str:
    """Drops everything but letters, digits, ``-`` and ``_``. Case is kept."""
    username = re.sub(r"[^A-Za-z0-9_-]", "", value.strip())[:USERNAME_MAX_LENGTH]
    if len(username) < USERNAME_MIN_LENGTH:
        raise ValidationFailed(f"Username must be at least {USERNAME_MIN_LENGTH} characters")
    return username


def first_link_slug(username: str) -> str:
    return f"{username.lower()}-first-link"


async def is_username_available(db: AsyncSession, username: str, exclude_user_id=None) -> bool:
    q = select(User.id).where(func.lower(User.username) == username.lower())
    if exclude_user_id:
        q = q.where(User.id != exclude_user_id)
    return (await db.execute(q.limit(1))).first() is None


async def _existing_account(db: AsyncSession, workspace: Workspace) -> ProvisionedAccount:
    user = await db.get(User, workspace.user_id)
    link = (await db.execute(
        select(Link).where(Link.workspace_id == workspace.id).order_by(Link.created_at).limit(1)
    )).scalar_one_or_none()
    return ProvisionedAccount(
        user_id=workspace.user_id,
        workspace_id=workspace.id,
        username=user.username,
        link_id=link.id if link else None,
        link_slug=link.slug if link else None,
        created=False,
    )


# ── Transactional steps ───────────────────────────────────────────────────────

async def _create_user(db: AsyncSession, caller: Caller, username: str) -> User:
    user = await db.get(User, caller.user_id)
    if user is None:
        user = User(id=caller.user_id)
        db.add(user)
    # A row may survive from a deleted workspace; provisioning takes it over.
    user.email = caller.email
    user.username = username
    user.first_name = caller.first_name
    user.last_name = caller.last_name
    user.avatar_url = caller.avatar_url
    user.is_active = True
    user.deleted_at = None
    await db.flush()
    return user


async def _create_workspace(db: AsyncSession, user: User) -> Workspace:
    workspace = Workspace(user_id=user.id, name=f"{user.first_name or user.username}'s Workspace")
    db.add(workspace)
    await db.flush()
    return workspace


async def _create_first_link(db: AsyncSession, workspace: Workspace, username: str) -> Link:
    link = Link(
        workspace_id=workspace.id,
        slug=first_link_slug(username),
        name=f"{username}'s First Link",
        is_public=True,
    )
    db.add(link)
    await db.flush()
    return link


async def _create_owner_permission(db: AsyncSession, link: Link, email: str) -> Permission:
    permission = Permission(link_id=link.id, email=email, role=ROLE_OWNER, is_verified=True, verified_at=utcnow())
    db.add(permission)
    await db.flush()
    return permission


async def _provision_once(db: AsyncSession, caller: Caller, username: str) -> ProvisionedAccount:
    existing = await get_workspace_by_user(db, caller.user_id)
    if existing:
        return await _existing_account(db, existing)
    if not await is_username_available(db, username, exclude_user_id=caller.user_id):
        raise Conflict("Username is already taken")
    taken = await db.execute(select(Link.id).where(Link.slug == first_link_slug(username)).limit(1))
    if taken.first():
        raise Conflict("Username is already taken")
    email_owner = await db.execute(select(User.id).where(User.email == caller.email, User.id != caller.user_id).limit(1))
    if email_owner.first():
        raise Conflict("An account with this email already exists")

    user = await _create_user(db, caller, username)
    workspace = await _create_workspace(db, user)
    link = await _create_first_link(db, workspace, username)
    await _create_owner_permission(db, link, caller.email)
    return ProvisionedAccount(
        user_id=user.id, workspace_id=workspace.id, username=username, link_id=link.id, link_slug=link.slug,
    )


# ── Orchestrator ──────────────────────────────────────────────────────────────

async def provision_account(
    caller: Caller,
    username: str,
    session_factory: async_sessionmaker,
    identity_client: IdentityProviderClient | None = None,
) -> ActionResult[ProvisionedAccount]:
    username = sanitize_username(username)

    async with session_factory() as db:
        existing = await get_workspace_by_user(db, caller.user_id)
        if existing:
            return ActionResult(data=await _existing_account(db, existing))

    account = None
    attempts = max(1, settings.PROVISION_MAX_ATTEMPTS)
    for attempt in range(attempts):
        try:
            async with session_factory() as db:
                async with db.begin():
                    account = await _provision_once(db, caller, username)
            break
        except SQLAlchemyError as exc:
            logger.warning("Provisioning attempt %d/%d for %s rolled back: %s", attempt + 1, attempts, caller.user_id, exc)
            if attempt + 1 < attempts:
                await asyncio.sleep(min(settings.PROVISION_BACKOFF_SECONDS * 2 ** attempt, _MAX_BACKOFF_SECONDS))
    if account is None:
        logger.error("Provisioning for %s failed after %d attempts", caller.user_id, attempts)
        raise TransactionFailed("Could not set up your workspace, please try again")

    result = ActionResult(data=account)
    if not account.created:
        return result
    logger.info("Provisioned user=%s workspace=%s link=%s", account.user_id, account.workspace_id, account.link_slug)

    if identity_client is not None:
        try:
            await identity_client.update_username(caller.user_id, username)
        except Exception as exc:
            # The account is committed; a failed sync never fails the request.
            logger.warning("Username sync for user %s failed: %s", caller.user_id, exc)
            result.warnings.append(external_sync_warning(
                "Your workspace is ready, but your username could not be saved to your sign-in profile yet"
            ))
    return result
