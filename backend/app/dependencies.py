import hmac
import logging
import uuid
from dataclasses import dataclass
from typing import Annotated, AsyncGenerator

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth.service import Caller, TokenIdentityGateway, get_identity_gateway
from app.core.errors import NotFound, Unauthorized
from app.core.files.storage import ObjectStorage, get_object_storage
from app.core.permissions.notifier import CodeNotifier, get_code_notifier
from app.core.provisioning.identity import IdentityProviderClient, get_identity_provider_client
from app.core.users.models import User
from app.core.workspaces.models import Workspace
from app.core.workspaces.service import get_workspace_by_user
from app.db.session import AsyncSessionLocal
from app.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

bearer = HTTPBearer(auto_error=False)


@dataclass
class CurrentWorkspace:
    caller: Caller
    user: User
    workspace: Workspace
    workspace_id: uuid.UUID


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        async with session.begin():
            yield session


async def get_caller(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)],
    gateway: TokenIdentityGateway = Depends(get_identity_gateway),
) -> Caller:
    return gateway.resolve(credentials.credentials if credentials else None)


async def get_current_workspace(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> CurrentWorkspace:
    user = await db.get(User, caller.user_id)
    if not user or not user.is_active:
        raise NotFound("Account not provisioned")
    workspace = await get_workspace_by_user(db, user.id)
    if not workspace:
        raise NotFound("Account not provisioned")
    return CurrentWorkspace(caller=caller, user=user, workspace=workspace, workspace_id=workspace.id)


def get_storage() -> ObjectStorage:
    return get_object_storage()


def get_notifier() -> CodeNotifier:
    return get_code_notifier()


def get_identity_provider() -> IdentityProviderClient:
    return get_identity_provider_client()


async def require_service_token(x_service_token: Annotated[str | None, Header()] = None) -> None:
    """Guards callbacks from the scanning and thumbnail workers."""
    if not x_service_token or not hmac.compare_digest(x_service_token, settings.SERVICE_TOKEN):
        logger.warning("Rejected internal callback with missing or bad service token")
        raise Unauthorized("Invalid service token")


def get_session_factory() -> async_sessionmaker:
    """Provisioning manages its own transactions instead of the per-request one."""
    return AsyncSessionLocal
