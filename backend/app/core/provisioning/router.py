from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth.service import Caller
from app.core.errors import ActionResult, ValidationFailed
from app.core.provisioning import service
from app.core.provisioning.identity import IdentityProviderClient
from app.core.provisioning.schemas import ProvisionRequest, ProvisionedAccount, UsernameAvailability
from app.dependencies import get_caller, get_db, get_identity_provider, get_session_factory

router = APIRouter(prefix="/onboarding", tags=["provisioning"])


@router.post("", response_model=ActionResult[ProvisionedAccount])
async def provision_account(
    data: ProvisionRequest,
    caller: Caller = Depends(get_caller),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    identity_client: IdentityProviderClient = Depends(get_identity_provider),
):
    return await service.provision_account(caller, data.username, session_factory, identity_client)


@router.get("/username-availability", response_model=UsernameAvailability)
async def username_availability(
    username: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    try:
        clean = service.sanitize_username(username)
    except ValidationFailed:
        return UsernameAvailability(username=username, available=False)
    available = await service.is_username_available(db, clean, exclude_user_id=caller.user_id)
    return UsernameAvailability(username=clean, available=available)
