"""
Client for the identity provider's admin API. Only used after provisioning
commits, to push the chosen username back to the provider's record.
"""
import logging
import uuid
from typing import Protocol

import httpx

from app.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class IdentityProviderError(Exception):
    pass


class IdentityProviderClient(Protocol):
    async def update_username(self, user_id: uuid.UUID, username: str) -> None: ...


class HttpIdentityProviderClient:
    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def update_username(self, user_id: uuid.UUID, username: str) -> None:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self.transport,
            ) as client:
                response = await client.patch(f"/users/{user_id}", json={"username": username})
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Identity provider update for user %s failed: %s", user_id, exc)
            raise IdentityProviderError(str(exc)) from exc


_client: HttpIdentityProviderClient | None = None


def get_identity_provider_client() -> IdentityProviderClient:
    global _client
    if _client is None:
        _client = HttpIdentityProviderClient(
            settings.IDENTITY_PROVIDER_URL,
            settings.IDENTITY_PROVIDER_API_KEY,
            settings.IDENTITY_PROVIDER_TIMEOUT_SECONDS,
        )
    return _client
