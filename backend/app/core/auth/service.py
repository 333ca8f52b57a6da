import logging
import uuid
from dataclasses import dataclass

from jose import JWTError

from app.core.auth.security import decode_identity_token
from app.core.errors import Unauthorized

logger = logging.getLogger(__name__)


@dataclass
class Caller:
    """Verified identity handed over by the identity provider. Never a credential check of our own."""
    user_id: uuid.UUID
    email: str
    first_name: str | None = None
    last_name: str | None = None
    avatar_url: str | None = None


class TokenIdentityGateway:
    def resolve(self, token: str | None) -> Caller:
        if not token:
            raise Unauthorized("Not authenticated")
        try:
            payload = decode_identity_token(token)
            user_id = uuid.UUID(payload["sub"])
        except (JWTError, ValueError) as exc:
            logger.warning("Rejected identity token: %s", exc)
            raise Unauthorized("Invalid token")
        return Caller(
            user_id=user_id,
            email=payload["email"].lower(),
            first_name=payload.get("given_name"),
            last_name=payload.get("family_name"),
            avatar_url=payload.get("picture"),
        )


_gateway = TokenIdentityGateway()


def get_identity_gateway() -> TokenIdentityGateway:
    return _gateway
