import secrets
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from app.settings import get_settings

settings = get_settings()


def hash_code(plain: str) -> str:
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt()).decode()


def verify_code(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


def generate_verification_code() -> tuple[str, datetime]:
    code = f"{secrets.randbelow(1_000_000):06d}"
    expires = datetime.now(timezone.utc) + timedelta(minutes=settings.VERIFICATION_CODE_TTL_MINUTES)
    return code, expires


def create_identity_token(user_id: uuid.UUID, email: str, given_name: str | None = None, family_name: str | None = None, expires_minutes: int = 15) -> str:
    """Issues a token shaped like the identity provider's. Used by the seed script and tests."""
    expires = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": str(user_id), "email": email, "given_name": given_name, "family_name": family_name, "exp": expires}
    if settings.IDENTITY_JWT_AUDIENCE:
        payload["aud"] = settings.IDENTITY_JWT_AUDIENCE
    return jwt.encode(payload, settings.IDENTITY_JWT_SECRET, algorithm=settings.IDENTITY_JWT_ALGORITHM)


def decode_identity_token(token: str) -> dict:
    options = {"verify_aud": bool(settings.IDENTITY_JWT_AUDIENCE)}
    payload = jwt.decode(
        token,
        settings.IDENTITY_JWT_SECRET,
        algorithms=[settings.IDENTITY_JWT_ALGORITHM],
        audience=settings.IDENTITY_JWT_AUDIENCE,
        options=options,
    )
    if not payload.get("sub") or not payload.get("email"):
        raise JWTError("Token is missing caller claims")
    return payload


# ── Editor sessions on public link addresses ─────────────────────────────────

def create_editor_token(permission_id: uuid.UUID, link_id: uuid.UUID, expires_minutes: int | None = None) -> str:
    minutes = settings.EDITOR_TOKEN_TTL_MINUTES if expires_minutes is None else expires_minutes
    payload = {
        "sub": str(permission_id),
        "link": str(link_id),
        "typ": "editor",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.EDITOR_TOKEN_SECRET, algorithm="HS256")


def decode_editor_token(token: str) -> tuple[uuid.UUID, uuid.UUID]:
    payload = jwt.decode(token, settings.EDITOR_TOKEN_SECRET, algorithms=["HS256"])
    if payload.get("typ") != "editor":
        raise JWTError("Not an editor token")
    try:
        return uuid.UUID(payload["sub"]), uuid.UUID(payload["link"])
    except (KeyError, ValueError) as exc:
        raise JWTError("Editor token is missing claims") from exc
