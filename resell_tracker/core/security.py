"""Verification of session tokens minted by the external identity provider."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from .config import settings


@dataclass(frozen=True)
class Identity:
    id: str
    session_id: str | None = None


class IdentityClaims(BaseModel):
    sub: str
    exp: datetime
    iat: datetime
    iss: str
    aud: str
    sid: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def issue_identity_token(
    owner_id: str,
    *,
    session_id: str | None = None,
    ttl: timedelta = timedelta(hours=1),
) -> str:
    """Mint a token the way the identity provider does; used by tests and local dev."""

    now = _now()
    payload: dict[str, Any] = {
        "sub": owner_id,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
        "iss": settings.IDENTITY_JWT_ISSUER,
        "aud": settings.IDENTITY_JWT_AUDIENCE,
    }
    if session_id:
        payload["sid"] = session_id
    return jwt.encode(payload, settings.IDENTITY_JWT_SECRET, algorithm=settings.IDENTITY_JWT_ALGORITHM)


def decode_identity_token(token: str) -> Identity:
    try:
        decoded = jwt.decode(
            token,
            settings.IDENTITY_JWT_SECRET,
            algorithms=[settings.IDENTITY_JWT_ALGORITHM],
            audience=settings.IDENTITY_JWT_AUDIENCE,
            issuer=settings.IDENTITY_JWT_ISSUER,
        )
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    try:
        claims = IdentityClaims.model_validate(decoded)
    except ValidationError as exc:
        raise ValueError("Invalid token payload") from exc
    if not claims.sub.strip():
        raise ValueError("Invalid token subject")
    return Identity(id=claims.sub, session_id=claims.sid)
