from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security.utils import get_authorization_scheme_param

from ..core.config import settings
from ..core.security import Identity, decode_identity_token
from ..middlewares import owner_ctx_var, session_ctx_var

logger = logging.getLogger(__name__)


def _bind_identity(request: Request, identity: Identity) -> None:
    owner_ctx_var.set(identity.id)
    session_ctx_var.set(identity.session_id)
    request.state.owner_id = identity.id
    request.state.session_id = identity.session_id
    request.state.identity = identity


def _token_from(request: Request, authorization: str | None) -> str | None:
    if authorization:
        scheme, credentials = get_authorization_scheme_param(authorization)
        if scheme.lower() == "bearer" and credentials:
            return credentials
    return request.cookies.get(settings.SESSION_COOKIE_NAME) or None


async def current_identity(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Identity | None:
    """Identity behind the request's bearer token or session cookie, if any."""

    token = _token_from(request, authorization)
    if not token:
        return None
    try:
        identity = decode_identity_token(token)
    except ValueError as exc:
        logger.info("rejected identity token: %s", exc)
        return None
    _bind_identity(request, identity)
    return identity


async def require_identity(identity: Identity | None = Depends(current_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return identity
