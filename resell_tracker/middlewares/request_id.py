from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
owner_ctx_var: ContextVar[str | None] = ContextVar("owner_id", default=None)
session_ctx_var: ContextVar[str | None] = ContextVar("session_id", default=None)
logger = logging.getLogger("resell_tracker.request")


def _access_fields(request: Request) -> dict[str, object]:
    """Outcome of the subscription gate, when the route went through it."""

    denied = getattr(request.state, "access_denied", None)
    if denied:
        return {"access": "denied", "access_reason": denied}
    decision = getattr(request.state, "access", None)
    if decision is None:
        return {}
    fields: dict[str, object] = {"access": "allowed"}
    if decision.subscription is not None:
        fields["subscription_status"] = decision.subscription.status
    if decision.banners:
        fields["banners"] = [banner.kind for banner in decision.banners]
    return fields


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with a correlation id and log one line per request.

    The line names the owner and identity session behind the request and, for
    the paid area, whether the subscription gate let it through.
    """

    def __init__(self, app, header_name: str = "X-Request-ID") -> None:  # type: ignore[override]
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self.header_name) or uuid4().hex
        token = request_id_ctx_var.set(request_id)
        owner_token = owner_ctx_var.set(None)
        session_token = session_ctx_var.set(None)
        request.state.request_id = request_id
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
            owner_ctx_var.reset(owner_token)
            session_ctx_var.reset(session_token)
        duration_ms = (time.perf_counter() - start) * 1000
        response.headers[self.header_name] = request_id
        response.headers.setdefault("X-Response-Time", f"{duration_ms:.2f}ms")

        # The endpoint runs in its own task, so identity comes back via request.state.
        extra_data: dict[str, object] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration_ms, 2),
        }
        owner = getattr(request.state, "owner_id", None)
        if owner:
            extra_data["owner_id"] = owner
        session_id = getattr(request.state, "session_id", None)
        if session_id:
            extra_data["session_id"] = session_id
        extra_data.update(_access_fields(request))
        logger.info("request.completed", extra={"extra_data": extra_data})
        return response
