from __future__ import annotations

from .request_id import RequestIdMiddleware, owner_ctx_var, request_id_ctx_var, session_ctx_var

__all__ = [
    "RequestIdMiddleware",
    "owner_ctx_var",
    "request_id_ctx_var",
    "session_ctx_var",
]
