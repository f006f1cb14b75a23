from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """An upstream provider (FX rates, billing, listing pages) failed or answered nonsense."""

    def __init__(self, message: str, *, details: Any | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class BillingNotConfigured(Exception):
    """Raised when billing credentials are missing."""


class WebhookSignatureError(ValueError):
    """The webhook payload could not be authenticated."""


class CheckoutRejected(ValueError):
    """The owner may not start the requested checkout."""


class SaleRejected(ValueError):
    def __init__(self, message: str, *, status_code: int = status.HTTP_400_BAD_REQUEST) -> None:
        super().__init__(message)
        self.status_code = status_code


class SubscriptionRequired(Exception):
    """Raised by the protected-area guard; ``reason`` ends up in the pricing redirect."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ErrorEnvelope(JSONResponse):
    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        payload: dict[str, Any] = {"error": message, "code": code}
        if details is not None:
            payload["details"] = details
        super().__init__(payload, status_code=status_code, headers=headers)


def _wants_html(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    return "text/html" in accept and not request.url.path.startswith("/api")


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_401_UNAUTHORIZED and _wants_html(request):
        if not request.url.path.startswith(settings.SIGN_IN_PATH):
            query = urlencode({"redirect_url": request.url.path})
            return RedirectResponse(url=f"{settings.SIGN_IN_PATH}?{query}", status_code=status.HTTP_302_FOUND)
    detail = exc.detail
    if isinstance(detail, str):
        message = detail
    else:
        message = "Error"
    details = detail if isinstance(detail, dict) else None
    return ErrorEnvelope(
        status_code=exc.status_code,
        code="http_error",
        message=message,
        details=details,
        headers=getattr(exc, "headers", None),
    )


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(loc)
    msg = first.get("msg") or "invalid value"
    return f"{field}: {msg}" if field else msg


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return ErrorEnvelope(
        status_code=status.HTTP_400_BAD_REQUEST,
        code="validation_error",
        message=_describe_validation_error(exc),
        details={"errors": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    cleaned: list[dict[str, Any]] = []
    for error in exc.errors():
        cleaned.append(
            {
                "loc": [str(part) for part in error.get("loc", ())],
                "msg": str(error.get("msg", "")),
                "type": str(error.get("type", "")),
            }
        )
    return cleaned


async def provider_error_handler(request: Request, exc: ProviderError):
    logger.warning("upstream provider error on %s: %s", request.url.path, exc.message)
    return ErrorEnvelope(
        status_code=status.HTTP_502_BAD_GATEWAY,
        code="provider_error",
        message=exc.message,
        details=exc.details,
    )


async def subscription_required_handler(request: Request, exc: SubscriptionRequired):
    if _wants_html(request):
        query = urlencode({"reason": exc.reason})
        return RedirectResponse(url=f"{settings.PRICING_PATH}?{query}", status_code=status.HTTP_303_SEE_OTHER)
    return ErrorEnvelope(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        code="subscription_required",
        message="An active subscription is required",
        details={"reason": exc.reason, "redirect": f"{settings.PRICING_PATH}?{urlencode({'reason': exc.reason})}"},
    )


async def sale_rejected_handler(request: Request, exc: SaleRejected):
    return ErrorEnvelope(status_code=exc.status_code, code="sale_rejected", message=str(exc))


async def checkout_rejected_handler(request: Request, exc: CheckoutRejected):
    return ErrorEnvelope(status_code=status.HTTP_400_BAD_REQUEST, code="checkout_rejected", message=str(exc))


async def billing_not_configured_handler(request: Request, exc: BillingNotConfigured):
    logger.error("billing call on %s without credentials", request.url.path)
    return ErrorEnvelope(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="billing_not_configured",
        message="Billing is not configured",
    )
