"""Application wiring for the resell tracker.

Configuration, database setup, middleware, routers and error handlers are all
assembled here on import so ``resell_tracker.app`` is ready to serve.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import settings
from .core.errors import (
    BillingNotConfigured,
    CheckoutRejected,
    ProviderError,
    SaleRejected,
    SubscriptionRequired,
    billing_not_configured_handler,
    checkout_rejected_handler,
    http_exception_handler,
    provider_error_handler,
    sale_rejected_handler,
    subscription_required_handler,
    validation_exception_handler,
)
from .db.migrate import run_migrations
from .db.session import Base, engine
from .middlewares import RequestIdMiddleware

# Importing the models registers their tables with the metadata.
from .models import inventory as _inventory  # noqa: F401
from .models import sale as _sale  # noqa: F401
from .models import subscription as _subscription  # noqa: F401

app = FastAPI(title=settings.APP_NAME)

# ---------- DB init/migrations ----------
Base.metadata.create_all(bind=engine)
run_migrations(engine)

# ---------- Middleware ----------
if settings.ALLOWED_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.add_middleware(RequestIdMiddleware)

# ---------- Routers ----------
from .routers import api_items as api_items_router  # noqa: E402

app.include_router(api_items_router.router)

from .routers import api_sales as api_sales_router  # noqa: E402

app.include_router(api_sales_router.router)

from .routers import api_fx as api_fx_router  # noqa: E402

app.include_router(api_fx_router.router)

from .routers import api_listing_import as api_listing_import_router  # noqa: E402

app.include_router(api_listing_import_router.router)

from .routers import api_billing as api_billing_router  # noqa: E402

app.include_router(api_billing_router.router)

from .routers import program as program_router  # noqa: E402

app.include_router(program_router.router)

# ---------- Exception handling ----------
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ProviderError, provider_error_handler)
app.add_exception_handler(SubscriptionRequired, subscription_required_handler)
app.add_exception_handler(SaleRejected, sale_rejected_handler)
app.add_exception_handler(CheckoutRejected, checkout_rejected_handler)
app.add_exception_handler(BillingNotConfigured, billing_not_configured_handler)


__all__ = ["app"]
