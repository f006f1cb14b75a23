from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..core.config import settings
from ..core.errors import ErrorEnvelope, WebhookSignatureError
from ..core.security import Identity
from ..db.session import get_db
from ..deps.auth import require_identity
from ..schemas.billing import CheckoutRequest, PlanOut, RedirectUrl, SubscriptionStatusOut, WebhookAck
from ..services.billing import BillingClient, construct_event, get_billing_client
from ..services.subscriptions import (
    PLANS,
    NoBillingCustomer,
    dispatch_event,
    open_portal,
    start_checkout,
    status_summary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.get("/plans", response_model=list[PlanOut])
def api_plans():
    return [
        PlanOut(
            key=plan.key,
            label=plan.label,
            price_pence=plan.price_pence,
            mode=plan.mode,
            interval_months=plan.interval_months,
            trial_days=plan.trial_days,
        )
        for plan in PLANS.values()
    ]


@router.get("/status", response_model=SubscriptionStatusOut)
def api_status(identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    return SubscriptionStatusOut(**status_summary(db, identity.id))


@router.post("/checkout", response_model=RedirectUrl)
def api_checkout(
    payload: CheckoutRequest,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
):
    url = start_checkout(db, billing, identity.id, payload.plan, email=payload.email, name=payload.name)
    return RedirectUrl(url=url)


@router.post("/portal", response_model=RedirectUrl)
def api_portal(
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
):
    try:
        url = open_portal(db, billing, identity.id)
    except NoBillingCustomer as exc:
        raise HTTPException(status_code=404, detail="No billing account found") from exc
    return RedirectUrl(url=url)


def _process(db: Session, event: dict, billing: BillingClient) -> None:
    try:
        dispatch_event(db, event, billing)
    except Exception:
        # Acknowledge anyway; the provider stays the source of truth and a
        # later event reconciles.
        db.rollback()
        logger.exception("webhook %s processing failed", event.get("type"))


@router.post("/webhook", response_model=WebhookAck)
async def api_webhook(
    request: Request,
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
):
    payload = await request.body()
    try:
        event = construct_event(
            payload,
            request.headers.get("stripe-signature"),
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except WebhookSignatureError as exc:
        logger.warning("webhook rejected: %s", exc)
        return ErrorEnvelope(status_code=400, code="invalid_signature", message="Invalid signature")
    logger.info("webhook received", extra={"extra_data": {"event_id": event.get("id"), "type": event.get("type")}})
    await run_in_threadpool(_process, db, event, billing)
    return WebhookAck(received=True)
