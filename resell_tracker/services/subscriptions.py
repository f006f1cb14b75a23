"""Subscription state machine.

Billing-provider webhook events are the only thing that moves a subscription
between states; the one exception is trial expiry, which is noticed lazily by
the access check and written back the first time it is seen. Every handler is
an upsert or a plain status assignment so redelivered events land in the same
final state.
"""

from __future__ import annotations

import calendar
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session

from ..core.clock import from_unix, isoformat_z, parse_iso, utcnow
from ..core.config import settings
from ..core.errors import CheckoutRejected, ProviderError
from ..crud import subscriptions as crud
from ..models.subscription import (
    ACCESS_GRANTING_STATUSES,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from .billing import BillingClient

logger = logging.getLogger(__name__)

OWNER_KEY = "owner_id"


@dataclass(frozen=True)
class Plan:
    key: str
    label: str
    price_pence: int
    mode: str
    interval_months: int | None = None
    trial_days: int | None = None

    @property
    def price_id(self) -> str:
        return {
            SubscriptionPlan.TRIAL.value: settings.STRIPE_PRICE_TRIAL,
            SubscriptionPlan.MONTHLY.value: settings.STRIPE_PRICE_MONTHLY,
            SubscriptionPlan.YEARLY.value: settings.STRIPE_PRICE_YEARLY,
        }[self.key]


PLANS: dict[str, Plan] = {
    SubscriptionPlan.TRIAL.value: Plan(
        key=SubscriptionPlan.TRIAL.value,
        label="14-day trial",
        price_pence=100,
        mode="payment",
        trial_days=settings.TRIAL_DAYS,
    ),
    SubscriptionPlan.MONTHLY.value: Plan(
        key=SubscriptionPlan.MONTHLY.value,
        label="Monthly",
        price_pence=499,
        mode="subscription",
        interval_months=1,
    ),
    SubscriptionPlan.YEARLY.value: Plan(
        key=SubscriptionPlan.YEARLY.value,
        label="Yearly",
        price_pence=5000,
        mode="subscription",
        interval_months=12,
    ),
}

PROVIDER_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "trialing": SubscriptionStatus.TRIALING,
}


def map_provider_status(value: Any) -> str:
    return PROVIDER_STATUS_MAP.get(str(value or "").lower(), SubscriptionStatus.INACTIVE).value


def plan_for_price(price_id: str | None) -> str:
    if price_id and price_id == settings.STRIPE_PRICE_YEARLY:
        return SubscriptionPlan.YEARLY.value
    return SubscriptionPlan.MONTHLY.value


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


# ---------- webhook payload helpers ----------


def _metadata(obj: Mapping[str, Any]) -> dict[str, Any]:
    meta = obj.get("metadata")
    return dict(meta) if isinstance(meta, Mapping) else {}


def _id_of(value: Any) -> str | None:
    # Expandable fields arrive either as a bare id or as the expanded object.
    if isinstance(value, Mapping):
        value = value.get("id")
    if isinstance(value, str) and value:
        return value
    return None


def _first_item(obj: Mapping[str, Any]) -> dict[str, Any]:
    items = obj.get("items")
    data = items.get("data") if isinstance(items, Mapping) else None
    if isinstance(data, list) and data and isinstance(data[0], Mapping):
        return dict(data[0])
    return {}


def _subscription_period(obj: Mapping[str, Any]) -> tuple[datetime | None, datetime | None]:
    start = from_unix(obj.get("current_period_start"))
    end = from_unix(obj.get("current_period_end"))
    if start is None or end is None:
        # Newer API versions moved the period onto the subscription items.
        item = _first_item(obj)
        start = start or from_unix(item.get("current_period_start"))
        end = end or from_unix(item.get("current_period_end"))
    return start, end


def _subscription_price_id(obj: Mapping[str, Any]) -> str | None:
    item = _first_item(obj)
    price = item.get("price")
    if isinstance(price, Mapping):
        return _id_of(price)
    plan = obj.get("plan")
    return _id_of(plan) if isinstance(plan, Mapping) else None


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    direct = _id_of(invoice.get("subscription"))
    if direct:
        return direct
    parent = invoice.get("parent")
    details = parent.get("subscription_details") if isinstance(parent, Mapping) else None
    if isinstance(details, Mapping):
        return _id_of(details.get("subscription"))
    return None


# ---------- owner resolution ----------


class OwnerConflict(Exception):
    def __init__(self, candidates: list[str]) -> None:
        super().__init__(", ".join(candidates))
        self.candidates = candidates


def resolve_owner(
    db: Session,
    obj: Mapping[str, Any],
    billing: BillingClient | None,
) -> str | None:
    """Work out which owner a subscription event belongs to.

    Event metadata first, then the local record holding the customer id, then
    the customer's metadata at the provider. When two sources name different
    owners nothing is picked and :class:`OwnerConflict` is raised.
    """

    customer_id = _id_of(obj.get("customer"))
    from_metadata = _metadata(obj).get(OWNER_KEY) or None
    local = crud.get_by_customer(db, customer_id)
    from_local = local.owner_id if local is not None else None

    if from_metadata and from_local and from_metadata != from_local:
        raise OwnerConflict([from_metadata, from_local])
    if from_metadata or from_local:
        return from_metadata or from_local

    if billing is None or not customer_id:
        return None
    try:
        customer = billing.retrieve_customer(customer_id)
    except ProviderError as exc:
        logger.warning("customer lookup for %s failed: %s", customer_id, exc.message)
        return None
    return _metadata(customer).get(OWNER_KEY) or None


# ---------- event handlers ----------


def _start_trial(db: Session, owner_id: str, session: Mapping[str, Any], now: datetime) -> str:
    customer_id = _id_of(session.get("customer"))
    existing = crud.get_by_owner(db, owner_id)
    _record_checkout_payment(db, owner_id, session, "Trial payment")

    if existing is not None and existing.trial_start_date is not None:
        # Redelivery: the trial clock has already started.
        if customer_id and not existing.stripe_customer_id:
            crud.upsert_subscription(db, owner_id, {"stripe_customer_id": customer_id})
        return "trial_already_started"

    trial_end = parse_iso(_metadata(session).get("trial_end_date"))
    if trial_end is None or trial_end <= now:
        trial_end = now + timedelta(days=settings.TRIAL_DAYS)
    crud.upsert_subscription(
        db,
        owner_id,
        {
            "stripe_customer_id": customer_id,
            "stripe_price_id": PLANS[SubscriptionPlan.TRIAL.value].price_id,
            "status": SubscriptionStatus.TRIALING.value,
            "plan": SubscriptionPlan.TRIAL.value,
            "trial_start_date": now,
            "trial_end_date": trial_end,
            "trial_used": True,
            "cancel_at_period_end": False,
        },
    )
    logger.info("trial started for owner %s until %s", owner_id, isoformat_z(trial_end))
    return "trial_started"


def _start_subscription(db: Session, owner_id: str, session: Mapping[str, Any], now: datetime) -> str:
    plan_key = str(_metadata(session).get("plan") or "").upper()
    if plan_key != SubscriptionPlan.YEARLY.value:
        plan_key = SubscriptionPlan.MONTHLY.value
    plan = PLANS[plan_key]
    subscription_id = _id_of(session.get("subscription"))

    existing = crud.get_by_owner(db, owner_id)
    same_subscription = (
        existing is not None
        and existing.status == SubscriptionStatus.ACTIVE.value
        and subscription_id is not None
        and existing.stripe_subscription_id == subscription_id
        and existing.current_period_end is not None
    )
    values: dict[str, Any] = {
        "stripe_customer_id": _id_of(session.get("customer")),
        "stripe_subscription_id": subscription_id,
        "stripe_price_id": plan.price_id,
        "status": SubscriptionStatus.ACTIVE.value,
        "plan": plan.key,
        "trial_used": True,
    }
    if not same_subscription:
        values["current_period_start"] = now
        values["current_period_end"] = add_months(now, plan.interval_months or 1)
        values["cancel_at_period_end"] = False
    crud.upsert_subscription(db, owner_id, values)
    logger.info("subscription %s started for owner %s", plan.key, owner_id)
    return "subscription_started"


def _record_checkout_payment(db: Session, owner_id: str, session: Mapping[str, Any], description: str) -> None:
    payment_id = _id_of(session.get("payment_intent")) or _id_of(session.get("id"))
    crud.record_payment(
        db,
        owner_id=owner_id,
        provider_payment_id=payment_id,
        amount=session.get("amount_total") or 0,
        currency=session.get("currency") or "gbp",
        description=description,
    )


def handle_checkout_completed(
    db: Session, session: Mapping[str, Any], billing: BillingClient | None, now: datetime
) -> str:
    meta = _metadata(session)
    owner_id = meta.get(OWNER_KEY) or session.get("client_reference_id")
    if not owner_id:
        logger.warning("checkout session %s has no owner; dropped", session.get("id"))
        return "dropped"
    mode = session.get("mode")
    if mode == "payment" and str(meta.get("plan") or "").upper() == SubscriptionPlan.TRIAL.value:
        return _start_trial(db, owner_id, session, now)
    if mode == "subscription":
        return _start_subscription(db, owner_id, session, now)
    return "ignored"


def handle_subscription_upserted(
    db: Session, obj: Mapping[str, Any], billing: BillingClient | None, now: datetime
) -> str:
    try:
        owner_id = resolve_owner(db, obj, billing)
    except OwnerConflict as exc:
        logger.error(
            "subscription %s maps to conflicting owners; not applied",
            obj.get("id"),
            extra={"extra_data": {"candidates": exc.candidates}},
        )
        return "owner_conflict"
    if not owner_id:
        logger.warning("no owner for subscription %s; dropped", obj.get("id"))
        return "dropped"

    price_id = _subscription_price_id(obj)
    period_start, period_end = _subscription_period(obj)
    values: dict[str, Any] = {
        "stripe_customer_id": _id_of(obj.get("customer")),
        "stripe_subscription_id": _id_of(obj.get("id")),
        "stripe_price_id": price_id,
        "status": map_provider_status(obj.get("status")),
        "plan": plan_for_price(price_id),
        "cancel_at_period_end": bool(obj.get("cancel_at_period_end")),
    }
    if period_start is not None:
        values["current_period_start"] = period_start
    if period_end is not None:
        values["current_period_end"] = period_end
    crud.upsert_subscription(db, owner_id, values)
    return "subscription_synced"


def handle_subscription_deleted(
    db: Session, obj: Mapping[str, Any], billing: BillingClient | None, now: datetime
) -> str:
    record = crud.get_by_customer(db, _id_of(obj.get("customer")))
    if record is None:
        return "ignored"
    _, period_end = _subscription_period(obj)
    values: dict[str, Any] = {"status": SubscriptionStatus.CANCELLED.value}
    if period_end is not None:
        values["current_period_end"] = period_end
    crud.upsert_subscription(db, record.owner_id, values)
    return "subscription_cancelled"


def handle_invoice_paid(
    db: Session, invoice: Mapping[str, Any], billing: BillingClient | None, now: datetime
) -> str:
    if not _invoice_subscription_id(invoice):
        return "ignored"
    record = crud.get_by_customer(db, _id_of(invoice.get("customer")))
    if record is None:
        logger.warning("paid invoice %s for unknown customer", invoice.get("id"))
        return "ignored"
    crud.record_payment(
        db,
        owner_id=record.owner_id,
        provider_payment_id=_id_of(invoice.get("payment_intent")) or _id_of(invoice.get("id")),
        amount=invoice.get("amount_paid") or 0,
        currency=invoice.get("currency") or "gbp",
        description=invoice.get("description") or "Subscription payment",
    )
    if record.status == SubscriptionStatus.PAST_DUE.value:
        crud.set_status(db, record, SubscriptionStatus.ACTIVE.value)
    return "payment_recorded"


def handle_invoice_failed(
    db: Session, invoice: Mapping[str, Any], billing: BillingClient | None, now: datetime
) -> str:
    if not _invoice_subscription_id(invoice):
        return "ignored"
    updated = crud.mark_customer_past_due(db, _id_of(invoice.get("customer")))
    return "marked_past_due" if updated else "ignored"


EventHandler = Callable[..., str]

EVENT_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_upserted,
    "customer.subscription.updated": handle_subscription_upserted,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_paid,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_failed": handle_invoice_failed,
}


def dispatch_event(
    db: Session,
    event: Mapping[str, Any],
    billing: BillingClient | None = None,
    *,
    now: datetime | None = None,
) -> str:
    event_type = str(event.get("type") or "")
    data = event.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None or not isinstance(obj, Mapping):
        logger.info("webhook %s ignored", event_type or "<untyped>")
        return "ignored"
    outcome = handler(db, obj, billing, now or utcnow())
    logger.info(
        "webhook %s handled",
        event_type,
        extra={"extra_data": {"event_id": event.get("id"), "outcome": outcome}},
    )
    return outcome


# ---------- access checks ----------


def days_remaining(end: datetime | None, now: datetime) -> int:
    if end is None:
        return 0
    seconds = (end - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def is_trial_expired(record: Subscription, now: datetime) -> bool:
    return (
        record.status == SubscriptionStatus.TRIALING.value
        and record.trial_end_date is not None
        and now >= record.trial_end_date
    )


def is_active(record: Subscription | None, now: datetime) -> bool:
    if record is None or record.status not in ACCESS_GRANTING_STATUSES:
        return False
    if is_trial_expired(record, now):
        return False
    if record.current_period_end is not None and record.current_period_end <= now:
        return False
    return True


def check_subscription(db: Session, owner_id: str, now: datetime | None = None) -> Subscription | None:
    """Load the owner's subscription, persisting trial expiry if it has happened."""

    moment = now or utcnow()
    record = crud.get_by_owner(db, owner_id)
    if record is not None and is_trial_expired(record, moment):
        logger.info("trial expired for owner %s", owner_id)
        crud.set_status(db, record, SubscriptionStatus.TRIAL_EXPIRED.value)
    return record


_REASONS = {
    SubscriptionStatus.TRIAL_EXPIRED.value: "trial_expired",
    SubscriptionStatus.CANCELLED.value: "cancelled",
    SubscriptionStatus.PAST_DUE.value: "past_due",
    SubscriptionStatus.INACTIVE.value: "inactive",
}


def denial_reason(record: Subscription | None, now: datetime) -> str | None:
    if record is None:
        return "no_subscription"
    if is_trial_expired(record, now):
        return "trial_expired"
    if record.status not in ACCESS_GRANTING_STATUSES:
        return _REASONS.get(record.status, "no_subscription")
    if record.current_period_end is not None and record.current_period_end <= now:
        return "inactive"
    return None


@dataclass
class Banner:
    kind: str
    message: str
    days_remaining: int | None = None


@dataclass
class AccessDecision:
    allowed: bool
    reason: str | None = None
    subscription: Subscription | None = None
    banners: list[Banner] = field(default_factory=list)


def banners_for(record: Subscription, now: datetime) -> list[Banner]:
    banners: list[Banner] = []
    if record.status == SubscriptionStatus.TRIALING.value and record.trial_end_date is not None:
        remaining = days_remaining(record.trial_end_date, now)
        if remaining <= settings.TRIAL_WARNING_DAYS:
            noun = "day" if remaining == 1 else "days"
            banners.append(
                Banner(
                    kind="trial_ending",
                    message=f"Your trial ends in {remaining} {noun}. Choose a plan to keep access.",
                    days_remaining=remaining,
                )
            )
    if record.cancel_at_period_end:
        remaining = days_remaining(record.current_period_end, now) if record.current_period_end else None
        banners.append(
            Banner(
                kind="cancelling",
                message="Your subscription is set to cancel at the end of the current period.",
                days_remaining=remaining,
            )
        )
    return banners


def evaluate_access(db: Session, owner_id: str, now: datetime | None = None) -> AccessDecision:
    moment = now or utcnow()
    record = check_subscription(db, owner_id, moment)
    reason = denial_reason(record, moment)
    if reason is not None:
        return AccessDecision(allowed=False, reason=reason, subscription=record)
    return AccessDecision(allowed=True, subscription=record, banners=banners_for(record, moment))  # type: ignore[arg-type]


def status_summary(db: Session, owner_id: str, now: datetime | None = None) -> dict[str, Any]:
    moment = now or utcnow()
    record = check_subscription(db, owner_id, moment)
    if record is None:
        return {
            "hasSubscription": False,
            "isActive": False,
            "canUseTrial": True,
            "status": None,
            "plan": None,
            "trialEndsAt": None,
            "periodEndsAt": None,
            "cancelAtPeriodEnd": False,
            "daysRemaining": None,
        }
    if record.status == SubscriptionStatus.TRIALING.value:
        remaining = days_remaining(record.trial_end_date, moment)
    elif record.current_period_end is not None:
        remaining = days_remaining(record.current_period_end, moment)
    else:
        remaining = None
    return {
        "hasSubscription": True,
        "isActive": is_active(record, moment),
        "canUseTrial": not record.trial_used,
        "status": record.status,
        "plan": record.plan,
        "trialEndsAt": record.trial_end_date,
        "periodEndsAt": record.current_period_end,
        "cancelAtPeriodEnd": bool(record.cancel_at_period_end),
        "daysRemaining": remaining,
    }


# ---------- checkout & portal ----------


class NoBillingCustomer(LookupError):
    """The owner has never completed a checkout, so there is no portal to open."""


def start_checkout(
    db: Session,
    billing: BillingClient,
    owner_id: str,
    plan_key: str,
    *,
    email: str | None = None,
    name: str | None = None,
    now: datetime | None = None,
) -> str:
    """Create a hosted checkout session and return its URL."""

    moment = now or utcnow()
    plan = PLANS.get(str(plan_key or "").upper())
    if plan is None:
        raise CheckoutRejected("Invalid plan")

    record = check_subscription(db, owner_id, moment)
    if record is not None:
        if plan.key == SubscriptionPlan.TRIAL.value and record.trial_used:
            raise CheckoutRejected("You have already used your trial. Please choose a subscription plan.")
        if record.status == SubscriptionStatus.TRIALING.value and not is_trial_expired(record, moment):
            raise CheckoutRejected("You already have an active trial.")

    customer_id = record.stripe_customer_id if record is not None else None
    if not customer_id:
        customer = billing.create_customer(email=email, name=name, metadata={OWNER_KEY: owner_id})
        customer_id = _id_of(customer.get("id"))
        if not customer_id:
            raise ProviderError("Billing provider returned no customer id")

    metadata = {OWNER_KEY: owner_id, "plan": plan.key}
    subscription_metadata = None
    if plan.key == SubscriptionPlan.TRIAL.value:
        metadata["trial_end_date"] = isoformat_z(moment + timedelta(days=settings.TRIAL_DAYS))
    else:
        subscription_metadata = dict(metadata)

    base_url = settings.APP_URL.rstrip("/")
    session = billing.create_checkout_session(
        customer_id=customer_id,
        price_id=plan.price_id,
        mode=plan.mode,
        metadata=metadata,
        subscription_metadata=subscription_metadata,
        success_url=f"{base_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}{settings.PRICING_PATH}?cancelled=true",
    )
    url = session.get("url")
    if not url:
        raise ProviderError("Billing provider returned no checkout URL")
    logger.info("checkout %s created for owner %s", plan.key, owner_id)
    return url


def open_portal(db: Session, billing: BillingClient, owner_id: str) -> str:
    record = crud.get_by_owner(db, owner_id)
    if record is None or not record.stripe_customer_id:
        raise NoBillingCustomer(owner_id)
    base_url = settings.APP_URL.rstrip("/")
    session = billing.create_billing_portal_session(
        customer_id=record.stripe_customer_id,
        return_url=f"{base_url}/program",
    )
    url = session.get("url")
    if not url:
        raise ProviderError("Billing provider returned no portal URL")
    return url
