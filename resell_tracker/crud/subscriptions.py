from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.subscription import Payment, Subscription, SubscriptionStatus

# Fields a webhook handler may set through ``upsert_subscription``.
_WRITABLE = frozenset(
    {
        "stripe_customer_id",
        "stripe_subscription_id",
        "stripe_price_id",
        "status",
        "plan",
        "trial_start_date",
        "trial_end_date",
        "trial_used",
        "current_period_start",
        "current_period_end",
        "cancel_at_period_end",
    }
)

# Provider ids are never cleared by an event that simply omits them.
_KEEP_WHEN_MISSING = frozenset({"stripe_customer_id", "stripe_subscription_id", "stripe_price_id"})


def get_by_owner(db: Session, owner_id: str) -> Subscription | None:
    return db.execute(select(Subscription).where(Subscription.owner_id == owner_id)).scalar_one_or_none()


def get_by_customer(db: Session, customer_id: str | None) -> Subscription | None:
    if not customer_id:
        return None
    return db.execute(select(Subscription).where(Subscription.stripe_customer_id == customer_id)).scalars().first()


def list_by_customer(db: Session, customer_id: str | None) -> list[Subscription]:
    if not customer_id:
        return []
    return list(db.execute(select(Subscription).where(Subscription.stripe_customer_id == customer_id)).scalars())


def upsert_subscription(db: Session, owner_id: str, values: dict[str, Any]) -> Subscription:
    """Create the owner's record or overwrite the given fields on it.

    ``trial_used`` only ever moves from False to True.
    """

    record = get_by_owner(db, owner_id)
    if record is None:
        record = Subscription(owner_id=owner_id, status=SubscriptionStatus.INACTIVE.value, trial_used=False)
        db.add(record)
    for key, value in values.items():
        if key not in _WRITABLE:
            raise ValueError(f"unknown subscription field: {key}")
        if value is None and key in _KEEP_WHEN_MISSING:
            continue
        if key == "trial_used":
            value = bool(record.trial_used) or bool(value)
        setattr(record, key, value)
    db.commit()
    db.refresh(record)
    return record


def set_status(db: Session, record: Subscription, status: str) -> Subscription:
    if record.status != status:
        record.status = status
        db.commit()
        db.refresh(record)
    return record


def mark_customer_past_due(db: Session, customer_id: str | None) -> int:
    records = list_by_customer(db, customer_id)
    for record in records:
        record.status = SubscriptionStatus.PAST_DUE.value
    if records:
        db.commit()
    return len(records)


def get_payment(db: Session, provider_payment_id: str) -> Payment | None:
    return db.execute(select(Payment).where(Payment.stripe_payment_id == provider_payment_id)).scalar_one_or_none()


def record_payment(
    db: Session,
    *,
    owner_id: str,
    provider_payment_id: str | None,
    amount: int,
    currency: str,
    status: str = "succeeded",
    description: str | None = None,
) -> tuple[Payment, bool]:
    """Insert a payment unless one with the same provider id exists.

    Returns ``(payment, created)``.
    """

    if provider_payment_id:
        existing = get_payment(db, provider_payment_id)
        if existing is not None:
            return existing, False
    payment = Payment(
        owner_id=owner_id,
        stripe_payment_id=provider_payment_id or None,
        amount=max(0, int(amount or 0)),
        currency=(currency or "gbp").lower(),
        status=status,
        description=description,
    )
    db.add(payment)
    try:
        db.commit()
    except IntegrityError:
        # Raced with a concurrent redelivery of the same event.
        db.rollback()
        existing = get_payment(db, provider_payment_id) if provider_payment_id else None
        if existing is None:
            raise
        return existing, False
    db.refresh(payment)
    return payment, True


def list_payments(db: Session, owner_id: str) -> list[Payment]:
    stmt = select(Payment).where(Payment.owner_id == owner_id).order_by(Payment.created_at.desc())
    return list(db.execute(stmt).scalars())
