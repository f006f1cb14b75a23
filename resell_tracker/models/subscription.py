"""Local mirror of the billing provider's view of each owner's subscription."""

from __future__ import annotations

import enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from ..core.clock import utcnow
from ..db.session import Base
from .inventory import new_id


class SubscriptionStatus(str, enum.Enum):
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"
    TRIAL_EXPIRED = "TRIAL_EXPIRED"
    INACTIVE = "INACTIVE"


class SubscriptionPlan(str, enum.Enum):
    TRIAL = "TRIAL"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


ACCESS_GRANTING_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value})


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(255), nullable=False, unique=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True, unique=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    stripe_price_id = Column(String(255), nullable=True)
    status = Column(String(32), nullable=False, default=SubscriptionStatus.INACTIVE.value)
    plan = Column(String(32), nullable=False, default=SubscriptionPlan.TRIAL.value)
    trial_start_date = Column(DateTime, nullable=True)
    trial_end_date = Column(DateTime, nullable=True)
    trial_used = Column(Boolean, nullable=False, default=False)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(255), nullable=False, index=True)
    stripe_payment_id = Column(String(255), nullable=True, unique=True)
    amount = Column(Integer, nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="gbp")
    status = Column(String(32), nullable=False, default="succeeded")
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
