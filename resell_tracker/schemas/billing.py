from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from .base import ApiModel


class CheckoutRequest(ApiModel):
    plan: str = Field(min_length=1)
    email: Optional[str] = None
    name: Optional[str] = None

    @field_validator("plan")
    @classmethod
    def upper_plan(cls, value: str) -> str:
        return value.strip().upper()


class RedirectUrl(ApiModel):
    url: str


class PlanOut(ApiModel):
    key: str
    label: str
    price_pence: int
    mode: str
    interval_months: Optional[int] = None
    trial_days: Optional[int] = None


class SubscriptionStatusOut(ApiModel):
    has_subscription: bool
    is_active: bool
    can_use_trial: bool
    status: Optional[str] = None
    plan: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    period_ends_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
    days_remaining: Optional[int] = None


class WebhookAck(ApiModel):
    received: bool = True
