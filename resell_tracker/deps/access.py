from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..core.errors import SubscriptionRequired
from ..core.security import Identity
from ..db.session import get_db
from ..services.subscriptions import AccessDecision, evaluate_access
from .auth import require_identity


def require_program_access(
    request: Request,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
) -> AccessDecision:
    """Gate for the protected area; denies with the reason the pricing page shows."""

    decision = evaluate_access(db, identity.id)
    if not decision.allowed:
        request.state.access_denied = decision.reason or "no_subscription"
        raise SubscriptionRequired(decision.reason or "no_subscription")
    request.state.access = decision
    return decision
