"""
codesage/features/plans/lifecycle.py

Plan lifecycle: subscribe, cancel, expiry evaluation.

States are Free (plan is None) and Active (plan set, is_active True).
subscribe moves Free/Active -> Active, cancel moves Active -> Free. Passing
expires_at does not transition anything by itself; callers that want expiry
enforced ask effective_is_active() with the "derived" policy.
"""

import calendar
from datetime import datetime, timezone
from typing import Optional
import logging

from codesage.core.errors import ValidationError
from codesage.models.plan import BillingCycle, Plan
from codesage.models.subscription import Subscription


logger = logging.getLogger(__name__)

EXPIRY_POLICY_CACHED = "cached"
EXPIRY_POLICY_DERIVED = "derived"

CYCLE_MONTHS = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.SEMESTER: 6,
    BillingCycle.YEARLY: 12,
}


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def add_calendar_months(moment: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping the day to the target month's length.

    Jan 31 + 1 month -> Feb 28 (or 29); Feb 29 + 12 months -> Feb 28.
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def compute_expiry(billing_cycle: BillingCycle, now: Optional[datetime] = None) -> datetime:
    """Expiry for a subscription started at now on the given cycle."""
    start = _normalize_now(now)
    try:
        months = CYCLE_MONTHS[BillingCycle(billing_cycle)]
    except (KeyError, ValueError):
        raise ValidationError(f"Unknown billing cycle: {billing_cycle}")
    return add_calendar_months(start, months)


def subscribe(subscription: Subscription, plan: Plan, now: Optional[datetime] = None) -> Subscription:
    """
    Activate plan on the subscription.

    Overwrites any previous plan and expiry unconditionally. Usage counters
    are carried over untouched.
    """
    expires_at = compute_expiry(plan.billing_cycle, now)
    if subscription.plan is not None and subscription.plan.id != plan.id:
        logger.info(
            "[plans] replacing active plan",
            extra={"previous_plan": subscription.plan.id, "plan_id": plan.id},
        )
    return subscription.model_copy(
        update={"plan": plan, "is_active": True, "expires_at": expires_at}
    )


def cancel(subscription: Subscription) -> Subscription:
    """Return to the free tier. Usage counters are untouched."""
    return subscription.model_copy(
        update={"plan": None, "is_active": False, "expires_at": None}
    )


def is_expired(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    """True when expires_at is set and not in the future."""
    if subscription.expires_at is None:
        return False
    expires_at = subscription.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return _normalize_now(now) >= expires_at


def effective_is_active(
    subscription: Subscription,
    now: Optional[datetime] = None,
    policy: str = EXPIRY_POLICY_CACHED,
) -> bool:
    """
    Whether the subscription grants paid access.

    "cached": the stored is_active flag with a plan attached, expiry ignored.
    "derived": additionally requires now < expires_at.
    """
    if not (subscription.is_active and subscription.plan is not None):
        return False
    if policy == EXPIRY_POLICY_DERIVED:
        return not is_expired(subscription, now)
    if policy != EXPIRY_POLICY_CACHED:
        raise ValidationError(f"Unknown expiry policy: {policy}")
    return True
