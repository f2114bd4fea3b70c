"""
codesage/features/usage/service.py

Usage accounting service.

Handles:
- Recording one use of a metered feature (daily + lifetime together)
- Resetting daily counters at the day boundary

No cap is enforced here. Callers consult the entitlement evaluator first;
recording past the cap is allowed and simply counts.
"""

from typing import Union
import logging

from codesage.core.errors import ValidationError
from codesage.features.usage.limits import as_metered_feature
from codesage.models.subscription import (
    DailyUsage,
    Feature,
    Subscription,
    TOTAL_FIELD_FOR_FEATURE,
)


logger = logging.getLogger(__name__)


def _require_metered(feature: Union[Feature, str]) -> Feature:
    metered = as_metered_feature(feature)
    if metered is None:
        raise ValidationError(f"Unknown metered feature: {feature}")
    return metered


def record_usage(subscription: Subscription, feature: Union[Feature, str]) -> Subscription:
    """
    Count one use of feature.

    The daily and lifetime counters change in the same replacement record, so
    a reader sees both increments or neither.

    Raises:
        ValidationError: If feature is not a metered feature
    """
    metered = _require_metered(feature)
    total_field = TOTAL_FIELD_FOR_FEATURE[metered]

    daily = subscription.daily_usage.model_copy(
        update={metered.value: subscription.daily_usage.get(metered) + 1}
    )
    total = subscription.total_usage.model_copy(
        update={total_field: getattr(subscription.total_usage, total_field) + 1}
    )
    return subscription.model_copy(update={"daily_usage": daily, "total_usage": total})


def reset_daily(subscription: Subscription) -> Subscription:
    """Zero every daily counter. Lifetime counters are untouched."""
    logger.debug("[usage] daily counters reset", extra={"previous": subscription.daily_usage.model_dump()})
    return subscription.model_copy(update={"daily_usage": DailyUsage()})
