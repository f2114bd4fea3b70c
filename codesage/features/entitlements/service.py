"""
codesage/features/entitlements/service.py

Entitlement evaluation and admission decisions.

Handles:
- Local, synchronous can_use / remaining over a Subscription snapshot
- Combining the local decision with the authoritative limiter's answer
- Structured logs only (no metrics backend)

The local check is advisory: it only sees this session's counters. The
remote limiter is authoritative. Both answers are kept on the decision so
"over quota" and "limiter unreachable" stay distinguishable.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Union, Any

from codesage.core.logging import log_event
from codesage.features.plans.lifecycle import EXPIRY_POLICY_CACHED, effective_is_active
from codesage.features.usage.limits import (
    FREE_LIMITS,
    PRO_ONLY_FEATURES,
    as_metered_feature,
    normalize_feature_name,
)
from codesage.models.subscription import Feature, Subscription


UNLIMITED = "unlimited"

Remaining = Union[int, str]


def can_use(
    subscription: Subscription,
    feature: Union[Feature, str],
    *,
    now: Optional[datetime] = None,
    policy: str = EXPIRY_POLICY_CACHED,
) -> bool:
    """
    May the holder of subscription use feature right now?

    An active paid plan allows everything, including features the free tier
    caps at zero. Free users are denied pro-only capabilities, limited by the
    daily cap on metered ones, and allowed anything unrecognised.
    """
    if effective_is_active(subscription, now, policy):
        return True

    name = normalize_feature_name(feature)
    if name in PRO_ONLY_FEATURES:
        return False

    metered = as_metered_feature(name)
    if metered is None:
        return True

    return subscription.daily_usage.get(metered) < FREE_LIMITS[metered]


def remaining(
    subscription: Subscription,
    feature: Union[Feature, str],
    *,
    now: Optional[datetime] = None,
    policy: str = EXPIRY_POLICY_CACHED,
) -> Remaining:
    """Uses left today: UNLIMITED on an active paid plan, 0 for pro-only features, else max(0, cap - used)."""
    if effective_is_active(subscription, now, policy):
        return UNLIMITED

    if normalize_feature_name(feature) in PRO_ONLY_FEATURES:
        return 0

    metered = as_metered_feature(feature)
    if metered is None:
        return UNLIMITED
    return max(0, FREE_LIMITS[metered] - subscription.daily_usage.get(metered))


def summarize(
    subscription: Subscription,
    *,
    now: Optional[datetime] = None,
    policy: str = EXPIRY_POLICY_CACHED,
) -> Dict[str, Dict[str, Any]]:
    """Per-feature view for clients: allowed, remaining, used today, cap."""
    summary = {}
    for feature in Feature:
        summary[feature.value] = {
            "allowed": can_use(subscription, feature, now=now, policy=policy),
            "remaining": remaining(subscription, feature, now=now, policy=policy),
            "used_today": subscription.daily_usage.get(feature),
            "free_limit": FREE_LIMITS[feature],
        }
    return summary


class AdmissionStatus(str, Enum):
    """Outcome of an admission decision."""
    ALLOW = "allow"
    DENIED_LOCAL_QUOTA = "denied_local_quota"
    DENIED_REMOTE_QUOTA = "denied_remote_quota"
    DENIED_LIMITER_UNAVAILABLE = "denied_limiter_unavailable"


@dataclass(frozen=True)
class AdmissionDecision:
    feature: str
    status: AdmissionStatus
    local_allowed: bool
    remote_allowed: Optional[bool]
    remaining: Remaining

    @property
    def allowed(self) -> bool:
        return self.status == AdmissionStatus.ALLOW


def decide_admission(
    feature: Union[Feature, str],
    *,
    local_allowed: bool,
    remote_allowed: Optional[bool],
    limiter_available: bool,
    remaining_uses: Remaining,
    user_id: Optional[str] = None,
) -> AdmissionDecision:
    """
    Fold the local and remote answers into one decision.

    remote_allowed is None when the remote limiter was not consulted (the
    local check already denied). An unreachable limiter denies.
    """
    name = normalize_feature_name(feature)

    if not local_allowed:
        status = AdmissionStatus.DENIED_LOCAL_QUOTA
    elif not limiter_available:
        status = AdmissionStatus.DENIED_LIMITER_UNAVAILABLE
    elif not remote_allowed:
        status = AdmissionStatus.DENIED_REMOTE_QUOTA
    else:
        status = AdmissionStatus.ALLOW

    log_event(
        "info" if status == AdmissionStatus.ALLOW else "warning",
        f"[entitlement] {status.value}",
        user_id=user_id,
        feature=name,
        extra={
            "status": status.value,
            "local_allowed": local_allowed,
            "remote_allowed": remote_allowed,
            "remaining": remaining_uses,
        },
    )

    return AdmissionDecision(
        feature=name,
        status=status,
        local_allowed=local_allowed,
        remote_allowed=remote_allowed,
        remaining=remaining_uses,
    )
