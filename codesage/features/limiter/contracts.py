"""Contracts shared by limiter clients and the authoritative limiter."""
from __future__ import annotations

from typing import Union

from pydantic import BaseModel, ConfigDict, Field

from codesage.core.errors import ValidationError
from codesage.features.usage.limits import FREE_LIMITS, as_metered_feature
from codesage.models.subscription import Feature, Subscription


def feature_type_for(feature: Union[Feature, str]) -> str:
    """Wire name of a metered feature (code_analysis, problem_solving, video_generation)."""
    metered = as_metered_feature(feature)
    if metered is None:
        raise ValidationError(f"Unknown metered feature: {feature}")
    return metered.value


def max_count_for(feature: Union[Feature, str]) -> int:
    """Cap sent with check_rate_limit. Always 0 for video generation."""
    metered = as_metered_feature(feature)
    if metered is None:
        raise ValidationError(f"Unknown metered feature: {feature}")
    return FREE_LIMITS[metered]


class UsageCounters(BaseModel):
    model_config = ConfigDict(frozen=True)

    code_analysis: int = Field(0, ge=0)
    problem_solving: int = Field(0, ge=0)
    video_generation: int = Field(0, ge=0)


class RemoteUsage(BaseModel):
    """Authoritative counters for one user."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: str = "free_user"
    daily: UsageCounters = Field(default_factory=UsageCounters)
    total: UsageCounters = Field(default_factory=UsageCounters)


class RateLimiterBackend:
    """Client boundary of the authoritative limiter.

    Implementations raise LimiterUnavailableError on transport or service
    failure; deciding what a failure means is the caller's job.
    """

    async def check_rate_limit(self, user_id: str, feature_type: str, max_count: int) -> bool:
        raise NotImplementedError

    async def increment_usage(self, user_id: str, feature_type: str) -> None:
        raise NotImplementedError

    async def get_usage(self, user_id: str) -> RemoteUsage:
        raise NotImplementedError

    def mirror_subscription(self, user_id: str, subscription: Subscription) -> None:
        """Copy a plan change onto the authority's profile. A remote authority owns its own roles."""
        return None

    async def aclose(self) -> None:
        return None
