"""
codesage/models/subscription.py

Subscription record: one user's plan, activity flag, expiry and usage counters.

The record is frozen. Every mutation builds a new record (model_copy) so a
reader never observes a half-applied change.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from codesage.models.plan import Plan


class Feature(str, Enum):
    """Metered features with daily free-tier counters."""
    CODE_ANALYSIS = "code_analysis"
    PROBLEM_SOLVING = "problem_solving"
    VIDEO_GENERATION = "video_generation"


class DailyUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    code_analysis: int = Field(0, ge=0)
    video_generation: int = Field(0, ge=0)
    problem_solving: int = Field(0, ge=0)

    def get(self, feature: Feature) -> int:
        return getattr(self, feature.value)


class TotalUsage(BaseModel):
    """Lifetime counters. Never reset."""
    model_config = ConfigDict(frozen=True)

    analysis_count: int = Field(0, ge=0)
    videos_generated: int = Field(0, ge=0)
    problems_solved: int = Field(0, ge=0)


# Daily counter -> lifetime counter
TOTAL_FIELD_FOR_FEATURE = {
    Feature.CODE_ANALYSIS: "analysis_count",
    Feature.VIDEO_GENERATION: "videos_generated",
    Feature.PROBLEM_SOLVING: "problems_solved",
}


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan: Optional[Plan] = None
    is_active: bool = False
    expires_at: Optional[datetime] = None
    daily_usage: DailyUsage = Field(default_factory=DailyUsage)
    total_usage: TotalUsage = Field(default_factory=TotalUsage)

    @property
    def is_free_tier(self) -> bool:
        return self.plan is None
