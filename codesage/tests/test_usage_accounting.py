"""Tests for usage accounting and the free-tier limit table."""
import pytest

from codesage.core.errors import ValidationError
from codesage.features.usage.limits import (
    FREE_LIMITS,
    as_metered_feature,
    get_free_limit,
    normalize_feature_name,
)
from codesage.features.usage.service import record_usage, reset_daily
from codesage.models.subscription import Feature, Subscription


def test_free_limits_table():
    assert FREE_LIMITS == {
        Feature.CODE_ANALYSIS: 3,
        Feature.VIDEO_GENERATION: 0,
        Feature.PROBLEM_SOLVING: 3,
    }
    assert get_free_limit(Feature.VIDEO_GENERATION) == 0


def test_camel_case_aliases_resolve():
    assert normalize_feature_name("codeAnalysis") == "code_analysis"
    assert as_metered_feature("problemSolving") == Feature.PROBLEM_SOLVING
    assert as_metered_feature(Feature.VIDEO_GENERATION) == Feature.VIDEO_GENERATION
    assert as_metered_feature("voice_narration") is None
    assert as_metered_feature("nonsense") is None


@pytest.mark.parametrize(
    "feature,total_field",
    [
        (Feature.CODE_ANALYSIS, "analysis_count"),
        (Feature.PROBLEM_SOLVING, "problems_solved"),
        (Feature.VIDEO_GENERATION, "videos_generated"),
    ],
)
def test_record_usage_moves_daily_and_total_together(feature, total_field):
    sub = record_usage(Subscription(), feature)
    assert sub.daily_usage.get(feature) == 1
    assert getattr(sub.total_usage, total_field) == 1

    others = [f for f in Feature if f != feature]
    for other in others:
        assert sub.daily_usage.get(other) == 0


def test_record_usage_past_cap_still_counts():
    sub = Subscription()
    for _ in range(5):
        sub = record_usage(sub, "codeAnalysis")
    assert sub.daily_usage.code_analysis == 5
    assert sub.total_usage.analysis_count == 5


def test_record_usage_rejects_unknown_feature():
    with pytest.raises(ValidationError):
        record_usage(Subscription(), "voice_narration")


def test_record_usage_returns_new_record():
    original = Subscription()
    updated = record_usage(original, Feature.PROBLEM_SOLVING)
    assert original.daily_usage.problem_solving == 0
    assert updated is not original


def test_reset_daily_keeps_lifetime_totals():
    sub = Subscription()
    for feature in (Feature.CODE_ANALYSIS, Feature.CODE_ANALYSIS, Feature.PROBLEM_SOLVING):
        sub = record_usage(sub, feature)

    reset = reset_daily(sub)
    assert reset.daily_usage.code_analysis == 0
    assert reset.daily_usage.problem_solving == 0
    assert reset.total_usage.analysis_count == 2
    assert reset.total_usage.problems_solved == 1


def test_reset_daily_keeps_plan():
    sub = Subscription(is_active=False)
    assert reset_daily(sub).plan is None
