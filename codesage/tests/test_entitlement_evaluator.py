"""Tests for local entitlement evaluation and admission decisions."""
from datetime import datetime, timedelta, timezone

import pytest

from codesage.features.entitlements.service import (
    UNLIMITED,
    AdmissionStatus,
    can_use,
    decide_admission,
    remaining,
    summarize,
)
from codesage.features.plans.catalog import get_plan, list_plans
from codesage.features.plans.lifecycle import EXPIRY_POLICY_DERIVED, cancel, subscribe
from codesage.features.usage.service import record_usage
from codesage.models.subscription import Feature, Subscription


NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _used(feature, times, sub=None):
    sub = sub or Subscription()
    for _ in range(times):
        sub = record_usage(sub, feature)
    return sub


def test_free_user_capped_at_three_analyses():
    sub = Subscription()
    for used in range(3):
        assert can_use(sub, Feature.CODE_ANALYSIS)
        assert remaining(sub, Feature.CODE_ANALYSIS) == 3 - used
        sub = record_usage(sub, Feature.CODE_ANALYSIS)

    assert not can_use(sub, Feature.CODE_ANALYSIS)
    assert remaining(sub, Feature.CODE_ANALYSIS) == 0
    # Other counters are independent
    assert can_use(sub, Feature.PROBLEM_SOLVING)


def test_free_user_never_gets_video():
    sub = Subscription()
    assert not can_use(sub, Feature.VIDEO_GENERATION)
    assert not can_use(sub, "videoGeneration")
    assert remaining(sub, Feature.VIDEO_GENERATION) == 0


@pytest.mark.parametrize("feature", ["voice_narration", "customAvatars", "flowchart_export", "premium_challenges"])
def test_free_user_denied_pro_only_capabilities(feature):
    assert not can_use(Subscription(), feature)
    assert remaining(Subscription(), feature) == 0
    assert remaining(subscribe(Subscription(), get_plan("pro-monthly"), NOW), feature) == UNLIMITED


def test_unrecognised_feature_allowed_and_unlimited():
    assert can_use(Subscription(), "syntax_highlighting")
    assert remaining(Subscription(), "syntax_highlighting") == UNLIMITED


def test_remaining_never_negative_when_over_cap():
    sub = _used(Feature.PROBLEM_SOLVING, 7)
    assert remaining(sub, Feature.PROBLEM_SOLVING) == 0


@pytest.mark.parametrize("plan", list_plans(), ids=lambda p: p.id)
def test_active_plan_allows_everything(plan):
    sub = subscribe(_used(Feature.CODE_ANALYSIS, 10), plan, now=NOW)
    for feature in Feature:
        assert can_use(sub, feature)
        assert remaining(sub, feature) == UNLIMITED
    assert can_use(sub, "voice_narration")


def test_subscribe_after_hitting_cap_unlocks_immediately():
    sub = _used(Feature.CODE_ANALYSIS, 3)
    assert not can_use(sub, Feature.CODE_ANALYSIS)

    sub = subscribe(sub, get_plan("pro-monthly"), now=NOW)
    assert can_use(sub, Feature.CODE_ANALYSIS)
    assert sub.daily_usage.code_analysis == 3


def test_cancel_reapplies_caps_with_existing_counters():
    sub = subscribe(Subscription(), get_plan("student"), now=NOW)
    sub = _used(Feature.CODE_ANALYSIS, 4, sub)
    sub = cancel(sub)
    assert not can_use(sub, Feature.CODE_ANALYSIS)
    assert remaining(sub, Feature.CODE_ANALYSIS) == 0


def test_expired_plan_under_derived_policy_falls_back_to_caps():
    sub = subscribe(_used(Feature.CODE_ANALYSIS, 3), get_plan("pro-monthly"), now=NOW)
    later = NOW + timedelta(days=45)

    # Cached policy keeps honouring the stored flag
    assert can_use(sub, Feature.CODE_ANALYSIS, now=later)
    assert not can_use(sub, Feature.CODE_ANALYSIS, now=later, policy=EXPIRY_POLICY_DERIVED)
    assert remaining(sub, Feature.CODE_ANALYSIS, now=later, policy=EXPIRY_POLICY_DERIVED) == 0


def test_summary_shape():
    sub = _used(Feature.PROBLEM_SOLVING, 1)
    summary = summarize(sub)
    assert set(summary) == {"code_analysis", "problem_solving", "video_generation"}
    assert summary["problem_solving"] == {
        "allowed": True,
        "remaining": 2,
        "used_today": 1,
        "free_limit": 3,
    }
    assert summary["video_generation"]["allowed"] is False


def test_admission_allow():
    decision = decide_admission(
        Feature.CODE_ANALYSIS,
        local_allowed=True,
        remote_allowed=True,
        limiter_available=True,
        remaining_uses=2,
    )
    assert decision.status == AdmissionStatus.ALLOW
    assert decision.allowed
    assert decision.feature == "code_analysis"


def test_admission_local_deny_wins():
    decision = decide_admission(
        "codeAnalysis",
        local_allowed=False,
        remote_allowed=None,
        limiter_available=True,
        remaining_uses=0,
    )
    assert decision.status == AdmissionStatus.DENIED_LOCAL_QUOTA
    assert not decision.allowed


def test_admission_remote_deny():
    decision = decide_admission(
        Feature.PROBLEM_SOLVING,
        local_allowed=True,
        remote_allowed=False,
        limiter_available=True,
        remaining_uses=1,
    )
    assert decision.status == AdmissionStatus.DENIED_REMOTE_QUOTA
    assert not decision.allowed


def test_admission_unavailable_limiter_denies():
    decision = decide_admission(
        Feature.PROBLEM_SOLVING,
        local_allowed=True,
        remote_allowed=False,
        limiter_available=False,
        remaining_uses=1,
    )
    assert decision.status == AdmissionStatus.DENIED_LIMITER_UNAVAILABLE
    assert not decision.allowed
