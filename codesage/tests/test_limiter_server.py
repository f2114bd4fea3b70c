"""Tests for the authoritative limiter backed by user_profiles."""
from datetime import datetime, timezone

from sqlalchemy import inspect, update

from codesage.core.database import get_db_session, get_engine, user_profiles
from codesage.features.limiter import server
from codesage.models.user import UserRole


def _set_role(user_id: str, role: UserRole) -> None:
    with get_db_session() as session:
        session.execute(update(user_profiles).where(user_profiles.c.id == user_id).values(role=role.value))


def test_profile_schema_has_counter_columns(sqlite_db):
    columns = {col["name"] for col in inspect(get_engine()).get_columns("user_profiles")}
    required = {
        "id", "role", "subscription_status",
        "daily_code_analysis_count", "daily_problem_solving_count", "daily_video_generation_count",
        "total_analyses", "total_problems_solved", "total_videos_generated",
    }
    assert required <= columns


def test_ensure_profile_is_idempotent(sqlite_db):
    first = server.ensure_profile("u1", email="a@example.com")
    second = server.ensure_profile("u1")
    assert first.role == UserRole.FREE_USER
    assert second.id == "u1"
    assert second.email == "a@example.com"

    updated = server.ensure_profile("u1", email="b@example.com")
    assert updated.email == "b@example.com"
    assert server.get_profile("u1").email == "b@example.com"


def test_unknown_user_counts_as_zero_usage(sqlite_db):
    assert server.check_rate_limit("ghost", "code_analysis", 3) is True
    assert server.check_rate_limit("ghost", "video_generation", 0) is False
    assert server.get_profile("ghost") is None


def test_free_user_capped_server_side(sqlite_db):
    server.ensure_profile("u1")
    for _ in range(3):
        assert server.check_rate_limit("u1", "code_analysis", 3)
        server.increment_usage_count("u1", "code_analysis")
    assert server.check_rate_limit("u1", "code_analysis", 3) is False
    assert server.check_rate_limit("u1", "problem_solving", 3) is True


def test_increment_updates_daily_and_total(sqlite_db):
    now = datetime(2024, 1, 2, tzinfo=timezone.utc)
    server.increment_usage_count("u2", "problem_solving", now=now)
    server.increment_usage_count("u2", "problem_solving", now=now)

    usage = server.get_usage_counters("u2")
    assert usage.daily.problem_solving == 2
    assert usage.total.problem_solving == 2
    assert usage.daily.code_analysis == 0


def test_increment_unknown_feature_is_ignored(sqlite_db):
    server.increment_usage_count("u3", "teleportation")
    usage = server.get_usage_counters("u3")
    assert usage.daily.code_analysis == 0
    assert usage.total.video_generation == 0


def test_unmetered_roles_bypass_cap(sqlite_db):
    for role in (UserRole.PRO_USER, UserRole.ADMIN, UserRole.SUPER_ADMIN):
        user_id = f"user-{role.value}"
        server.ensure_profile(user_id)
        _set_role(user_id, role)
        for _ in range(5):
            server.increment_usage_count(user_id, "code_analysis")
        assert server.check_rate_limit(user_id, "code_analysis", 3) is True
        assert server.check_rate_limit(user_id, "video_generation", 0) is True


def test_reset_only_touches_free_users(sqlite_db):
    server.increment_usage_count("free", "code_analysis")
    server.increment_usage_count("pro", "code_analysis")
    _set_role("pro", UserRole.PRO_USER)

    assert server.reset_daily_usage() == 1

    free = server.get_usage_counters("free")
    pro = server.get_usage_counters("pro")
    assert free.daily.code_analysis == 0
    assert free.total.code_analysis == 1
    assert pro.daily.code_analysis == 1


def test_subscription_mirror_promotes_and_demotes(sqlite_db):
    expires = datetime(2025, 1, 1, tzinfo=timezone.utc)
    promoted = server.sync_subscription_mirror("u4", plan_id="pro-yearly", is_active=True, expires_at=expires)
    assert promoted.role == UserRole.PRO_USER
    assert promoted.subscription_status == "pro"
    assert server.get_profile("u4").subscription_plan == "pro-yearly"

    demoted = server.sync_subscription_mirror("u4", plan_id=None, is_active=False, expires_at=None)
    assert demoted.role == UserRole.FREE_USER
    profile = server.get_profile("u4")
    assert profile.subscription_status == "free"
    assert profile.subscription_plan is None


def test_subscription_mirror_never_changes_admins(sqlite_db):
    server.ensure_profile("boss")
    _set_role("boss", UserRole.ADMIN)
    server.sync_subscription_mirror("boss", plan_id=None, is_active=False, expires_at=None)
    assert server.get_profile("boss").role == UserRole.ADMIN
