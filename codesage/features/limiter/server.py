"""
codesage/features/limiter/server.py

Authoritative usage limiter, backed by user_profiles.

Handles:
- Profile provisioning and subscription mirroring
- check_rate_limit: pro/admin roles unlimited, free users capped per day
- increment_usage_count: daily + lifetime counters in one UPDATE
- reset_daily_usage: zero daily counters for free users
"""

from datetime import datetime, timezone
from typing import Optional, Dict
import logging

from sqlalchemy import select, insert, update

from codesage.core.database import get_db_session, user_profiles
from codesage.features.limiter.contracts import RemoteUsage, UsageCounters
from codesage.models.subscription import Feature
from codesage.models.user import AuthenticatedUser, UserRole, UNMETERED_ROLES


logger = logging.getLogger(__name__)

DAILY_COLUMNS: Dict[str, str] = {
    Feature.CODE_ANALYSIS.value: "daily_code_analysis_count",
    Feature.PROBLEM_SOLVING.value: "daily_problem_solving_count",
    Feature.VIDEO_GENERATION.value: "daily_video_generation_count",
}

TOTAL_COLUMNS: Dict[str, str] = {
    Feature.CODE_ANALYSIS.value: "total_analyses",
    Feature.PROBLEM_SOLVING.value: "total_problems_solved",
    Feature.VIDEO_GENERATION.value: "total_videos_generated",
}


def _row_to_user(row) -> AuthenticatedUser:
    return AuthenticatedUser(
        id=row.id,
        email=row.email,
        role=UserRole(row.role),
        subscription_status=row.subscription_status,
        subscription_plan=row.subscription_plan,
        subscription_expires_at=row.subscription_expires_at,
    )


def ensure_profile(
    user_id: str,
    email: Optional[str] = None,
    role: UserRole = UserRole.FREE_USER,
) -> AuthenticatedUser:
    """Return the user's profile, creating a free-tier one if missing (idempotent)."""
    with get_db_session() as session:
        row = session.execute(
            select(user_profiles).where(user_profiles.c.id == user_id)
        ).first()
        if row:
            if email and row.email != email:
                session.execute(
                    update(user_profiles)
                    .where(user_profiles.c.id == user_id)
                    .values(email=email)
                )
                return _row_to_user(row).model_copy(update={"email": email})
            return _row_to_user(row)

        session.execute(
            insert(user_profiles).values(
                id=user_id,
                email=email,
                role=role.value,
            )
        )
        return AuthenticatedUser(id=user_id, email=email, role=role)


def get_profile(user_id: str) -> Optional[AuthenticatedUser]:
    with get_db_session() as session:
        row = session.execute(
            select(user_profiles).where(user_profiles.c.id == user_id)
        ).first()
        return _row_to_user(row) if row else None


def sync_subscription_mirror(
    user_id: str,
    *,
    plan_id: Optional[str],
    is_active: bool,
    expires_at: Optional[datetime],
) -> AuthenticatedUser:
    """
    Mirror a subscription change onto the authority's profile.

    Active plans promote free users to pro_user; cancelling demotes pro_user
    back to free_user. Admin roles are never changed here.
    """
    profile = ensure_profile(user_id)
    role = profile.role
    if role not in (UserRole.ADMIN, UserRole.SUPER_ADMIN):
        role = UserRole.PRO_USER if (is_active and plan_id) else UserRole.FREE_USER

    status = "pro" if (is_active and plan_id) else "free"
    with get_db_session() as session:
        session.execute(
            update(user_profiles)
            .where(user_profiles.c.id == user_id)
            .values(
                role=role.value,
                subscription_status=status,
                subscription_plan=plan_id if is_active else None,
                subscription_expires_at=expires_at if is_active else None,
                updated_at=datetime.now(timezone.utc),
            )
        )
    return profile.model_copy(
        update={
            "role": role,
            "subscription_status": status,
            "subscription_plan": plan_id if is_active else None,
            "subscription_expires_at": expires_at if is_active else None,
        }
    )


def check_rate_limit(user_id: str, feature_type: str, max_count: int) -> bool:
    """
    Server-side admission decision.

    Unknown users and unknown feature types count as zero usage.
    """
    with get_db_session() as session:
        row = session.execute(
            select(user_profiles).where(user_profiles.c.id == user_id)
        ).first()

    if row is None:
        return 0 < max_count

    if UserRole(row.role) in UNMETERED_ROLES:
        return True

    column = DAILY_COLUMNS.get(feature_type)
    current_count = getattr(row, column) if column else 0
    return current_count < max_count


def increment_usage_count(user_id: str, feature_type: str, now: Optional[datetime] = None) -> None:
    """Count one use server-side. Daily and lifetime columns move in the same statement."""
    ts = now or datetime.now(timezone.utc)
    ensure_profile(user_id)

    values = {"last_active_at": ts, "updated_at": ts}
    daily_column = DAILY_COLUMNS.get(feature_type)
    total_column = TOTAL_COLUMNS.get(feature_type)
    if daily_column and total_column:
        values[daily_column] = user_profiles.c[daily_column] + 1
        values[total_column] = user_profiles.c[total_column] + 1
    else:
        logger.warning(
            "[limiter] increment for unknown feature type ignored",
            extra={"user_id": user_id, "feature": feature_type},
        )

    with get_db_session() as session:
        session.execute(
            update(user_profiles)
            .where(user_profiles.c.id == user_id)
            .values(**values)
        )


def get_usage_counters(user_id: str) -> RemoteUsage:
    with get_db_session() as session:
        row = session.execute(
            select(user_profiles).where(user_profiles.c.id == user_id)
        ).first()

    if row is None:
        return RemoteUsage(user_id=user_id)

    return RemoteUsage(
        user_id=user_id,
        role=row.role,
        daily=UsageCounters(**{feature: getattr(row, column) for feature, column in DAILY_COLUMNS.items()}),
        total=UsageCounters(**{feature: getattr(row, column) for feature, column in TOTAL_COLUMNS.items()}),
    )


def reset_daily_usage() -> int:
    """Zero daily counters for free users. Returns the number of profiles reset."""
    with get_db_session() as session:
        result = session.execute(
            update(user_profiles)
            .where(user_profiles.c.role == UserRole.FREE_USER.value)
            .values(
                daily_code_analysis_count=0,
                daily_problem_solving_count=0,
                daily_video_generation_count=0,
            )
        )
        reset = result.rowcount or 0

    logger.info("[limiter] daily usage reset", extra={"profiles_reset": reset})
    return reset
