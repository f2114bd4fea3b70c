"""
codesage/features/session/context.py

Per-user entitlement session.

One EntitlementSession owns one user's Subscription for the lifetime of a
session: open() loads the persisted snapshot, every mutation replaces the
whole record and persists it, close() drains pending background writes.
Storage and limiter are injected so sessions are isolated from each other.

Two sessions for the same user do not see each other's local counters; the
authoritative limiter is what enforces the cap across sessions.
"""

from datetime import datetime
from typing import Optional, Union
import logging

from codesage.core.config import settings
from codesage.core.errors import AppError, LimiterUnavailableError, QuotaExceededError
from codesage.features.entitlements.service import (
    AdmissionDecision,
    AdmissionStatus,
    can_use as evaluate_can_use,
    decide_admission,
    remaining as evaluate_remaining,
    summarize as evaluate_summary,
)
from codesage.features.limiter.contracts import RateLimiterBackend, RemoteUsage, feature_type_for
from codesage.features.limiter.service import check_remote
from codesage.features.persistence.snapshot import SubscriptionSnapshotStore
from codesage.features.plans import lifecycle
from codesage.features.session.side_effects import SideEffectQueue
from codesage.features.usage import service as usage
from codesage.features.usage.limits import as_metered_feature
from codesage.models.plan import Plan
from codesage.models.subscription import DailyUsage, Feature, Subscription, TotalUsage


logger = logging.getLogger(__name__)


class SessionClosedError(AppError):
    code = "session_closed"
    status_code = 409


class EntitlementSession:
    def __init__(
        self,
        user_id: str,
        *,
        store: SubscriptionSnapshotStore,
        limiter: RateLimiterBackend,
        side_effects: Optional[SideEffectQueue] = None,
        expiry_policy: Optional[str] = None,
    ):
        self.user_id = user_id
        self.store = store
        self.limiter = limiter
        self.side_effects = side_effects or SideEffectQueue(
            max_attempts=settings.SIDE_EFFECT_MAX_ATTEMPTS,
            max_pending=settings.SIDE_EFFECT_QUEUE_SIZE,
        )
        self.expiry_policy = expiry_policy or settings.EXPIRY_POLICY
        self._subscription: Optional[Subscription] = None
        self._closed = False

    # Lifecycle

    def open(self) -> "EntitlementSession":
        self._subscription = self.store.load()
        self._closed = False
        logger.info(
            "[session] opened",
            extra={"user_id": self.user_id, "plan_id": self._subscription.plan.id if self._subscription.plan else None},
        )
        return self

    async def close(self) -> None:
        if self._closed:
            return
        await self.side_effects.drain()
        if self._subscription is not None:
            self.store.save(self._subscription)
        self._closed = True
        logger.info(
            "[session] closed",
            extra={"user_id": self.user_id, "side_effect_failures": len(self.side_effects.failures)},
        )

    async def __aenter__(self) -> "EntitlementSession":
        return self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def subscription(self) -> Subscription:
        if self._closed:
            raise SessionClosedError("Entitlement session is closed")
        if self._subscription is None:
            self.open()
        return self._subscription

    def _replace(self, subscription: Subscription) -> Subscription:
        if self._closed:
            raise SessionClosedError("Entitlement session is closed")
        self._subscription = subscription
        self.store.save(subscription)
        return subscription

    def _mirror(self, subscription: Subscription) -> None:
        # Best effort: the local record is already saved
        try:
            self.limiter.mirror_subscription(self.user_id, subscription)
        except Exception as exc:
            logger.warning(
                "[session] authority profile not updated",
                extra={"user_id": self.user_id, "error_message": str(exc)},
            )

    # Plan lifecycle

    def subscribe(self, plan: Plan, now: Optional[datetime] = None) -> Subscription:
        updated = self._replace(lifecycle.subscribe(self.subscription, plan, now))
        self._mirror(updated)
        logger.info(
            "[session] subscribed",
            extra={"user_id": self.user_id, "plan_id": plan.id, "expires_at": updated.expires_at},
        )
        return updated

    def cancel(self) -> Subscription:
        updated = self._replace(lifecycle.cancel(self.subscription))
        self._mirror(updated)
        logger.info("[session] cancelled", extra={"user_id": self.user_id})
        return updated

    # Usage accounting

    def record_usage(self, feature: Union[Feature, str]) -> Subscription:
        return self._replace(usage.record_usage(self.subscription, feature))

    def reset_daily(self) -> Subscription:
        return self._replace(usage.reset_daily(self.subscription))

    # Evaluation

    def can_use(self, feature: Union[Feature, str], now: Optional[datetime] = None) -> bool:
        return evaluate_can_use(self.subscription, feature, now=now, policy=self.expiry_policy)

    def remaining(self, feature: Union[Feature, str], now: Optional[datetime] = None):
        return evaluate_remaining(self.subscription, feature, now=now, policy=self.expiry_policy)

    def summary(self, now: Optional[datetime] = None):
        return evaluate_summary(self.subscription, now=now, policy=self.expiry_policy)

    async def admit(self, feature: Union[Feature, str], now: Optional[datetime] = None) -> AdmissionDecision:
        """
        Local check first; if it passes, ask the authoritative limiter.

        An unreachable limiter denies. Non-metered features that pass the
        local check are not sent to the limiter.
        """
        local_allowed = self.can_use(feature, now)
        remote_allowed = None
        limiter_available = True

        if local_allowed and as_metered_feature(feature) is not None:
            remote = await check_remote(self.limiter, self.user_id, feature)
            remote_allowed = remote.allowed
            limiter_available = remote.available
        elif local_allowed:
            remote_allowed = True

        return decide_admission(
            feature,
            local_allowed=local_allowed,
            remote_allowed=remote_allowed,
            limiter_available=limiter_available,
            remaining_uses=self.remaining(feature, now),
            user_id=self.user_id,
        )

    async def complete(self, feature: Union[Feature, str]) -> Subscription:
        """
        Account for a successful action.

        The local counters move immediately. The remote increment runs in the
        background; its failure is logged and recorded on the side-effect
        error channel, never raised here.
        """
        updated = self.record_usage(feature)
        feature_type = feature_type_for(feature)
        user_id = self.user_id
        limiter = self.limiter

        async def _increment() -> None:
            await limiter.increment_usage(user_id, feature_type)

        self.side_effects.submit(f"increment_usage:{feature_type}", _increment)
        return updated

    async def consume(self, feature: Union[Feature, str], now: Optional[datetime] = None) -> AdmissionDecision:
        """
        Admit and account in one step, for callers that guard an action.

        Raises:
            LimiterUnavailableError: The authoritative limiter could not answer
            QuotaExceededError: Either side says the cap is reached
        """
        decision = await self.admit(feature, now)
        if decision.status == AdmissionStatus.DENIED_LIMITER_UNAVAILABLE:
            raise LimiterUnavailableError("Usage limiter unavailable, try again shortly")
        if not decision.allowed:
            raise QuotaExceededError(f"Daily limit reached for {decision.feature}")
        if as_metered_feature(feature) is not None:
            await self.complete(feature)
        return decision

    async def reconcile(self) -> Subscription:
        """
        Pull the authority's counters into the local cache.

        Each counter keeps the larger of the local and remote values, so
        local counters never decrease outside the daily reset. A failed pull
        leaves the local record untouched.
        """
        try:
            remote: RemoteUsage = await self.limiter.get_usage(self.user_id)
        except Exception as exc:
            logger.warning(
                "[session] reconcile skipped, limiter unavailable",
                extra={"user_id": self.user_id, "error_message": str(exc)},
            )
            return self.subscription

        current = self.subscription
        daily = DailyUsage(
            code_analysis=max(current.daily_usage.code_analysis, remote.daily.code_analysis),
            problem_solving=max(current.daily_usage.problem_solving, remote.daily.problem_solving),
            video_generation=max(current.daily_usage.video_generation, remote.daily.video_generation),
        )
        total = TotalUsage(
            analysis_count=max(current.total_usage.analysis_count, remote.total.code_analysis),
            problems_solved=max(current.total_usage.problems_solved, remote.total.problem_solving),
            videos_generated=max(current.total_usage.videos_generated, remote.total.video_generation),
        )
        if daily == current.daily_usage and total == current.total_usage:
            return current

        logger.info(
            "[session] reconciled counters from authority",
            extra={"user_id": self.user_id, "daily": daily.model_dump(), "total": total.model_dump()},
        )
        return self._replace(current.model_copy(update={"daily_usage": daily, "total_usage": total}))
