"""
Core handling of the authoritative limiter's answers.

check: any failure denies (fail-closed) and is logged.
increment: handled by the session's side-effect queue (fail-open, logged).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from codesage.features.limiter.contracts import (
    RateLimiterBackend,
    feature_type_for,
    max_count_for,
)
from codesage.models.subscription import Feature

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteCheck:
    allowed: bool
    available: bool


async def check_remote(limiter: RateLimiterBackend, user_id: str, feature: Union[Feature, str]) -> RemoteCheck:
    feature_type = feature_type_for(feature)
    try:
        allowed = await limiter.check_rate_limit(user_id, feature_type, max_count_for(feature))
    except Exception as exc:
        logger.error(
            "[limiter] check failed, denying",
            extra={"user_id": user_id, "feature": feature_type, "error_message": str(exc)},
        )
        return RemoteCheck(allowed=False, available=False)
    return RemoteCheck(allowed=bool(allowed), available=True)
