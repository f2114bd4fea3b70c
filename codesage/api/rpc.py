"""
Authoritative limiter RPC surface.

- POST /rpc/check_rate_limit
- POST /rpc/increment_usage_count
- POST /rpc/get_usage_counters
- POST /rpc/reset_daily_usage (scheduler only)

Every call must present LIMITER_API_KEY in the `apikey` header. Without a
configured key the surface answers 503, except in the test environment.
"""
import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from codesage.core.config import settings
from codesage.core.errors import AuthenticationError, LimiterUnavailableError
from codesage.features.limiter import server

router = APIRouter(prefix="/rpc", tags=["limiter"])


def require_limiter_key(apikey: Optional[str] = Header(None)) -> None:
    expected = settings.LIMITER_API_KEY
    if not expected:
        if (settings.ENV or "").lower() == "test":
            return
        raise LimiterUnavailableError("Limiter RPC disabled: LIMITER_API_KEY is not configured")
    if not apikey or not hmac.compare_digest(apikey, expected):
        raise AuthenticationError("Invalid limiter API key")


class CheckRateLimitRequest(BaseModel):
    user_id_param: str
    feature_type: str
    max_count: int = Field(..., ge=0)


class IncrementUsageRequest(BaseModel):
    user_id_param: str
    feature_type: str


class UsageCountersRequest(BaseModel):
    user_id_param: str


@router.post("/check_rate_limit", dependencies=[Depends(require_limiter_key)])
async def check_rate_limit(body: CheckRateLimitRequest):
    allowed = server.check_rate_limit(body.user_id_param, body.feature_type, body.max_count)
    return {"allowed": allowed}


@router.post("/increment_usage_count", dependencies=[Depends(require_limiter_key)])
async def increment_usage_count(body: IncrementUsageRequest):
    server.increment_usage_count(body.user_id_param, body.feature_type)
    return {"ok": True}


@router.post("/get_usage_counters", dependencies=[Depends(require_limiter_key)])
async def get_usage_counters(body: UsageCountersRequest):
    return server.get_usage_counters(body.user_id_param).model_dump(mode="json")


@router.post("/reset_daily_usage", dependencies=[Depends(require_limiter_key)])
async def reset_daily_usage():
    return {"profiles_reset": server.reset_daily_usage()}
