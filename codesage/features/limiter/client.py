"""
Limiter clients.

- HttpRateLimiter: talks to the /rpc surface of a remote authority over httpx.
- DatabaseRateLimiter: in-process adapter over the authority's functions.

Both raise LimiterUnavailableError on any failure. Neither retries.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

from codesage.core.config import settings
from codesage.core.errors import LimiterUnavailableError
from codesage.features.limiter import server
from codesage.features.limiter.contracts import RateLimiterBackend, RemoteUsage
from codesage.models.subscription import Subscription

logger = logging.getLogger(__name__)


class HttpRateLimiter(RateLimiterBackend):
    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        # timeout of 0/None means wait indefinitely
        timeout = httpx.Timeout(timeout_seconds) if timeout_seconds else httpx.Timeout(None)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _rpc(self, name: str, payload: Dict[str, Any]) -> Any:
        try:
            response = await self._client.post(f"/rpc/{name}", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise LimiterUnavailableError(f"Limiter RPC {name} failed: {exc}")
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise LimiterUnavailableError(f"Limiter RPC {name} returned invalid JSON: {exc}")

    async def check_rate_limit(self, user_id: str, feature_type: str, max_count: int) -> bool:
        body = await self._rpc(
            "check_rate_limit",
            {"user_id_param": user_id, "feature_type": feature_type, "max_count": max_count},
        )
        if isinstance(body, bool):
            return body
        if isinstance(body, dict) and isinstance(body.get("allowed"), bool):
            return body["allowed"]
        raise LimiterUnavailableError(f"Limiter RPC check_rate_limit returned unexpected body: {body!r}")

    async def increment_usage(self, user_id: str, feature_type: str) -> None:
        await self._rpc(
            "increment_usage_count",
            {"user_id_param": user_id, "feature_type": feature_type},
        )

    async def get_usage(self, user_id: str) -> RemoteUsage:
        body = await self._rpc("get_usage_counters", {"user_id_param": user_id})
        try:
            return RemoteUsage.model_validate(body)
        except ValueError as exc:
            raise LimiterUnavailableError(f"Limiter RPC get_usage_counters returned unexpected body: {exc}")

    async def aclose(self) -> None:
        await self._client.aclose()


class DatabaseRateLimiter(RateLimiterBackend):
    """Authority running in this process; database errors surface as unavailability.

    The authority's functions are synchronous SQL, so each call runs in the
    threadpool to keep the event loop free.
    """

    async def check_rate_limit(self, user_id: str, feature_type: str, max_count: int) -> bool:
        try:
            return await run_in_threadpool(server.check_rate_limit, user_id, feature_type, max_count)
        except SQLAlchemyError as exc:
            raise LimiterUnavailableError(f"Limiter check failed: {exc}")

    async def increment_usage(self, user_id: str, feature_type: str) -> None:
        try:
            await run_in_threadpool(server.increment_usage_count, user_id, feature_type)
        except SQLAlchemyError as exc:
            raise LimiterUnavailableError(f"Limiter increment failed: {exc}")

    async def get_usage(self, user_id: str) -> RemoteUsage:
        try:
            return await run_in_threadpool(server.get_usage_counters, user_id)
        except SQLAlchemyError as exc:
            raise LimiterUnavailableError(f"Limiter usage lookup failed: {exc}")

    def mirror_subscription(self, user_id: str, subscription: Subscription) -> None:
        try:
            server.sync_subscription_mirror(
                user_id,
                plan_id=subscription.plan.id if subscription.plan else None,
                is_active=subscription.is_active,
                expires_at=subscription.expires_at,
            )
        except SQLAlchemyError as exc:
            raise LimiterUnavailableError(f"Limiter profile update failed: {exc}")


def build_rate_limiter(settings_obj=None) -> RateLimiterBackend:
    """HTTP client when LIMITER_URL is configured, in-process authority otherwise."""
    cfg = settings_obj or settings
    if cfg.LIMITER_URL:
        logger.info("[limiter] using remote authority", extra={"limiter_url": cfg.LIMITER_URL})
        return HttpRateLimiter(
            cfg.LIMITER_URL,
            api_key=cfg.LIMITER_API_KEY,
            timeout_seconds=cfg.LIMITER_TIMEOUT_SECONDS,
        )
    return DatabaseRateLimiter()
