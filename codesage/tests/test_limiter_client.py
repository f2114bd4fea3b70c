"""Tests for the limiter clients and the fail-closed remote check."""
import json
import threading
from types import SimpleNamespace

import httpx
import pytest

from codesage.core.errors import LimiterUnavailableError
from codesage.features.limiter import server as limiter_server
from codesage.features.limiter.client import DatabaseRateLimiter, HttpRateLimiter, build_rate_limiter
from codesage.features.limiter.service import check_remote
from codesage.models.subscription import Feature
from codesage.tests.mocks import FakeLimiter


def _limiter(handler) -> HttpRateLimiter:
    return HttpRateLimiter("http://limiter.test/", api_key="k-123", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_check_sends_rpc_payload_and_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["apikey"] = request.headers.get("apikey")
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"allowed": True})

    limiter = _limiter(handler)
    assert await limiter.check_rate_limit("u1", "code_analysis", 3) is True
    await limiter.aclose()

    assert seen["path"] == "/rpc/check_rate_limit"
    assert seen["apikey"] == "k-123"
    assert seen["auth"] == "Bearer k-123"
    assert seen["body"] == {"user_id_param": "u1", "feature_type": "code_analysis", "max_count": 3}


@pytest.mark.asyncio
async def test_check_accepts_bare_boolean_body():
    limiter = _limiter(lambda request: httpx.Response(200, json=False))
    assert await limiter.check_rate_limit("u1", "code_analysis", 3) is False
    await limiter.aclose()


@pytest.mark.asyncio
async def test_server_error_surfaces_as_unavailable():
    limiter = _limiter(lambda request: httpx.Response(500, json={"message": "boom"}))
    with pytest.raises(LimiterUnavailableError):
        await limiter.check_rate_limit("u1", "code_analysis", 3)
    await limiter.aclose()


@pytest.mark.asyncio
async def test_unexpected_body_surfaces_as_unavailable():
    limiter = _limiter(lambda request: httpx.Response(200, json={"something": "else"}))
    with pytest.raises(LimiterUnavailableError):
        await limiter.check_rate_limit("u1", "code_analysis", 3)
    await limiter.aclose()


@pytest.mark.asyncio
async def test_transport_error_surfaces_as_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    limiter = _limiter(handler)
    with pytest.raises(LimiterUnavailableError):
        await limiter.increment_usage("u1", "code_analysis")
    await limiter.aclose()


@pytest.mark.asyncio
async def test_get_usage_parses_counters():
    body = {
        "user_id": "u1",
        "role": "free_user",
        "daily": {"code_analysis": 2, "problem_solving": 0, "video_generation": 0},
        "total": {"code_analysis": 9, "problem_solving": 4, "video_generation": 0},
    }
    limiter = _limiter(lambda request: httpx.Response(200, json=body))
    usage = await limiter.get_usage("u1")
    await limiter.aclose()
    assert usage.daily.code_analysis == 2
    assert usage.total.problem_solving == 4


@pytest.mark.asyncio
async def test_check_remote_fails_closed():
    result = await check_remote(FakeLimiter(check_fails=True), "u1", Feature.CODE_ANALYSIS)
    assert result.allowed is False
    assert result.available is False


@pytest.mark.asyncio
async def test_check_remote_sends_free_cap():
    limiter = FakeLimiter(allow=True)
    result = await check_remote(limiter, "u1", "videoGeneration")
    assert result.allowed is True
    assert result.available is True
    assert limiter.checks == [("u1", "video_generation", 0)]


@pytest.mark.asyncio
async def test_database_limiter_round_trip(sqlite_db):
    limiter = DatabaseRateLimiter()
    assert await limiter.check_rate_limit("u9", "problem_solving", 3) is True
    await limiter.increment_usage("u9", "problem_solving")
    usage = await limiter.get_usage("u9")
    assert usage.daily.problem_solving == 1


def test_build_rate_limiter_picks_backend():
    remote = build_rate_limiter(SimpleNamespace(LIMITER_URL="http://limiter.test", LIMITER_API_KEY=None, LIMITER_TIMEOUT_SECONDS=2.0))
    assert isinstance(remote, HttpRateLimiter)
    local = build_rate_limiter(SimpleNamespace(LIMITER_URL=None))
    assert isinstance(local, DatabaseRateLimiter)


@pytest.mark.asyncio
async def test_database_limiter_runs_sql_off_the_event_loop(monkeypatch):
    loop_thread = threading.get_ident()
    seen = []

    def fake_check(user_id, feature_type, max_count):
        seen.append(threading.get_ident())
        return True

    monkeypatch.setattr(limiter_server, "check_rate_limit", fake_check)
    assert await DatabaseRateLimiter().check_rate_limit("u1", "code_analysis", 3) is True
    assert seen and seen[0] != loop_thread
