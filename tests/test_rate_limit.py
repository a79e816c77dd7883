"""Tests for rate limiting (jobbroker/auth/rate_limit.py).

The token bucket runs as a Lua script, which fakeredis only executes when
lupa is installed.
"""

import pytest
from httpx import AsyncClient

from jobbroker.auth.rate_limit import _get_rate_config
from jobbroker.config import settings
from jobbroker.models.actor import ActorRole
from tests.conftest import new_actor

pytest.importorskip("lupa")


@pytest.fixture(autouse=True)
def _enable_rate_limit() -> None:
    object.__setattr__(settings, "rate_limit_enabled", True)


@pytest.mark.asyncio
async def test_rate_limit_headers_present(client: AsyncClient) -> None:
    _, headers = new_actor(ActorRole.CLIENT)
    resp = await client.get("/jobs", headers=headers)
    assert resp.status_code == 200
    assert resp.headers["x-ratelimit-limit"] == str(settings.rate_limit_read_capacity)
    assert "x-ratelimit-remaining" in resp.headers


@pytest.mark.asyncio
async def test_rate_limit_exceeded_returns_429(client: AsyncClient) -> None:
    object.__setattr__(settings, "rate_limit_read_capacity", 2)
    object.__setattr__(settings, "rate_limit_read_refill_per_min", 0)
    _, headers = new_actor(ActorRole.CLIENT)

    for _ in range(5):
        resp = await client.get("/jobs", headers=headers)
        if resp.status_code == 429:
            break
    assert resp.status_code == 429
    assert resp.json()["error"]["kind"] == "rate_limited"
    assert resp.headers["retry-after"] == "60"


@pytest.mark.asyncio
async def test_buckets_are_per_actor(client: AsyncClient) -> None:
    object.__setattr__(settings, "rate_limit_read_capacity", 1)
    object.__setattr__(settings, "rate_limit_read_refill_per_min", 0)
    _, first = new_actor(ActorRole.CLIENT)
    _, second = new_actor(ActorRole.CLIENT)

    assert (await client.get("/jobs", headers=first)).status_code == 200
    assert (await client.get("/jobs", headers=first)).status_code == 429
    assert (await client.get("/jobs", headers=second)).status_code == 200


def test_rate_categories() -> None:
    assert _get_rate_config("GET", "/jobs")[2] == "read"
    assert _get_rate_config("POST", "/jobs")[2] == "write"
    assert _get_rate_config("POST", "/jobs/123/bids")[2] == "bidding"
    assert _get_rate_config("POST", "/jobs/123/bids/456/counter")[2] == "bidding"
    assert _get_rate_config("GET", "/jobs/123/bids")[2] == "read"
