"""Tests for the Redis deadline queue: enqueue, claim, process and recovery."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
import redis.asyncio as aioredis
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.config import settings
from jobbroker.models.actor import ActorRole
from jobbroker.services.deadline_queue import (
    DEADLINE_KEY,
    cancel_deadline,
    enqueue_deadline,
    hold_member,
    job_member,
    pop_due,
    process_member,
    recover_deadlines,
)
from tests.conftest import completed_job, new_actor, paid_job, place_bid, post_job


# --- Pure Redis tests (no DB needed) ---

@pytest.mark.asyncio
async def test_enqueue_and_cancel(redis_client: aioredis.Redis) -> None:
    member = job_member(uuid.uuid4())
    due = datetime.now(UTC) + timedelta(minutes=5)
    await enqueue_deadline(redis_client, member, due)
    assert await redis_client.zscore(DEADLINE_KEY, member) == pytest.approx(due.timestamp())

    await cancel_deadline(redis_client, member)
    assert await redis_client.zscore(DEADLINE_KEY, member) is None


@pytest.mark.asyncio
async def test_enqueue_is_idempotent(redis_client: aioredis.Redis) -> None:
    member = job_member(uuid.uuid4())
    due = datetime.now(UTC) + timedelta(minutes=5)
    await enqueue_deadline(redis_client, member, due)
    await enqueue_deadline(redis_client, member, due + timedelta(minutes=1))
    assert await redis_client.zcard(DEADLINE_KEY) == 1
    assert await redis_client.zscore(DEADLINE_KEY, member) == pytest.approx(
        (due + timedelta(minutes=1)).timestamp()
    )


@pytest.mark.asyncio
async def test_pop_due_empty(redis_client: aioredis.Redis) -> None:
    assert await pop_due(redis_client) is None


@pytest.mark.asyncio
async def test_pop_due_returns_wait_for_future_entry(redis_client: aioredis.Redis) -> None:
    now = datetime.now(UTC)
    await enqueue_deadline(redis_client, job_member(uuid.uuid4()), now + timedelta(seconds=30))
    wait = await pop_due(redis_client, now=now.timestamp())
    assert isinstance(wait, float)
    assert wait == pytest.approx(30, abs=0.01)
    assert await redis_client.zcard(DEADLINE_KEY) == 1


@pytest.mark.asyncio
async def test_pop_due_claims_earliest(redis_client: aioredis.Redis) -> None:
    now = datetime.now(UTC)
    early, late = job_member(uuid.uuid4()), hold_member(uuid.uuid4())
    await enqueue_deadline(redis_client, late, now - timedelta(seconds=5))
    await enqueue_deadline(redis_client, early, now - timedelta(seconds=10))

    assert await pop_due(redis_client, now=now.timestamp()) == early
    assert await pop_due(redis_client, now=now.timestamp()) == late
    assert await pop_due(redis_client, now=now.timestamp()) is None


# --- Through the API and the services ---

@pytest.mark.asyncio
async def test_bid_schedules_negotiation_deadline(client: AsyncClient, redis_client: aioredis.Redis) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await post_job(client, client_headers)
    await place_bid(client, job["job_id"], provider_headers, "9000.00")

    member = job_member(uuid.UUID(job["job_id"]))
    assert await redis_client.zscore(DEADLINE_KEY, member) is not None

    await client.post(f"/jobs/{job['job_id']}/cancel", headers=client_headers)
    assert await redis_client.zscore(DEADLINE_KEY, member) is None


@pytest.mark.asyncio
async def test_process_member_expires_job(
    client: AsyncClient, db_session: AsyncSession, redis_client: aioredis.Redis
) -> None:
    object.__setattr__(settings, "negotiation_window_minutes", 0)
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await post_job(client, client_headers)
    await place_bid(client, job["job_id"], provider_headers, "9000.00")

    member = await pop_due(redis_client)
    assert member == job_member(uuid.UUID(job["job_id"]))
    await process_member(db_session, redis_client, member)

    resp = await client.get(f"/jobs/{job['job_id']}", headers=client_headers)
    assert resp.json()["status"] == "pending"
    assert resp.json()["timeout_reasons"] == ["negotiation_timeout"]
    # Back in the open pool there is no deadline to track
    assert await redis_client.zscore(DEADLINE_KEY, member) is None


@pytest.mark.asyncio
async def test_process_member_releases_completed_hold(
    client: AsyncClient, db_session: AsyncSession, redis_client: aioredis.Redis
) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job, _ = await completed_job(client, client_headers, provider_headers, warranty_days=0)
    resp = await client.get(f"/jobs/{job['job_id']}/payment", headers=client_headers)
    hold_id = resp.json()["warranty_hold"]["hold_id"]

    member = hold_member(uuid.UUID(hold_id))
    assert await redis_client.zscore(DEADLINE_KEY, member) is not None
    await process_member(db_session, redis_client, member)

    resp = await client.get(f"/warranty-holds/{hold_id}", headers=client_headers)
    assert resp.json()["status"] == "released"


@pytest.mark.asyncio
async def test_process_member_skips_hold_on_unfinished_job(
    client: AsyncClient, db_session: AsyncSession, redis_client: aioredis.Redis
) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job, _ = await paid_job(client, client_headers, provider_headers, warranty_days=0)
    resp = await client.get(f"/jobs/{job['job_id']}/payment", headers=client_headers)
    hold_id = resp.json()["warranty_hold"]["hold_id"]

    await process_member(db_session, redis_client, hold_member(uuid.UUID(hold_id)))

    resp = await client.get(f"/warranty-holds/{hold_id}", headers=client_headers)
    assert resp.json()["status"] == "locked"


@pytest.mark.asyncio
async def test_process_member_ignores_unknown(db_session: AsyncSession, redis_client: aioredis.Redis) -> None:
    await process_member(db_session, redis_client, "quote:123")
    await process_member(db_session, redis_client, job_member(uuid.uuid4()))


@pytest.mark.asyncio
async def test_recover_deadlines(
    client: AsyncClient, db_session: AsyncSession, redis_client: aioredis.Redis
) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    negotiating = await post_job(client, client_headers)
    await place_bid(client, negotiating["job_id"], provider_headers, "9000.00")
    await post_job(client, client_headers)
    done, _ = await completed_job(client, client_headers, provider_headers)

    await redis_client.delete(DEADLINE_KEY)
    assert await recover_deadlines(db_session, redis_client) == 2

    members = {m.decode() for m in await redis_client.zrange(DEADLINE_KEY, 0, -1)}
    assert job_member(uuid.UUID(negotiating["job_id"])) in members
    assert len(members) == 2
