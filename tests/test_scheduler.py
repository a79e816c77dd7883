"""Tests for the scheduler sweep endpoint."""

import pytest
from httpx import AsyncClient

from jobbroker.config import settings
from jobbroker.models.actor import ActorRole
from tests.conftest import assigned_job, new_actor, place_bid, post_job


@pytest.mark.asyncio
async def test_sweep_requires_operator(client: AsyncClient) -> None:
    _, client_headers = new_actor(ActorRole.CLIENT)
    resp = await client.post("/scheduler/sweep", headers=client_headers)
    assert resp.status_code == 403
    assert resp.json()["error"]["kind"] == "authorization_error"


@pytest.mark.asyncio
async def test_sweep_nothing_due(client: AsyncClient) -> None:
    _, operator_headers = new_actor(ActorRole.OPERATOR)
    resp = await client.post("/scheduler/sweep", headers=operator_headers)
    assert resp.status_code == 200
    assert resp.json() == {"expired_jobs": [], "released_holds": []}


@pytest.mark.asyncio
async def test_sweep_expires_unpaid_job(client: AsyncClient) -> None:
    object.__setattr__(settings, "payment_window_minutes", 0)
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    _, operator_headers = new_actor(ActorRole.OPERATOR)
    job = await assigned_job(client, client_headers, provider_headers)

    resp = await client.post("/scheduler/sweep", headers=operator_headers)
    assert resp.status_code == 200
    assert job["job_id"] in resp.json()["expired_jobs"]

    resp = await client.get(f"/jobs/{job['job_id']}", headers=client_headers)
    body = resp.json()
    assert body["status"] == "pending"
    assert body["repost_count"] == 1
    assert body["timeout_reasons"] == ["payment_deadline_timeout"]


@pytest.mark.asyncio
async def test_sweep_leaves_live_negotiation(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    _, operator_headers = new_actor(ActorRole.OPERATOR)
    job = await post_job(client, client_headers)
    await place_bid(client, job["job_id"], provider_headers, "9500.00")

    resp = await client.post("/scheduler/sweep", headers=operator_headers)
    assert resp.json()["expired_jobs"] == []

    resp = await client.get(f"/jobs/{job['job_id']}", headers=client_headers)
    assert resp.json()["status"] == "negotiation_pending"
