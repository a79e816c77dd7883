"""Tests for reposting, repost exhaustion and the re-circulation ceiling."""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.config import settings
from jobbroker.models.actor import ActorRole
from jobbroker.models.job import Job, JobStatus
from tests.conftest import assigned_job, new_actor, place_bid, post_job


async def _trust_score(client: AsyncClient, actor_id, headers: dict) -> Decimal:
    resp = await client.get(f"/actors/{actor_id}/trust-score", headers=headers)
    assert resp.status_code == 200
    return Decimal(resp.json()["trust_score"])


@pytest.mark.asyncio
async def test_manual_repost_counts(client: AsyncClient) -> None:
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await post_job(client, client_headers)

    resp = await client.post(f"/jobs/{job['job_id']}/repost", headers=client_headers)
    assert resp.status_code == 200
    reposted = resp.json()
    assert reposted["status"] == "pending"
    assert reposted["repost_count"] == 1
    assert reposted["timeout_reasons"] == ["manual_repost"]


@pytest.mark.asyncio
async def test_repost_not_allowed_after_payment(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await assigned_job(client, client_headers, provider_headers)
    await client.post(f"/jobs/{job['job_id']}/payment-split", json={}, headers=client_headers)

    resp = await client.post(f"/jobs/{job['job_id']}/repost", headers=client_headers)
    assert resp.status_code == 409
    assert resp.json()["error"]["kind"] == "state_error"


@pytest.mark.asyncio
async def test_payment_timeout_clears_assignment(client: AsyncClient) -> None:
    object.__setattr__(settings, "payment_window_minutes", 0)
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await assigned_job(client, client_headers, provider_headers)

    resp = await client.post(
        f"/jobs/{job['job_id']}/payment-split", json={}, headers=client_headers
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["kind"] == "state_error"

    resp = await client.get(f"/jobs/{job['job_id']}", headers=client_headers)
    reopened = resp.json()
    assert reopened["status"] == "pending"
    assert reopened["assigned_provider_id"] is None
    assert reopened["final_price"] is None
    assert reopened["price_locked"] is False
    assert reopened["repost_count"] == 1
    assert reopened["timeout_reasons"] == ["payment_deadline_timeout"]


@pytest.mark.asyncio
async def test_fourth_timeout_cancels_and_penalizes(client: AsyncClient) -> None:
    object.__setattr__(settings, "negotiation_window_minutes", 0)
    object.__setattr__(settings, "rejection_cooldown_seconds", 0)
    client_actor, client_headers = new_actor(ActorRole.CLIENT)
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, operator_headers = new_actor(ActorRole.OPERATOR)
    job = await post_job(client, client_headers, max_reposts=3)
    job_id = job["job_id"]
    initial_score = await _trust_score(client, client_actor.actor_id, operator_headers)

    for expected_reposts in (1, 2, 3):
        await place_bid(client, job_id, provider_headers, "9000.00")
        resp = await client.get(f"/jobs/{job_id}", headers=client_headers)
        assert resp.json()["status"] == "pending"
        assert resp.json()["repost_count"] == expected_reposts

    await place_bid(client, job_id, provider_headers, "9000.00")
    resp = await client.get(f"/jobs/{job_id}", headers=client_headers)
    final = resp.json()
    assert final["status"] == "cancelled"
    assert final["rejection_reason"] == "max reposts exceeded"
    assert final["repost_count"] == 3

    assert await _trust_score(client, client_actor.actor_id, operator_headers) < initial_score

    resp = await client.get(f"/actors/{client_actor.actor_id}", headers=operator_headers)
    assert resp.json()["rejected_jobs_count"] == 1


@pytest.mark.asyncio
async def test_manual_repost_exhaustion(client: AsyncClient) -> None:
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await post_job(client, client_headers, max_reposts=1)

    resp = await client.post(f"/jobs/{job['job_id']}/repost", headers=client_headers)
    assert resp.json()["status"] == "pending"
    resp = await client.post(f"/jobs/{job['job_id']}/repost", headers=client_headers)
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["rejection_reason"] == "max reposts exceeded"


@pytest.mark.asyncio
async def test_repost_penalty_lowers_stale_score(client: AsyncClient, db_session: AsyncSession) -> None:
    """A good history that was never folded into the stored score cannot cancel the penalty."""
    client_actor, client_headers = new_actor(ActorRole.CLIENT)
    _, operator_headers = new_actor(ActorRole.OPERATOR)
    job = await post_job(client, client_headers, max_reposts=0)
    for n in range(40):
        db_session.add(Job(
            title=f"Earlier job {n}",
            client_id=client_actor.actor_id,
            estimated_cost=Decimal("100.00"),
            status=JobStatus.COMPLETED,
        ))
    await db_session.commit()
    before = await _trust_score(client, client_actor.actor_id, operator_headers)
    assert before == Decimal("50")

    resp = await client.post(f"/jobs/{job['job_id']}/repost", headers=client_headers)
    assert resp.json()["status"] == "cancelled"

    after = await _trust_score(client, client_actor.actor_id, operator_headers)
    assert after == before - settings.repost_trust_penalty


@pytest.mark.asyncio
async def test_recirculation_ceiling_cancels_without_penalty(client: AsyncClient) -> None:
    object.__setattr__(settings, "max_recirculations", 2)
    client_actor, client_headers = new_actor(ActorRole.CLIENT)
    job = await post_job(client, client_headers, max_reposts=10)
    job_id = job["job_id"]

    for _ in range(2):
        resp = await client.post(f"/jobs/{job_id}/repost", headers=client_headers)
        assert resp.json()["status"] == "pending"

    resp = await client.post(f"/jobs/{job_id}/repost", headers=client_headers)
    retired = resp.json()
    assert retired["status"] == "cancelled"
    assert retired["rejection_reason"] == "max re-circulations exceeded"
    assert retired["recirculation_count"] == 2

    resp = await client.get(f"/actors/{client_actor.actor_id}", headers=client_headers)
    assert resp.json()["rejected_jobs_count"] == 0
    assert Decimal(resp.json()["trust_score"]) == Decimal("50")


@pytest.mark.asyncio
async def test_provider_cannot_repost(client: AsyncClient) -> None:
    _, client_headers = new_actor(ActorRole.CLIENT)
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    job = await post_job(client, client_headers)
    resp = await client.post(f"/jobs/{job['job_id']}/repost", headers=provider_headers)
    assert resp.status_code == 403
