"""Tests for the job lifecycle endpoints."""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from jobbroker.config import settings
from jobbroker.models.actor import ActorRole
from tests.conftest import (
    assigned_job,
    completed_job,
    make_job_data,
    new_actor,
    paid_job,
    place_bid,
    post_job,
)


@pytest.mark.asyncio
async def test_post_job(client: AsyncClient) -> None:
    actor, headers = new_actor(ActorRole.CLIENT)
    job = await post_job(client, headers, warranty_days=7)
    assert job["status"] == "pending"
    assert job["client_id"] == str(actor.actor_id)
    assert Decimal(job["estimated_cost"]) == Decimal("10000.00")
    assert job["price_locked"] is False
    assert job["repost_count"] == 0
    assert job["max_reposts"] == settings.max_reposts
    assert job["warranty_days"] == 7


@pytest.mark.asyncio
async def test_provider_cannot_post_job(client: AsyncClient) -> None:
    _, headers = new_actor(ActorRole.PROVIDER)
    resp = await client.post("/jobs", json=make_job_data(), headers=headers)
    assert resp.status_code == 403
    assert resp.json()["error"]["kind"] == "authorization_error"


@pytest.mark.asyncio
async def test_post_job_validation(client: AsyncClient) -> None:
    _, headers = new_actor(ActorRole.CLIENT)
    resp = await client.post("/jobs", json=make_job_data(estimated_cost="-5.00"), headers=headers)
    assert resp.status_code == 422
    assert resp.json()["error"]["kind"] == "validation_error"

    resp = await client.post("/jobs", json=make_job_data(budget="12"), headers=headers)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_job_not_found(client: AsyncClient) -> None:
    _, headers = new_actor(ActorRole.CLIENT)
    resp = await client.get("/jobs/00000000-0000-0000-0000-000000000000", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["error"]["kind"] == "not_found"


@pytest.mark.asyncio
async def test_other_client_cannot_view_job(client: AsyncClient) -> None:
    _, owner = new_actor(ActorRole.CLIENT)
    _, stranger = new_actor(ActorRole.CLIENT)
    job = await post_job(client, owner)
    resp = await client.get(f"/jobs/{job['job_id']}", headers=stranger)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_list_jobs_scoping(client: AsyncClient) -> None:
    _, client_a = new_actor(ActorRole.CLIENT)
    _, client_b = new_actor(ActorRole.CLIENT)
    _, provider = new_actor(ActorRole.PROVIDER)
    job_a = await post_job(client, client_a)
    await post_job(client, client_b)

    resp = await client.get("/jobs", headers=client_a)
    assert [j["job_id"] for j in resp.json()] == [job_a["job_id"]]

    resp = await client.get("/jobs", headers=provider)
    assert len(resp.json()) == 2

    resp = await client.get("/jobs", params={"status": "completed"}, headers=provider)
    assert resp.json() == []


@pytest.mark.asyncio
async def test_full_lifecycle(client: AsyncClient) -> None:
    provider, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job, payment = await completed_job(client, client_headers, provider_headers)

    assert job["status"] == "completed"
    assert job["assigned_provider_id"] == str(provider.actor_id)
    assert job["started_at"] is not None
    assert job["completed_at"] is not None
    assert job["approved_at"] is not None
    assert Decimal(job["final_price"]) == Decimal("10000.00")
    assert payment["status"] == "escrow_hold"


@pytest.mark.asyncio
async def test_start_requires_payment(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await assigned_job(client, client_headers, provider_headers)
    assert job["status"] == "waiting_for_payment"

    resp = await client.post(f"/jobs/{job['job_id']}/start", headers=provider_headers)
    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["kind"] == "state_error"
    assert error["details"] == {"current": "waiting_for_payment", "attempted": "start"}


@pytest.mark.asyncio
async def test_only_assigned_provider_can_start(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, other_provider = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job, _ = await paid_job(client, client_headers, provider_headers)

    resp = await client.post(f"/jobs/{job['job_id']}/start", headers=other_provider)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_reject_completion_returns_to_in_progress(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job, _ = await paid_job(client, client_headers, provider_headers)
    job_id = job["job_id"]

    await client.post(f"/jobs/{job_id}/start", headers=provider_headers)
    await client.post(f"/jobs/{job_id}/complete", headers=provider_headers)
    resp = await client.post(f"/jobs/{job_id}/reject-completion", headers=client_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "in_progress"
    assert resp.json()["completed_at"] is None

    # Provider cannot approve their own work
    await client.post(f"/jobs/{job_id}/complete", headers=provider_headers)
    resp = await client.post(f"/jobs/{job_id}/approve", headers=provider_headers)
    assert resp.status_code == 403


# --- Soft lock ---

@pytest.mark.asyncio
async def test_soft_lock_and_confirm(client: AsyncClient) -> None:
    provider, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await post_job(client, client_headers, estimated_cost="450.00")

    resp = await client.post(f"/jobs/{job['job_id']}/soft-lock", headers=provider_headers)
    assert resp.status_code == 200
    locked = resp.json()
    assert locked["status"] == "soft_locked"
    assert locked["locked_by_provider_id"] == str(provider.actor_id)
    assert locked["lock_expires_at"] is not None

    resp = await client.post(f"/jobs/{job['job_id']}/confirm-soft-lock", headers=client_headers)
    assert resp.status_code == 200
    confirmed = resp.json()
    assert confirmed["status"] == "waiting_for_payment"
    assert confirmed["assigned_provider_id"] == str(provider.actor_id)
    assert Decimal(confirmed["final_price"]) == Decimal("450.00")
    assert confirmed["price_locked"] is True
    assert confirmed["payment_deadline"] is not None


@pytest.mark.asyncio
async def test_second_soft_lock_rejected(client: AsyncClient) -> None:
    _, first = new_actor(ActorRole.PROVIDER)
    _, second = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await post_job(client, client_headers)

    await client.post(f"/jobs/{job['job_id']}/soft-lock", headers=first)
    resp = await client.post(f"/jobs/{job['job_id']}/soft-lock", headers=second)
    assert resp.status_code == 409
    assert resp.json()["error"]["kind"] == "state_error"


@pytest.mark.asyncio
async def test_soft_lock_expiry_returns_job_without_repost(client: AsyncClient) -> None:
    object.__setattr__(settings, "soft_lock_seconds", 0)
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await post_job(client, client_headers)

    await client.post(f"/jobs/{job['job_id']}/soft-lock", headers=provider_headers)
    resp = await client.get(f"/jobs/{job['job_id']}", headers=client_headers)
    expired = resp.json()
    assert expired["status"] == "pending"
    assert expired["locked_by_provider_id"] is None
    assert expired["repost_count"] == 0
    assert expired["timeout_reasons"] == ["soft_lock_timeout"]

    resp = await client.post(f"/jobs/{job['job_id']}/confirm-soft-lock", headers=client_headers)
    assert resp.status_code == 409


# --- Cancel ---

@pytest.mark.asyncio
async def test_client_cancels_open_job(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await post_job(client, client_headers)
    bid = await place_bid(client, job["job_id"], provider_headers, "9000.00")

    resp = await client.post(
        f"/jobs/{job['job_id']}/cancel", json={"reason": "No longer needed"}, headers=client_headers
    )
    assert resp.status_code == 200
    cancelled = resp.json()
    assert cancelled["status"] == "cancelled"
    assert cancelled["rejection_reason"] == "No longer needed"
    assert cancelled["cancelled_at"] is not None

    resp = await client.get(f"/jobs/{job['job_id']}/bids", headers=client_headers)
    assert [b["status"] for b in resp.json() if b["bid_id"] == bid["bid_id"]] == ["rejected"]

    resp = await client.post(f"/jobs/{job['job_id']}/cancel", headers=client_headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_paid_job_cancel_is_operator_only(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    _, operator_headers = new_actor(ActorRole.OPERATOR)
    job, _ = await paid_job(client, client_headers, provider_headers)
    job_id = job["job_id"]

    resp = await client.post(f"/jobs/{job_id}/cancel", headers=client_headers)
    assert resp.status_code == 403

    resp = await client.post(f"/jobs/{job_id}/cancel", headers=operator_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    details = (await client.get(f"/jobs/{job_id}/payment", headers=operator_headers)).json()
    assert details["warranty_hold"]["status"] == "frozen"
