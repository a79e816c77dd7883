"""Tests for payment splitting, ledger postings and payment details."""

import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.models.actor import ActorProfile, ActorRole
from jobbroker.models.ledger import LedgerEntry
from jobbroker.models.payment import Payment
from jobbroker.models.warranty import WarrantyHold
from jobbroker.schemas.payment import CreatePaymentSplit
from jobbroker.services import commission, ledger, payment_split
from jobbroker.services.commission import CommissionContext, CommissionRule
from tests.conftest import assigned_job, new_actor, paid_job


@pytest.mark.asyncio
async def test_split_reference_amounts(client: AsyncClient) -> None:
    provider, provider_headers = new_actor(ActorRole.PROVIDER)
    client_actor, client_headers = new_actor(ActorRole.CLIENT)
    job, payment = await paid_job(client, client_headers, provider_headers)

    assert Decimal(payment["total_amount"]) == Decimal("10000.00")
    assert Decimal(payment["commission_rate"]) == Decimal("0.05")
    assert Decimal(payment["commission_amount"]) == Decimal("500.00")
    assert Decimal(payment["net_amount"]) == Decimal("9500.00")
    assert Decimal(payment["hold_percentage"]) == Decimal("20")
    assert Decimal(payment["warranty_hold_amount"]) == Decimal("1900.00")
    assert Decimal(payment["immediate_amount"]) == Decimal("7600.00")
    assert payment["provider_id"] == str(provider.actor_id)
    assert payment["client_id"] == str(client_actor.actor_id)
    assert payment["status"] == "escrow_hold"
    assert payment["payment_method"] == "online"

    resp = await client.get(f"/jobs/{job['job_id']}", headers=client_headers)
    assert resp.json()["status"] == "assigned"
    assert resp.json()["payment_deadline"] is None


@pytest.mark.asyncio
async def test_payment_details_and_balances(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job, payment = await paid_job(client, client_headers, provider_headers)

    resp = await client.get(f"/jobs/{job['job_id']}/payment", headers=provider_headers)
    assert resp.status_code == 200
    details = resp.json()
    assert details["payment"]["payment_id"] == payment["payment_id"]

    hold = details["warranty_hold"]
    assert hold["status"] == "locked"
    assert Decimal(hold["hold_amount"]) == Decimal("1900.00")
    assert hold["warranty_days"] == 10
    assert hold["effective_end_date"] == hold["end_date"]

    assert len(details["ledger_entries"]) == 3
    assert all(e["entry_type"] == "credit" for e in details["ledger_entries"])
    balances = {k: Decimal(v) for k, v in details["balances"].items()}
    assert balances == {
        "platform_commission": Decimal("500.00"),
        "provider_payable": Decimal("7600.00"),
        "warranty_hold": Decimal("1900.00"),
        "client_receivable": Decimal("0"),
    }


@pytest.mark.asyncio
async def test_duplicate_split_conflicts(client: AsyncClient, db_session: AsyncSession) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job, _ = await paid_job(client, client_headers, provider_headers)

    resp = await client.post(f"/jobs/{job['job_id']}/payment-split", json={}, headers=client_headers)
    assert resp.status_code == 409
    assert resp.json()["error"]["kind"] == "conflict"

    result = await db_session.execute(select(LedgerEntry))
    assert len(result.scalars().all()) == 3


@pytest.mark.asyncio
async def test_split_requires_waiting_for_payment(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    resp = await client.post("/jobs", json={"title": "x", "estimated_cost": "50.00"}, headers=client_headers)
    job_id = resp.json()["job_id"]

    resp = await client.post(f"/jobs/{job_id}/payment-split", json={}, headers=client_headers)
    assert resp.status_code == 409
    assert resp.json()["error"]["kind"] == "state_error"


@pytest.mark.asyncio
async def test_only_client_or_operator_can_pay(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await assigned_job(client, client_headers, provider_headers)

    resp = await client.post(f"/jobs/{job['job_id']}/payment-split", json={}, headers=provider_headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_split_overrides(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    _, payment = await paid_job(
        client, client_headers, provider_headers, price="200.00",
        split={"hold_percentage": "0", "warranty_days": 3, "payment_method": "cash",
               "external_reference": "RCPT-1"},
    )
    assert Decimal(payment["warranty_hold_amount"]) == Decimal("0")
    assert Decimal(payment["immediate_amount"]) == Decimal("190.00")
    assert payment["payment_method"] == "cash"
    assert payment["external_reference"] == "RCPT-1"


@pytest.mark.asyncio
async def test_commission_lookup_is_pluggable(client: AsyncClient) -> None:
    class FlatTenPercent:
        async def lookup(self, context: CommissionContext) -> CommissionRule:
            return CommissionRule(rate=Decimal("0.10"), requires_approval=True)

    commission.set_commission_lookup(FlatTenPercent())
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    _, payment = await paid_job(client, client_headers, provider_headers, price="1000.00")
    assert Decimal(payment["commission_amount"]) == Decimal("100.00")
    assert payment["requires_approval"] is True


@pytest.mark.asyncio
async def test_critical_provider_gets_frozen_larger_hold(
    client: AsyncClient, db_session: AsyncSession
) -> None:
    provider, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    job = await assigned_job(client, client_headers, provider_headers)

    profile = (await db_session.execute(
        select(ActorProfile).where(ActorProfile.actor_id == provider.actor_id)
    )).scalar_one()
    profile.trust_score = Decimal("15.00")
    await db_session.commit()

    resp = await client.post(f"/jobs/{job['job_id']}/payment-split", json={}, headers=client_headers)
    assert resp.status_code == 201
    payment = resp.json()
    assert Decimal(payment["hold_percentage"]) == Decimal("40")
    assert Decimal(payment["warranty_hold_amount"]) == Decimal("3800.00")
    assert Decimal(payment["immediate_amount"]) == Decimal("5700.00")

    resp = await client.get(f"/jobs/{job['job_id']}/payment", headers=client_headers)
    assert resp.json()["warranty_hold"]["status"] == "frozen"


@pytest.mark.asyncio
async def test_payment_details_hidden_from_strangers(client: AsyncClient) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    _, client_headers = new_actor(ActorRole.CLIENT)
    _, stranger = new_actor(ActorRole.CLIENT)
    job, _ = await paid_job(client, client_headers, provider_headers)

    resp = await client.get(f"/jobs/{job['job_id']}/payment", headers=stranger)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_split_failure_after_ledger_write_rolls_back(
    client: AsyncClient, db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    _, provider_headers = new_actor(ActorRole.PROVIDER)
    client_actor, client_headers = new_actor(ActorRole.CLIENT)
    job = await assigned_job(client, client_headers, provider_headers)
    job_id = uuid.UUID(job["job_id"])

    post_entries = ledger.post_entries

    async def post_then_fail(db, *args, **kwargs):  # type: ignore[no-untyped-def]
        await post_entries(db, *args, **kwargs)
        await db.flush()
        raise RuntimeError("card processor timed out")

    monkeypatch.setattr(ledger, "post_entries", post_then_fail)
    with pytest.raises(RuntimeError):
        await payment_split.create_payment_split(
            db_session, job_id, client_actor, CreatePaymentSplit()
        )

    for model in (Payment, LedgerEntry, WarrantyHold):
        count = await db_session.scalar(select(func.count()).select_from(model))
        assert count == 0

    monkeypatch.undo()
    resp = await client.get(f"/jobs/{job_id}", headers=client_headers)
    assert resp.json()["status"] == "waiting_for_payment"
    assert resp.json()["assigned_provider_id"] is not None
