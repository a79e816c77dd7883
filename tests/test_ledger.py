"""Tests for per-job ledger bookkeeping."""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.errors import ValidationError
from jobbroker.models.ledger import AccountType, EntryCategory
from jobbroker.services import ledger


def test_balances_from_entries() -> None:
    specs = [
        ledger.credit(AccountType.WARRANTY_HOLD, Decimal("100.00"), EntryCategory.WARRANTY_HOLD, "hold"),
        ledger.debit(AccountType.WARRANTY_HOLD, Decimal("100.00"), EntryCategory.WARRANTY_RELEASE, "release"),
        ledger.credit(AccountType.PROVIDER_PAYABLE, Decimal("100.00"), EntryCategory.WARRANTY_RELEASE, "payout"),
    ]
    balances = ledger.balances_from_entries(specs)
    assert balances[AccountType.WARRANTY_HOLD] == Decimal("0")
    assert balances[AccountType.PROVIDER_PAYABLE] == Decimal("100.00")
    assert balances[AccountType.PLATFORM_COMMISSION] == Decimal("0")


def test_balances_cover_every_account() -> None:
    assert set(ledger.balances_from_entries([])) == set(AccountType)


@pytest.mark.asyncio
async def test_post_entries_rejects_negative_balance(db_session: AsyncSession) -> None:
    with pytest.raises(ValidationError):
        await ledger.post_entries(
            db_session,
            uuid.uuid4(),
            [ledger.debit(AccountType.WARRANTY_HOLD, Decimal("10.00"), EntryCategory.WARRANTY_RELEASE, "x")],
        )


@pytest.mark.asyncio
async def test_post_entries_rejects_negative_amount(db_session: AsyncSession) -> None:
    with pytest.raises(ValidationError):
        await ledger.post_entries(
            db_session,
            uuid.uuid4(),
            [ledger.credit(AccountType.PROVIDER_PAYABLE, Decimal("-1.00"), EntryCategory.JOB_PAYMENT, "x")],
        )


@pytest.mark.asyncio
async def test_post_entries_skips_zero_amounts(db_session: AsyncSession) -> None:
    entries = await ledger.post_entries(
        db_session,
        uuid.uuid4(),
        [
            ledger.credit(AccountType.PROVIDER_PAYABLE, Decimal("5.00"), EntryCategory.JOB_PAYMENT, "pay"),
            ledger.credit(AccountType.WARRANTY_HOLD, Decimal("0.00"), EntryCategory.WARRANTY_HOLD, "none"),
        ],
    )
    assert len(entries) == 1
    assert entries[0].account_type == AccountType.PROVIDER_PAYABLE
