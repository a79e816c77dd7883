"""Per-job ledger bookkeeping.

Entries are append-only; balances are always rebuilt from them. Callers hold
the job row lock (SELECT ... FOR UPDATE) for the duration of their unit of
work, which serializes ledger writes per job without touching other jobs.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobbroker.errors import ValidationError
from jobbroker.models.ledger import AccountType, EntryCategory, EntryType, LedgerEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntrySpec:
    account_type: AccountType
    entry_type: EntryType
    amount: Decimal
    category: EntryCategory
    description: str


def credit(account: AccountType, amount: Decimal, category: EntryCategory, description: str) -> EntrySpec:
    return EntrySpec(account, EntryType.CREDIT, amount, category, description)


def debit(account: AccountType, amount: Decimal, category: EntryCategory, description: str) -> EntrySpec:
    return EntrySpec(account, EntryType.DEBIT, amount, category, description)


def balances_from_entries(entries: list[LedgerEntry] | list[EntrySpec]) -> dict[AccountType, Decimal]:
    totals: dict[AccountType, Decimal] = defaultdict(lambda: Decimal("0"))
    for entry in entries:
        signed = entry.amount if entry.entry_type == EntryType.CREDIT else -entry.amount
        totals[entry.account_type] += signed
    return {account: totals[account] for account in AccountType}


async def list_entries(db: AsyncSession, job_id: uuid.UUID) -> list[LedgerEntry]:
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.job_id == job_id)
        .order_by(LedgerEntry.created_at, LedgerEntry.entry_id)
    )
    return list(result.scalars().all())


async def account_balances(db: AsyncSession, job_id: uuid.UUID) -> dict[AccountType, Decimal]:
    return balances_from_entries(await list_entries(db, job_id))


async def post_entries(
    db: AsyncSession,
    job_id: uuid.UUID,
    specs: list[EntrySpec],
    *,
    payment_id: uuid.UUID | None = None,
    hold_id: uuid.UUID | None = None,
    created_by: uuid.UUID | None = None,
) -> list[LedgerEntry]:
    """Append entries for one job after checking no account would go negative.

    Zero-amount lines are skipped. Nothing is committed here; the caller's
    unit of work decides.
    """
    specs = [s for s in specs if s.amount != 0]
    for line in specs:
        if line.amount < 0:
            raise ValidationError(f"Ledger amount must be positive, got {line.amount}")

    existing = await list_entries(db, job_id)
    projected = balances_from_entries([*existing, *specs])
    for account, balance in projected.items():
        if balance < 0:
            raise ValidationError(
                f"Ledger account {account.value} would go negative for job {job_id}"
            )

    entries = []
    for line in specs:
        entry = LedgerEntry(
            entry_id=uuid.uuid4(),
            job_id=job_id,
            account_type=line.account_type,
            entry_type=line.entry_type,
            amount=line.amount,
            category=line.category,
            description=line.description,
            payment_id=payment_id,
            hold_id=hold_id,
            created_by=created_by,
        )
        db.add(entry)
        entries.append(entry)

    logger.info("Posted %d ledger entries for job %s", len(entries), job_id)
    return entries
