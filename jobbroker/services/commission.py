"""Commission rules and the pure commission calculation.

Rates are fractions of the job total (``Decimal("0.05")`` is 5%). The rule
lookup is a collaborator: the default implementation reads category and
region overrides from settings, and deployments can install their own with
``set_commission_lookup``.
"""

import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from jobbroker.config import settings
from jobbroker.errors import ValidationError

CENT = Decimal("0.01")


@dataclass(frozen=True)
class CommissionRule:
    rate: Decimal
    requires_approval: bool = False


@dataclass(frozen=True)
class CommissionContext:
    job_id: uuid.UUID
    category_id: str | None
    region: str | None
    client_id: uuid.UUID


@dataclass(frozen=True)
class CommissionBreakdown:
    total_amount: Decimal
    rate: Decimal
    commission_amount: Decimal
    net_amount: Decimal
    requires_approval: bool

    def to_dict(self) -> dict:
        return {
            "total_amount": str(self.total_amount),
            "rate": str(self.rate),
            "commission_amount": str(self.commission_amount),
            "net_amount": str(self.net_amount),
            "requires_approval": self.requires_approval,
        }


class CommissionRuleLookup(Protocol):
    async def lookup(self, context: CommissionContext) -> CommissionRule: ...


class SettingsCommissionRules:
    """Category override, then region override, then the platform default."""

    async def lookup(self, context: CommissionContext) -> CommissionRule:
        rate = settings.default_commission_rate
        if context.category_id and context.category_id in settings.commission_category_rates:
            rate = settings.commission_category_rates[context.category_id]
        elif context.region and context.region in settings.commission_region_rates:
            rate = settings.commission_region_rates[context.region]
        return CommissionRule(rate=Decimal(rate))


_lookup: CommissionRuleLookup = SettingsCommissionRules()


def get_commission_lookup() -> CommissionRuleLookup:
    return _lookup


def set_commission_lookup(lookup: CommissionRuleLookup) -> None:
    global _lookup
    _lookup = lookup


def validate_rate(rate: Decimal) -> Decimal:
    if rate < 0 or rate > 1:
        raise ValidationError(f"Commission rate must be between 0 and 1, got {rate}")
    return rate


def calculate_commission(
    total_amount: Decimal,
    rule: CommissionRule,
    min_commission: Decimal = Decimal("0"),
) -> CommissionBreakdown:
    """commission = total * rate (to the cent, half-up); net = total - commission.

    A commission under ``min_commission`` does not block the payment but is
    flagged for operator approval.
    """
    if total_amount <= 0:
        raise ValidationError("Total amount must be greater than 0")
    rate = validate_rate(rule.rate)

    commission = (total_amount * rate).quantize(CENT, rounding=ROUND_HALF_UP)
    requires_approval = rule.requires_approval or commission < min_commission
    return CommissionBreakdown(
        total_amount=total_amount,
        rate=rate,
        commission_amount=commission,
        net_amount=total_amount - commission,
        requires_approval=requires_approval,
    )
