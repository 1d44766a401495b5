"""Interest, overdue penalty and late fee calculations"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence

from coop_credit.domain.allocation import outstanding
from coop_credit.domain.models import FIXED, PERCENTAGE, PenaltyPolicy
from coop_credit.utils.date_utils import add_days, days_between, ensure_aware
from coop_credit.utils.money import ZERO, percent_of, round_money, to_money


def resolve_penalty_policy(products: Sequence, settings) -> PenaltyPolicy:
    """
    Pick the overdue policy for a Spent entry from the products it paid for.

    Each product's fields fall back to the CreditSettings defaults when unset.
    When a sale covers several products, the one falling due first wins
    (ties go to the lowest product id). With no products at all the global
    defaults apply.
    """
    candidates = []
    for product in sorted(products, key=lambda p: p.product_id):
        due_days = product.credit_due_days
        if due_days is None:
            due_days = settings.credit_due_days

        if product.credit_penalty_type:
            penalty_type = product.credit_penalty_type
            penalty_value = to_money(product.credit_penalty_value or ZERO)
            source = "product"
        else:
            penalty_type = settings.credit_penalty_type
            penalty_value = to_money(settings.credit_penalty_value or ZERO)
            source = "settings"

        candidates.append(PenaltyPolicy(due_days, penalty_type, penalty_value, source))

    if not candidates:
        return PenaltyPolicy(
            due_days=settings.credit_due_days,
            penalty_type=settings.credit_penalty_type,
            penalty_value=to_money(settings.credit_penalty_value or ZERO),
            source="settings",
        )

    with_due_days = [c for c in candidates if c.due_days is not None]
    if not with_due_days:
        return candidates[0]
    # min() keeps the first of equal keys, so product id order decides ties
    return min(with_due_days, key=lambda c: c.due_days)


def penalty_due_date(posted_at: datetime, due_days: int) -> datetime:
    """Calendar-day due date for a Spent entry"""
    return add_days(posted_at, due_days)


def is_overdue(posted_at: datetime, due_days: int, as_of: datetime) -> bool:
    """Strictly past the due date"""
    return ensure_aware(as_of) > penalty_due_date(posted_at, due_days)


def compute_penalty(outstanding_amount: Decimal, policy: PenaltyPolicy) -> Decimal:
    """
    Penalty for one overdue entry.

    percentage: outstanding × value / 100
    fixed:      value
    """
    if policy.penalty_type == PERCENTAGE:
        return percent_of(outstanding_amount, policy.penalty_value)
    if policy.penalty_type == FIXED:
        return round_money(policy.penalty_value)
    return ZERO


def compute_late_fee(unpaid_amount: Decimal, fee_amount: Decimal, fee_percentage: Decimal) -> Decimal:
    """Larger of the flat late fee and the percentage of what is unpaid"""
    return max(round_money(fee_amount or ZERO), percent_of(unpaid_amount, fee_percentage or ZERO))


def interest_eligible(entry, grace_period_days: int, as_of: datetime) -> bool:
    """Outstanding and at least grace_period_days old"""
    return outstanding(entry) > ZERO and days_between(entry.timestamp, as_of) >= grace_period_days


def compute_interest(
    entries: Iterable,
    interest_rate: Decimal,
    grace_period_days: int,
    as_of: datetime,
) -> Decimal:
    """
    Interest for one billing period across a member's Spent entries.

    Σ interest_rate% × outstanding over entries past the grace period,
    rounded once at the end.
    """
    rate = to_money(interest_rate or ZERO)
    if rate <= ZERO:
        return ZERO

    total = ZERO
    for entry in entries:
        if interest_eligible(entry, grace_period_days, as_of):
            total += outstanding(entry) * rate / Decimal(100)

    return round_money(total)

