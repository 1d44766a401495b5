"""Unit tests for penalty policy resolution, late fees and interest"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

from coop_credit.domain.models import PenaltyPolicy
from coop_credit.domain.penalties import (
    compute_interest,
    compute_late_fee,
    compute_penalty,
    is_overdue,
    resolve_penalty_policy,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def settings(**overrides):
    values = dict(credit_due_days=30, credit_penalty_type="fixed", credit_penalty_value=Decimal("5.00"))
    values.update(overrides)
    return SimpleNamespace(**values)


def product(product_id, due_days=None, penalty_type=None, penalty_value=None):
    return SimpleNamespace(
        product_id=product_id,
        credit_due_days=due_days,
        credit_penalty_type=penalty_type,
        credit_penalty_value=penalty_value,
    )


def test_no_products_uses_settings():
    policy = resolve_penalty_policy([], settings())

    assert policy.due_days == 30
    assert policy.penalty_type == "fixed"
    assert policy.penalty_value == Decimal("5.00")
    assert policy.source == "settings"


def test_product_fields_fall_back_to_settings():
    policy = resolve_penalty_policy([product(1, due_days=14)], settings())

    assert policy.due_days == 14
    assert policy.penalty_type == "fixed"
    assert policy.source == "settings"


def test_earliest_due_product_wins():
    products = [
        product(2, due_days=30, penalty_type="fixed", penalty_value=Decimal("20.00")),
        product(1, due_days=7, penalty_type="percentage", penalty_value=Decimal("10.00")),
    ]

    policy = resolve_penalty_policy(products, settings())

    assert policy.due_days == 7
    assert policy.penalty_type == "percentage"
    assert policy.source == "product"


def test_due_day_tie_goes_to_lowest_product_id():
    products = [
        product(9, due_days=10, penalty_type="fixed", penalty_value=Decimal("99.00")),
        product(4, due_days=10, penalty_type="fixed", penalty_value=Decimal("4.00")),
    ]

    assert resolve_penalty_policy(products, settings()).penalty_value == Decimal("4.00")


def test_policy_without_type_is_not_enforceable():
    assert not resolve_penalty_policy([], settings(credit_penalty_type=None)).enforceable
    assert not resolve_penalty_policy([], settings(credit_due_days=None)).enforceable
    assert not resolve_penalty_policy([], settings(credit_penalty_value=Decimal("0"))).enforceable


def test_overdue_is_strictly_after_due_date():
    assert not is_overdue(T0, 30, T0 + timedelta(days=30))
    assert is_overdue(T0, 30, T0 + timedelta(days=30, seconds=1))


def test_compute_penalty():
    percentage = PenaltyPolicy(30, "percentage", Decimal("2.5"), "product")
    fixed = PenaltyPolicy(30, "fixed", Decimal("20"), "product")

    assert compute_penalty(Decimal("33.33"), percentage) == Decimal("0.83")
    assert compute_penalty(Decimal("500.00"), fixed) == Decimal("20.00")


def test_late_fee_takes_larger_of_flat_and_percentage():
    assert compute_late_fee(Decimal("100.00"), Decimal("5.00"), Decimal("2")) == Decimal("5.00")
    assert compute_late_fee(Decimal("1000.00"), Decimal("5.00"), Decimal("2")) == Decimal("20.00")


def test_interest_only_after_grace_period():
    entries = [
        SimpleNamespace(amount=Decimal("100.00"), paid_amount=Decimal("0.00"), timestamp=T0),
        SimpleNamespace(amount=Decimal("50.00"), paid_amount=Decimal("0.00"), timestamp=T0 + timedelta(days=20)),
    ]

    interest = compute_interest(entries, Decimal("1.5"), 30, T0 + timedelta(days=30))

    assert interest == Decimal("1.50")


def test_interest_rounded_once_half_up():
    entries = [
        SimpleNamespace(amount=Decimal("0.33"), paid_amount=Decimal("0.00"), timestamp=T0) for _ in range(3)
    ]
    # 3 × 0.165 = 0.495 → 0.50; per-entry rounding would give 0.51
    assert compute_interest(entries, Decimal("50"), 0, T0) == Decimal("0.50")


def test_zero_rate_means_no_interest():
    entries = [SimpleNamespace(amount=Decimal("100.00"), paid_amount=Decimal("0.00"), timestamp=T0)]
    assert compute_interest(entries, Decimal("0"), 0, T0 + timedelta(days=60)) == Decimal("0.00")
