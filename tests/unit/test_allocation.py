"""Unit tests for FIFO payment allocation"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from coop_credit.domain.allocation import (
    apply_to_row,
    entry_status,
    fifo_order,
    plan_allocation,
    plan_schedule_allocation,
)
from coop_credit.domain.exceptions import ConsistencyError

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def debit(entry_id, amount, paid="0.00", days=0, transaction_id=None):
    return SimpleNamespace(
        entry_id=entry_id,
        amount=Decimal(amount),
        paid_amount=Decimal(paid),
        timestamp=T0 + timedelta(days=days),
        related_transaction_id=transaction_id,
        status="pending",
    )


def test_oldest_debit_paid_first():
    """$60 against D1 $50 (older) and D2 $30 pays D1 in full and $10 of D2"""
    d1 = debit(1, "50.00", days=0)
    d2 = debit(2, "30.00", days=1)

    allocations = plan_allocation(Decimal("60.00"), [d2, d1])

    assert [(a.entry_id, a.amount) for a in allocations] == [(1, Decimal("50.00")), (2, Decimal("10.00"))]


def test_allocation_conserves_payment():
    debits = [debit(i, "19.99", days=i) for i in range(1, 6)]
    allocations = plan_allocation(Decimal("45.00"), debits)

    assert sum(a.amount for a in allocations) == Decimal("45.00")
    assert all(a.amount > 0 for a in allocations)


def test_partially_paid_debit_uses_outstanding():
    d1 = debit(1, "50.00", paid="45.00", days=0)
    d2 = debit(2, "30.00", days=1)

    allocations = plan_allocation(Decimal("20.00"), [d1, d2])

    assert [(a.entry_id, a.amount) for a in allocations] == [(1, Decimal("5.00")), (2, Decimal("15.00"))]


def test_fully_paid_debits_are_skipped():
    d1 = debit(1, "50.00", paid="50.00", days=0)
    d2 = debit(2, "30.00", days=1)

    allocations = plan_allocation(Decimal("30.00"), [d1, d2])

    assert [a.entry_id for a in allocations] == [2]


def test_timestamp_ties_broken_by_entry_id():
    ordered = fifo_order([debit(7, "1.00"), debit(3, "1.00"), debit(5, "1.00")])
    assert [d.entry_id for d in ordered] == [3, 5, 7]


def test_naive_timestamps_order_with_aware():
    naive = debit(2, "1.00")
    naive.timestamp = datetime(2025, 12, 31)
    ordered = fifo_order([debit(1, "1.00"), naive])
    assert [d.entry_id for d in ordered] == [2, 1]


def test_entry_status():
    assert entry_status(Decimal("10.00"), Decimal("0.00")) == "pending"
    assert entry_status(Decimal("10.00"), Decimal("4.00")) == "partially_paid"
    assert entry_status(Decimal("10.00"), Decimal("10.00")) == "paid"

    with pytest.raises(ConsistencyError):
        entry_status(Decimal("10.00"), Decimal("10.01"))


def test_apply_to_row_updates_status():
    row = debit(1, "50.00")
    apply_to_row(row, Decimal("20.00"))
    assert row.paid_amount == Decimal("20.00")
    assert row.status == "partially_paid"

    apply_to_row(row, Decimal("30.00"))
    assert row.status == "paid"


def test_apply_to_row_refuses_overpay():
    row = debit(1, "50.00", paid="40.00")
    with pytest.raises(ConsistencyError):
        apply_to_row(row, Decimal("10.01"))
    assert row.paid_amount == Decimal("40.00")


def test_schedule_allocation_earliest_installment_first():
    """$150 against three $100 installments: 100 / 50 / untouched"""
    installments = [
        SimpleNamespace(installment_number=n, due_date=T0 + timedelta(days=30 * n), amount=Decimal("100.00"), paid_amount=Decimal("0.00"))
        for n in (3, 1, 2)
    ]

    portions = plan_schedule_allocation(Decimal("150.00"), installments)

    assert [(i.installment_number, p) for i, p in portions] == [(1, Decimal("100.00")), (2, Decimal("50.00"))]
