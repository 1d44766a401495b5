"""FIFO payment allocation - core business logic for applying repayments"""

from decimal import Decimal
from typing import Iterable, List, Sequence, Tuple

from coop_credit.domain.exceptions import ConsistencyError
from coop_credit.domain.models import Allocation, PAID, PARTIALLY_PAID, PENDING
from coop_credit.utils.date_utils import ensure_aware
from coop_credit.utils.money import ZERO


def entry_status(amount: Decimal, paid_amount: Decimal) -> str:
    """
    Derive ledger entry status from its amounts.

    paid iff paid_amount == amount, partially_paid iff strictly between,
    pending otherwise.
    """
    if paid_amount < ZERO or paid_amount > amount:
        raise ConsistencyError(f"paid_amount {paid_amount} outside [0, {amount}]")
    if paid_amount == amount:
        return PAID
    if paid_amount > ZERO:
        return PARTIALLY_PAID
    return PENDING


def outstanding(row) -> Decimal:
    """Unpaid face value of a ledger entry or installment"""
    return row.amount - (row.paid_amount or ZERO)


def fifo_order(debits: Iterable) -> List:
    """Oldest debt first; entry id breaks timestamp ties"""
    return sorted(debits, key=lambda d: (ensure_aware(d.timestamp), d.entry_id))


def plan_allocation(amount: Decimal, debits: Sequence) -> List[Allocation]:
    """
    Split a payment across outstanding debits, oldest first.

    Each debit receives min(remaining, outstanding). Debits with nothing
    outstanding are skipped. Stops once the payment is exhausted.

    Example:
        D1 (oldest) $50 outstanding, D2 $30 outstanding, payment $60
        → [D1: $50, D2: $10]
    """
    remaining = amount
    allocations: List[Allocation] = []

    for debit in fifo_order(debits):
        if remaining <= ZERO:
            break

        unpaid = outstanding(debit)
        if unpaid <= ZERO:
            continue

        portion = min(remaining, unpaid)
        allocations.append(
            Allocation(
                entry_id=debit.entry_id,
                amount=portion,
                related_transaction_id=debit.related_transaction_id,
            )
        )
        remaining -= portion

    return allocations


def plan_schedule_allocation(amount: Decimal, installments: Sequence) -> List[Tuple[object, Decimal]]:
    """
    Spread an amount across one credit entry's installments, earliest first.

    Returns (installment, portion) pairs. Installments already paid are skipped.
    """
    remaining = amount
    portions = []

    ordered = sorted(installments, key=lambda i: (i.installment_number or 0, i.due_date))
    for inst in ordered:
        if remaining <= ZERO:
            break
        unpaid = outstanding(inst)
        if unpaid <= ZERO:
            continue
        portion = min(remaining, unpaid)
        portions.append((inst, portion))
        remaining -= portion

    return portions


def apply_to_row(row, portion: Decimal) -> None:
    """Increase paid_amount on a ledger entry, enforcing 0 <= paid <= amount"""
    if portion <= ZERO:
        raise ConsistencyError(f"Refusing to apply non-positive portion {portion}")
    new_paid = (row.paid_amount or ZERO) + portion
    if new_paid > row.amount:
        raise ConsistencyError(
            f"Overpay on entry {row.entry_id}: {new_paid} exceeds amount {row.amount}"
        )
    row.paid_amount = new_paid
    row.status = entry_status(row.amount, new_paid)
