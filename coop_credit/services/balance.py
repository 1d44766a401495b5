"""Running balance calculation and balance synchronization"""

from decimal import Decimal

from sqlalchemy.orm import Session

from coop_credit.domain.allocation import outstanding
from coop_credit.domain.exceptions import NotFoundError
from coop_credit.infrastructure.database.repositories import LedgerRepository, MemberRepository
from coop_credit.utils.money import ZERO, round_money


def running_balance(db: Session, member_id: int) -> Decimal:
    """
    Σ(amount - paid_amount) over the member's Spent, Penalty and Interest entries.

    Payment entries are excluded: they are audit records, their effect is
    already reflected in the debits' paid_amount.
    """
    entries = LedgerRepository(db).debit_entries(member_id)
    return round_money(sum((outstanding(e) for e in entries), ZERO))


def synchronize_balance(db: Session, member_id: int) -> Decimal:
    """Write the running balance into Member.credit_balance within the caller's transaction"""
    member = MemberRepository(db).get(member_id)
    if member is None:
        raise NotFoundError(f"Member {member_id} not found")

    balance = running_balance(db, member_id)
    if member.credit_balance != balance:
        member.credit_balance = balance
    db.flush()
    return balance
