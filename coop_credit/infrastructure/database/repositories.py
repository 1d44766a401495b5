"""Data access layer for credit ledger entities"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from coop_credit.domain.models import (
    DEBIT_TYPES,
    INTEREST,
    PAID,
    PAYMENT,
    PENALTY,
    PENDING,
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    SPENT,
    Installment,
)
from coop_credit.infrastructure.database.models import (
    CreditSettings,
    LedgerEntry,
    Member,
    PaymentAllocation,
    PaymentRequest,
    PaymentScheduleEntry,
    Product,
    TransactionItem,
)
from coop_credit.utils.date_utils import utcnow


class MemberRepository:
    """Repository for members"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, member_id: int, lock: bool = False) -> Optional[Member]:
        """Fetch a member; lock=True takes a row lock for the rest of the transaction"""
        query = self.db.query(Member).filter(Member.member_id == member_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def list_ids(self) -> List[int]:
        return [row.member_id for row in self.db.query(Member.member_id).order_by(Member.member_id).all()]

    def get_many(self, member_ids: List[int]) -> List[Member]:
        if not member_ids:
            return []
        return self.db.query(Member).filter(Member.member_id.in_(member_ids)).all()


class SettingsRepository:
    """Repository for the CreditSettings singleton"""

    def __init__(self, db: Session):
        self.db = db

    def get(self) -> Optional[CreditSettings]:
        return self.db.query(CreditSettings).order_by(CreditSettings.setting_id).first()

    def get_or_create(self, defaults: dict) -> CreditSettings:
        """Return the settings row, lazily inserting defaults when none exists"""
        existing = self.get()
        if existing is not None:
            return existing
        row = CreditSettings(**defaults)
        self.db.add(row)
        self.db.flush()
        return row

    def update(self, defaults: dict, **fields) -> CreditSettings:
        row = self.get_or_create(defaults)
        for name, value in fields.items():
            setattr(row, name, value)
        row.updated_at = utcnow()
        self.db.flush()
        return row


class LedgerRepository:
    """Repository for Credit ledger entries and payment allocations"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, entry_id: int, lock: bool = False) -> Optional[LedgerEntry]:
        query = self.db.query(LedgerEntry).filter(LedgerEntry.entry_id == entry_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def add_entry(
        self,
        member_id: int,
        entry_type: str,
        amount: Decimal,
        timestamp: datetime,
        notes: str,
        paid_amount: Decimal = Decimal("0.00"),
        status: str = PENDING,
        related_transaction_id: Optional[int] = None,
        source_entry_id: Optional[int] = None,
        schedule_id: Optional[int] = None,
    ) -> LedgerEntry:
        """Append an entry and flush to obtain its id"""
        entry = LedgerEntry(
            member_id=member_id,
            type=entry_type,
            amount=amount,
            paid_amount=paid_amount,
            status=status,
            related_transaction_id=related_transaction_id,
            source_entry_id=source_entry_id,
            schedule_id=schedule_id,
            timestamp=timestamp,
            is_penalty_applied=False,
            notes=notes,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def debit_entries(self, member_id: int) -> List[LedgerEntry]:
        """All debt-creating entries (Spent, Penalty, Interest) for a member"""
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.member_id == member_id, LedgerEntry.type.in_(DEBIT_TYPES))
            .all()
        )

    def outstanding_debits(self, member_id: int, lock: bool = False) -> List[LedgerEntry]:
        """Unpaid debits in FIFO order (oldest first, id breaks ties)"""
        query = (
            self.db.query(LedgerEntry)
            .filter(
                LedgerEntry.member_id == member_id,
                LedgerEntry.type.in_(DEBIT_TYPES),
                LedgerEntry.status != PAID,
            )
            .order_by(LedgerEntry.timestamp.asc(), LedgerEntry.entry_id.asc())
        )
        if lock:
            query = query.with_for_update()
        return query.all()

    def outstanding_spent(self, member_id: int) -> List[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(
                LedgerEntry.member_id == member_id,
                LedgerEntry.type == SPENT,
                LedgerEntry.status != PAID,
            )
            .order_by(LedgerEntry.timestamp.asc(), LedgerEntry.entry_id.asc())
            .all()
        )

    def spent_for_transaction(self, transaction_id: int) -> Optional[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.type == SPENT, LedgerEntry.related_transaction_id == transaction_id)
            .first()
        )

    def unpenalized_spent(self, member_id: Optional[int] = None) -> List[LedgerEntry]:
        """Spent entries with money still owed and no penalty posted yet"""
        query = self.db.query(LedgerEntry).filter(
            LedgerEntry.type == SPENT,
            LedgerEntry.status != PAID,
            LedgerEntry.is_penalty_applied.is_(False),
        )
        if member_id is not None:
            query = query.filter(LedgerEntry.member_id == member_id)
        return query.order_by(LedgerEntry.member_id, LedgerEntry.timestamp, LedgerEntry.entry_id).all()

    def product_penalty_for(self, source_entry_id: int) -> Optional[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(
                LedgerEntry.type == PENALTY,
                LedgerEntry.source_entry_id == source_entry_id,
                LedgerEntry.schedule_id.is_(None),
            )
            .first()
        )

    def late_fee_for(self, schedule_id: int) -> Optional[LedgerEntry]:
        return self.db.query(LedgerEntry).filter(LedgerEntry.schedule_id == schedule_id).first()

    def latest_interest(self, member_id: int) -> Optional[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.member_id == member_id, LedgerEntry.type == INTEREST)
            .order_by(LedgerEntry.timestamp.desc(), LedgerEntry.entry_id.desc())
            .first()
        )

    def payments(self, member_id: int) -> List[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.member_id == member_id, LedgerEntry.type == PAYMENT)
            .order_by(LedgerEntry.timestamp.desc())
            .all()
        )

    def products_for_entry(self, entry: LedgerEntry) -> List[Product]:
        """Products sold in the transaction behind a Spent entry"""
        if entry.related_transaction_id is None:
            return []
        return (
            self.db.query(Product)
            .join(TransactionItem, TransactionItem.product_id == Product.product_id)
            .filter(TransactionItem.transaction_id == entry.related_transaction_id)
            .distinct()
            .all()
        )

    def add_allocation(
        self,
        payment_entry_id: int,
        credit_entry_id: int,
        allocated_amount: Decimal,
        payment_request_id: Optional[int] = None,
    ) -> PaymentAllocation:
        allocation = PaymentAllocation(
            payment_entry_id=payment_entry_id,
            credit_entry_id=credit_entry_id,
            allocated_amount=allocated_amount,
            payment_request_id=payment_request_id,
        )
        self.db.add(allocation)
        return allocation

    def allocations_for_request(self, payment_request_id: int) -> List[tuple]:
        """(allocation, debit entry) pairs for a payment request"""
        return (
            self.db.query(PaymentAllocation, LedgerEntry)
            .join(LedgerEntry, PaymentAllocation.credit_entry_id == LedgerEntry.entry_id)
            .filter(PaymentAllocation.payment_request_id == payment_request_id)
            .order_by(PaymentAllocation.allocation_id)
            .all()
        )


class ScheduleRepository:
    """Repository for payment schedule installments"""

    def __init__(self, db: Session):
        self.db = db

    def create_schedule(
        self,
        member_id: int,
        transaction_id: Optional[int],
        installments: List[Installment],
        credit_entry_id: int,
    ) -> List[PaymentScheduleEntry]:
        """Persist installments for one credit sale, keyed to its Spent entry"""
        rows = []
        for inst in installments:
            row = PaymentScheduleEntry(
                member_id=member_id,
                transaction_id=transaction_id,
                credit_entry_id=credit_entry_id,
                installment_number=inst.installment_number,
                total_installments=len(installments),
                amount=inst.amount,
                paid_amount=Decimal("0.00"),
                due_date=inst.due_date,
                status=PENDING,
            )
            self.db.add(row)
            rows.append(row)
        self.db.flush()
        return rows

    def for_member(self, member_id: int) -> List[PaymentScheduleEntry]:
        """Whole schedule, latest due date first"""
        return (
            self.db.query(PaymentScheduleEntry)
            .filter(PaymentScheduleEntry.member_id == member_id)
            .order_by(PaymentScheduleEntry.due_date.desc(), PaymentScheduleEntry.schedule_id.desc())
            .all()
        )

    def pending_for_member(self, member_id: int) -> List[PaymentScheduleEntry]:
        return (
            self.db.query(PaymentScheduleEntry)
            .filter(
                PaymentScheduleEntry.member_id == member_id,
                PaymentScheduleEntry.status == PENDING,
            )
            .order_by(PaymentScheduleEntry.due_date.asc(), PaymentScheduleEntry.installment_number.asc())
            .all()
        )

    def unpaid_for_entry(self, credit_entry_id: int) -> List[PaymentScheduleEntry]:
        """Unpaid installments of one Spent entry, earliest first"""
        return (
            self.db.query(PaymentScheduleEntry)
            .filter(
                PaymentScheduleEntry.credit_entry_id == credit_entry_id,
                PaymentScheduleEntry.status != PAID,
            )
            .order_by(PaymentScheduleEntry.installment_number.asc(), PaymentScheduleEntry.due_date.asc())
            .all()
        )


class PaymentRequestRepository:
    """Repository for member payment requests"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, member_id: int, amount: Decimal, notes: Optional[str] = None) -> PaymentRequest:
        request = PaymentRequest(member_id=member_id, amount=amount, status=REQUEST_PENDING, notes=notes)
        self.db.add(request)
        self.db.flush()
        self.db.refresh(request)
        return request

    def get(self, payment_request_id: int, lock: bool = False) -> Optional[PaymentRequest]:
        query = self.db.query(PaymentRequest).filter(PaymentRequest.payment_request_id == payment_request_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def mark_approved(self, payment_request_id: int, payment_entry_id: Optional[int]) -> int:
        """Flip a pending request to approved; returns rows updated (0 or 1)"""
        now = utcnow()
        return (
            self.db.query(PaymentRequest)
            .filter(
                PaymentRequest.payment_request_id == payment_request_id,
                PaymentRequest.status == REQUEST_PENDING,
            )
            .update(
                {
                    PaymentRequest.status: REQUEST_APPROVED,
                    PaymentRequest.payment_entry_id: payment_entry_id,
                    PaymentRequest.approved_at: now,
                    PaymentRequest.updated_at: now,
                },
                synchronize_session=False,
            )
        )

    def reject(self, payment_request_id: int, notes: Optional[str] = None) -> int:
        now = utcnow()
        values = {PaymentRequest.status: REQUEST_REJECTED, PaymentRequest.updated_at: now}
        if notes is not None:
            values[PaymentRequest.notes] = notes
        return (
            self.db.query(PaymentRequest)
            .filter(
                PaymentRequest.payment_request_id == payment_request_id,
                PaymentRequest.status == REQUEST_PENDING,
            )
            .update(values, synchronize_session=False)
        )
