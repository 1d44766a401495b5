"""Credit ledger engine: payment allocation, balances, interest and credit sales"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coop_credit.config import Settings
from coop_credit.domain.allocation import (
    apply_to_row,
    outstanding,
    plan_allocation,
    plan_schedule_allocation,
)
from coop_credit.domain.exceptions import (
    ConsistencyError,
    CreditLimitExceededError,
    NotFoundError,
    PartialSuccessAnomaly,
    TransientStorageError,
    ValidationError,
)
from coop_credit.domain.installments import generate_installment_plan
from coop_credit.domain.markup import calculate_markup
from coop_credit.domain.models import (
    CartItem,
    CreditSummary,
    INTEREST,
    MarkupQuote,
    PAID,
    PAYMENT,
    PENDING,
    PaymentResult,
    REQUEST_PENDING,
    SPENT,
    UnpaidItem,
)
from coop_credit.domain.penalties import compute_interest, interest_eligible
from coop_credit.infrastructure.database.models import (
    CreditSettings,
    LedgerEntry,
    PaymentAllocation,
    PaymentRequest,
    PaymentScheduleEntry,
    Product,
    Transaction,
)
from coop_credit.infrastructure.database.repositories import (
    LedgerRepository,
    MemberRepository,
    PaymentRequestRepository,
    ScheduleRepository,
    SettingsRepository,
)
from coop_credit.infrastructure.observability.logging import log_payment
from coop_credit.infrastructure.observability.metrics import (
    partial_success_counter,
    payment_counter,
    record_payment,
    surcharge_counter,
)
from coop_credit.services.balance import running_balance, synchronize_balance
from coop_credit.services.unit_of_work import UnitOfWork
from coop_credit.utils.date_utils import add_days, days_between, ensure_aware, utcnow
from coop_credit.utils.money import ZERO, round_money, to_money

logger = logging.getLogger(__name__)


def validate_amount(amount) -> Decimal:
    """Positive, finite, at most two decimal places"""
    try:
        value = to_money(amount)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    if not value.is_finite():
        raise ValidationError("Amount must be a finite number")
    if value <= ZERO:
        raise ValidationError("Amount must be greater than zero")
    if value != round_money(value):
        raise ValidationError("Amount cannot have more than two decimal places")
    return value


def validate_id(value, label: str = "member_id") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"Invalid {label}: {value!r}")
    return value


def settings_defaults(config: Settings) -> dict:
    """Column values for a freshly created CreditSettings row"""
    return {
        "interest_rate": config.default_interest_rate,
        "grace_period_days": config.default_grace_period_days,
        "late_fee_amount": config.default_late_fee_amount,
        "late_fee_percentage": config.default_late_fee_percentage,
        "default_markup_percentage": config.default_markup_percentage,
        "credit_due_days": config.default_credit_due_days,
        "credit_penalty_type": config.default_credit_penalty_type,
        "credit_penalty_value": config.default_credit_penalty_value,
    }


class CreditEngine:
    """
    Entry point for every ledger mutation and balance query.

    Each public operation runs in its own all-or-nothing transaction and
    re-synchronizes Member.credit_balance before committing.
    """

    SETTINGS_FIELDS = (
        "interest_rate",
        "grace_period_days",
        "late_fee_amount",
        "late_fee_percentage",
        "default_markup_percentage",
        "credit_due_days",
        "credit_penalty_type",
        "credit_penalty_value",
    )

    def __init__(self, uow: UnitOfWork, config: Settings):
        self.uow = uow
        self.config = config

    # Settings

    def load_settings(self, db: Session) -> CreditSettings:
        return SettingsRepository(db).get_or_create(settings_defaults(self.config))

    def get_credit_settings(self) -> CreditSettings:
        return self.uow.run(self.load_settings)

    def update_credit_settings(self, **fields) -> CreditSettings:
        unknown = set(fields) - set(self.SETTINGS_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        for name in ("grace_period_days", "credit_due_days"):
            if fields.get(name) is not None and fields[name] < 0:
                raise ValidationError(f"{name} cannot be negative")
        if fields.get("credit_penalty_type") not in (None, "fixed", "percentage"):
            raise ValidationError("credit_penalty_type must be 'fixed' or 'percentage'")

        def _update(db: Session) -> CreditSettings:
            return SettingsRepository(db).update(settings_defaults(self.config), **fields)

        return self.uow.run(_update)

    # Balances

    def get_running_balance(self, member_id: int) -> Decimal:
        validate_id(member_id)

        def _read(db: Session) -> Decimal:
            self.require_member(db, member_id)
            return running_balance(db, member_id)

        return self.uow.read(_read)

    def synchronize_credit_balance(self, member_id: int) -> Decimal:
        validate_id(member_id)
        return self.uow.run(lambda db: synchronize_balance(db, member_id))

    def get_credit_summary(self, member_id: int) -> CreditSummary:
        validate_id(member_id)

        def _read(db: Session) -> CreditSummary:
            member = self.require_member(db, member_id)
            balance = running_balance(db, member_id)
            limit = member.credit_limit or ZERO
            utilization = round_money(balance * 100 / limit) if limit > ZERO else ZERO
            return CreditSummary(
                member_id=member_id,
                credit_balance=balance,
                credit_limit=limit,
                available_credit=limit - balance,
                utilization_percentage=utilization,
            )

        return self.uow.read(_read)

    # Payments

    def apply_payment(
        self,
        member_id: int,
        amount=None,
        full: bool = False,
        request_id: str | None = None,
    ) -> PaymentResult:
        """
        Apply a payment against the member's outstanding debt, oldest first.

        Flow:
        1. Validate amount (skipped for full payments)
        2. Lock the member row so concurrent payments serialize
        3. Allocate FIFO across Spent/Penalty/Interest debits and their installments
        4. Post one Payment entry plus allocation rows
        5. Re-synchronize the member balance, commit
        """
        validate_id(member_id)
        if not full:
            amount = validate_amount(amount)

        try:
            result = self.uow.run(lambda db: self._apply_payment(db, member_id, amount, full))
        except ValidationError:
            payment_counter.labels(outcome="rejected").inc()
            raise

        record_payment(result.applied)
        log_payment(member_id, result.applied, result.new_balance, len(result.applied_payments), request_id)
        return result

    def _apply_payment(
        self,
        db: Session,
        member_id: int,
        amount: Optional[Decimal],
        full: bool,
        payment_request_id: Optional[int] = None,
    ) -> PaymentResult:
        self.require_member(db, member_id, lock=True)

        ledger = LedgerRepository(db)
        debits = ledger.outstanding_debits(member_id, lock=True)
        total_outstanding = round_money(sum((outstanding(d) for d in debits), ZERO))

        if total_outstanding <= ZERO:
            balance = synchronize_balance(db, member_id)
            return PaymentResult(
                success=True,
                applied=ZERO,
                new_balance=balance,
                message="No outstanding credit to pay",
            )

        if full:
            amount = total_outstanding
        elif amount > total_outstanding:
            raise ValidationError(
                f"Payment of {amount} exceeds outstanding balance of {total_outstanding}"
            )

        now = utcnow()
        allocations = plan_allocation(amount, debits)
        applied = sum((a.amount for a in allocations), ZERO)
        if applied != amount:
            raise ConsistencyError(f"Allocated {applied} of a {amount} payment")

        payment_entry = ledger.add_entry(
            member_id=member_id,
            entry_type=PAYMENT,
            amount=amount,
            paid_amount=amount,
            status=PAID,
            timestamp=now,
            notes=f"Payment of {amount} received.",
        )

        schedules = ScheduleRepository(db)
        by_id = {d.entry_id: d for d in debits}
        for allocation in allocations:
            debit = by_id[allocation.entry_id]
            apply_to_row(debit, allocation.amount)
            debit.updated_at = now
            ledger.add_allocation(
                payment_entry_id=payment_entry.entry_id,
                credit_entry_id=debit.entry_id,
                allocated_amount=allocation.amount,
                payment_request_id=payment_request_id,
            )
            if debit.type == SPENT:
                self._apply_to_schedule(schedules, debit.entry_id, allocation.amount, now)

        new_balance = synchronize_balance(db, member_id)
        return PaymentResult(
            success=True,
            applied=applied,
            new_balance=new_balance,
            applied_payments=allocations,
            payment_entry_id=payment_entry.entry_id,
        )

    def _apply_to_schedule(
        self,
        schedules: ScheduleRepository,
        credit_entry_id: int,
        amount: Decimal,
        now: datetime,
    ) -> None:
        """Mirror a Spent allocation onto that entry's installments, earliest first"""
        for installment, portion in plan_schedule_allocation(amount, schedules.unpaid_for_entry(credit_entry_id)):
            new_paid = installment.paid_amount + portion
            installment.paid_amount = new_paid
            installment.status = PAID if new_paid == installment.amount else PENDING
            installment.updated_at = now

    def get_credit_payments(self, member_id: int) -> List[LedgerEntry]:
        validate_id(member_id)
        return self.uow.read(lambda db: LedgerRepository(db).payments(member_id))

    # Payment requests

    def create_payment_request(self, member_id: int, amount, notes: str | None = None) -> PaymentRequest:
        validate_id(member_id)
        amount = validate_amount(amount)

        def _create(db: Session) -> PaymentRequest:
            self.require_member(db, member_id)
            return PaymentRequestRepository(db).create(member_id, amount, notes)

        return self.uow.run(_create)

    def approve_payment_request(self, payment_request_id: int, request_id: str | None = None) -> PaymentResult:
        """
        Apply a pending request's amount, then mark the request approved.

        The payment and the status update commit separately. If the status
        update fails the payment is NOT rolled back: the result is flagged
        partial_success and the anomaly is logged for manual reconciliation.
        """
        validate_id(payment_request_id, "payment_request_id")

        def _apply(db: Session) -> PaymentResult:
            request = PaymentRequestRepository(db).get(payment_request_id, lock=True)
            if request is None:
                raise NotFoundError(f"Payment request {payment_request_id} not found")
            if request.status != REQUEST_PENDING:
                raise ValidationError(f"Payment request {payment_request_id} is already {request.status}")
            if LedgerRepository(db).allocations_for_request(payment_request_id):
                raise ConsistencyError(
                    f"Payment request {payment_request_id} was already applied but never approved; reconcile manually"
                )
            result = self._apply_payment(db, request.member_id, request.amount, False, payment_request_id)
            result.message = result.message or "Payment approved"
            return result

        result = self.uow.run(_apply)
        record_payment(result.applied)

        try:
            self._mark_request_approved(payment_request_id, result.payment_entry_id)
        except (PartialSuccessAnomaly, SQLAlchemyError, TransientStorageError) as e:
            partial_success_counter.inc()
            logger.error(
                f"CRITICAL: payment for request {payment_request_id} was applied but the request status "
                f"failed to update: {e}",
                extra={
                    "request_id": request_id,
                    "payment_request_id": payment_request_id,
                    "payment_entry_id": result.payment_entry_id,
                    "applied": result.applied,
                },
            )
            result.partial_success = True
            result.message = "Payment was processed, but the request status failed to update. Manual reconciliation required."

        return result

    def _mark_request_approved(self, payment_request_id: int, payment_entry_id: Optional[int]) -> None:
        def _mark(db: Session) -> None:
            updated = PaymentRequestRepository(db).mark_approved(payment_request_id, payment_entry_id)
            if updated != 1:
                raise PartialSuccessAnomaly(
                    f"Payment request {payment_request_id} was not pending when approving",
                    payment_entry_id=payment_entry_id,
                )

        self.uow.run(_mark)

    def reject_payment_request(self, payment_request_id: int, notes: str | None = None) -> PaymentRequest:
        validate_id(payment_request_id, "payment_request_id")

        def _reject(db: Session) -> PaymentRequest:
            repo = PaymentRequestRepository(db)
            request = repo.get(payment_request_id, lock=True)
            if request is None:
                raise NotFoundError(f"Payment request {payment_request_id} not found")
            if repo.reject(payment_request_id, notes) != 1:
                raise ValidationError(f"Payment request {payment_request_id} is already {request.status}")
            db.refresh(request)
            return request

        return self.uow.run(_reject)

    def get_allocations(self, payment_request_id: int) -> List[tuple[PaymentAllocation, LedgerEntry]]:
        validate_id(payment_request_id, "payment_request_id")

        def _read(db: Session):
            if PaymentRequestRepository(db).get(payment_request_id) is None:
                raise NotFoundError(f"Payment request {payment_request_id} not found")
            return LedgerRepository(db).allocations_for_request(payment_request_id)

        return self.uow.read(_read)

    # Interest

    def calculate_interest(self, member_id: int, as_of: datetime | None = None) -> Decimal:
        """One billing period of interest on Spent debt past the grace period"""
        validate_id(member_id)
        as_of = ensure_aware(as_of or utcnow())

        def _read(db: Session) -> Decimal:
            self.require_member(db, member_id)
            settings = SettingsRepository(db).get()
            if settings is None:
                return ZERO
            return self._interest_for(db, member_id, settings, as_of)

        return self.uow.read(_read)

    def _interest_for(self, db: Session, member_id: int, settings: CreditSettings, as_of: datetime) -> Decimal:
        entries = LedgerRepository(db).outstanding_spent(member_id)
        return compute_interest(entries, settings.interest_rate, settings.grace_period_days, as_of)

    def apply_interest(self, member_id: int, as_of: datetime | None = None) -> Decimal:
        """
        Post one Interest entry for the current billing period.

        No-op (returns 0) when an Interest entry was already posted within
        interest_period_days, so repeated triggers cannot stack charges.
        """
        validate_id(member_id)
        as_of = ensure_aware(as_of or utcnow())
        return self.uow.run(lambda db: self.apply_interest_in(db, member_id, as_of))

    def apply_interest_in(self, db: Session, member_id: int, as_of: datetime) -> Decimal:
        self.require_member(db, member_id, lock=True)
        ledger = LedgerRepository(db)

        latest = ledger.latest_interest(member_id)
        if latest is not None and days_between(latest.timestamp, as_of) < self.config.interest_period_days:
            logger.info(
                "Interest already posted this period",
                extra={"member_id": member_id, "last_interest_entry_id": latest.entry_id},
            )
            return ZERO

        settings = self.load_settings(db)
        interest = self._interest_for(db, member_id, settings, as_of)
        if interest <= ZERO:
            return ZERO

        sources = [
            str(e.entry_id)
            for e in ledger.outstanding_spent(member_id)
            if interest_eligible(e, settings.grace_period_days, as_of)
        ]
        ledger.add_entry(
            member_id=member_id,
            entry_type=INTEREST,
            amount=interest,
            timestamp=as_of,
            notes=f"Interest at {settings.interest_rate}% on credits {', '.join(sources)}",
        )
        synchronize_balance(db, member_id)
        surcharge_counter.labels(kind="interest").inc()
        return interest

    # Payment schedule

    def get_payment_schedule(self, member_id: int) -> List[PaymentScheduleEntry]:
        validate_id(member_id)

        def _read(db: Session) -> List[PaymentScheduleEntry]:
            self.require_member(db, member_id)
            return ScheduleRepository(db).for_member(member_id)

        return self.uow.read(_read)

    def get_unpaid_items(self, member_id: int) -> List[UnpaidItem]:
        validate_id(member_id)

        def _read(db: Session) -> List[UnpaidItem]:
            self.require_member(db, member_id)
            return [
                UnpaidItem(
                    schedule_id=s.schedule_id,
                    transaction_id=s.transaction_id,
                    installment_number=s.installment_number,
                    total_installments=s.total_installments,
                    amount=s.amount,
                    paid_amount=s.paid_amount,
                    unpaid_amount=outstanding(s),
                    due_date=ensure_aware(s.due_date),
                    status=s.status,
                )
                for s in ScheduleRepository(db).pending_for_member(member_id)
            ]

        return self.uow.read(_read)

    # Credit sales

    def record_credit_sale(
        self,
        member_id: int,
        amount,
        transaction_id: int | None = None,
        installments: int = 1,
        interval_days: int | None = None,
        posted_at: datetime | None = None,
        notes: str | None = None,
    ) -> LedgerEntry:
        """
        Post a Spent entry and its installment schedule for a completed credit sale.

        Rejects the sale when it exceeds the member's available credit, and
        when transaction_id names an unknown transaction, another member's
        transaction, or one that already has a Spent entry.
        """
        validate_id(member_id)
        amount = validate_amount(amount)
        if installments < 1:
            raise ValidationError("installments must be at least 1")
        posted_at = ensure_aware(posted_at or utcnow())

        def _post(db: Session) -> LedgerEntry:
            member = self.require_member(db, member_id, lock=True)
            settings = self.load_settings(db)
            if transaction_id is not None:
                self._check_sale_transaction(db, member_id, transaction_id)

            available = (member.credit_limit or ZERO) - running_balance(db, member_id)
            if amount > available:
                raise CreditLimitExceededError(
                    f"Sale of {amount} exceeds available credit of {available} for member {member_id}"
                )

            entry = LedgerRepository(db).add_entry(
                member_id=member_id,
                entry_type=SPENT,
                amount=amount,
                timestamp=posted_at,
                related_transaction_id=transaction_id,
                notes=notes or f"Credit purchase, transaction {transaction_id}",
            )

            interval = interval_days or settings.credit_due_days or 30
            plan = generate_installment_plan(
                amount,
                num_installments=installments,
                interval_days=interval,
                start_date=add_days(posted_at, interval),
            )
            ScheduleRepository(db).create_schedule(member_id, transaction_id, plan, credit_entry_id=entry.entry_id)

            synchronize_balance(db, member_id)
            return entry

        return self.uow.run(_post)

    def _check_sale_transaction(self, db: Session, member_id: int, transaction_id: int) -> None:
        validate_id(transaction_id, "transaction_id")
        transaction = db.get(Transaction, transaction_id)
        if transaction is None:
            raise ValidationError(f"Transaction {transaction_id} does not exist")
        if transaction.member_id != member_id:
            raise ValidationError(f"Transaction {transaction_id} does not belong to member {member_id}")
        existing = LedgerRepository(db).spent_for_transaction(transaction_id)
        if existing is not None:
            raise ConsistencyError(
                f"Transaction {transaction_id} is already posted as credit entry {existing.entry_id}"
            )

    def quote_markup(self, items: List[CartItem]) -> MarkupQuote:
        if not items:
            return MarkupQuote(subtotal=ZERO, total_markup=ZERO, grand_total=ZERO)

        def _quote(db: Session) -> MarkupQuote:
            settings = self.load_settings(db)
            ids = {item.product_id for item in items}
            products: Dict[int, Product] = {
                p.product_id: p for p in db.query(Product).filter(Product.product_id.in_(ids)).all()
            }
            return calculate_markup(items, products, settings.default_markup_percentage)

        return self.uow.run(_quote)

    # Helpers

    def require_member(self, db: Session, member_id: int, lock: bool = False):
        member = MemberRepository(db).get(member_id, lock=lock)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found")
        return member
