"""Overdue penalties, late fees and the nearing-penalty scan"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from coop_credit.domain.allocation import outstanding
from coop_credit.domain.exceptions import ConsistencyError, NotFoundError, ValidationError
from coop_credit.domain.models import (
    MemberNearingPenalty,
    PENALTY,
    PenaltyEvent,
    SPENT,
    SweepReport,
)
from coop_credit.domain.penalties import (
    compute_late_fee,
    compute_penalty,
    is_overdue,
    penalty_due_date,
    resolve_penalty_policy,
)
from coop_credit.infrastructure.database.models import CreditSettings, LedgerEntry
from coop_credit.infrastructure.database.repositories import (
    LedgerRepository,
    MemberRepository,
    ScheduleRepository,
    SettingsRepository,
)
from coop_credit.infrastructure.observability.metrics import (
    consistency_error_counter,
    surcharge_counter,
    sweep_member_failures_counter,
)
from coop_credit.services.balance import running_balance, synchronize_balance
from coop_credit.services.credit_engine import CreditEngine, settings_defaults, validate_id
from coop_credit.utils.date_utils import ensure_aware, utcnow
from coop_credit.utils.money import ZERO

logger = logging.getLogger(__name__)


class PenaltyProcessor:
    """
    Applies one-time surcharges to overdue debt.

    Every surcharge is posted in the same transaction that sets its applied
    flag (is_penalty_applied on the Spent entry, late_fee_applied on the
    installment), so a crashed sweep can be re-run safely.
    """

    def __init__(self, engine: CreditEngine):
        self.engine = engine
        self.uow = engine.uow

    # Per-product penalties

    def apply_product_credit_penalties(self, as_of: datetime | None = None) -> SweepReport:
        """
        Penalize every overdue, unflagged Spent entry, one member per transaction.

        A failing member is logged and counted; the rest are still processed.
        """
        as_of = ensure_aware(as_of or utcnow())
        member_ids = self.uow.read(
            lambda db: sorted({e.member_id for e in LedgerRepository(db).unpenalized_spent()})
        )

        report = SweepReport()
        for member_id in member_ids:
            try:
                events = self.uow.run(lambda db: self._penalize_member(db, member_id, as_of))
            except Exception as e:
                self.record_member_failure(report, member_id, "product_penalty", e)
                continue
            report.succeeded += 1
            report.events.extend(events)

        return report

    def _penalize_member(self, db: Session, member_id: int, as_of: datetime) -> List[PenaltyEvent]:
        self.engine.require_member(db, member_id, lock=True)
        settings = self.engine.load_settings(db)
        ledger = LedgerRepository(db)

        events = []
        for entry in ledger.unpenalized_spent(member_id):
            event = self._penalize_entry(ledger, entry, settings, as_of, force=False)
            if event is not None:
                events.append(event)

        if events:
            synchronize_balance(db, member_id)
        return events

    def _penalize_entry(
        self,
        ledger: LedgerRepository,
        entry: LedgerEntry,
        settings: CreditSettings,
        as_of: datetime,
        force: bool,
    ) -> Optional[PenaltyEvent]:
        if entry.is_penalty_applied:
            return None

        unpaid = outstanding(entry)
        if unpaid <= ZERO:
            return None

        policy = resolve_penalty_policy(ledger.products_for_entry(entry), settings)
        if not policy.enforceable:
            return None
        if not force and not is_overdue(entry.timestamp, policy.due_days, as_of):
            return None

        if ledger.product_penalty_for(entry.entry_id) is not None:
            consistency_error_counter.inc()
            raise ConsistencyError(
                f"Credit {entry.entry_id} already has a penalty entry but is not flagged as penalized"
            )

        amount = compute_penalty(unpaid, policy)
        if amount <= ZERO:
            return None

        penalty = ledger.add_entry(
            member_id=entry.member_id,
            entry_type=PENALTY,
            amount=amount,
            timestamp=as_of,
            source_entry_id=entry.entry_id,
            notes=f"Product credit penalty for credit {entry.entry_id} ({policy.penalty_type} {policy.penalty_value}, {policy.source})",
        )
        entry.is_penalty_applied = True
        entry.updated_at = as_of

        surcharge_counter.labels(kind="product_penalty").inc()
        logger.info(
            "Penalty applied",
            extra={
                "member_id": entry.member_id,
                "credit_entry_id": entry.entry_id,
                "penalty_entry_id": penalty.entry_id,
                "amount": amount,
            },
        )
        return PenaltyEvent(
            member_id=entry.member_id,
            penalty_entry_id=penalty.entry_id,
            amount=amount,
            kind="product_penalty",
            source_entry_id=entry.entry_id,
        )

    def apply_penalty_to_credit(
        self,
        entry_id: int,
        as_of: datetime | None = None,
        force: bool = False,
    ) -> Optional[PenaltyEvent]:
        """
        Evaluate a single Spent entry.

        force skips the due-date check but never the applied flag.
        Returns None when no penalty was due.
        """
        validate_id(entry_id, "entry_id")
        as_of = ensure_aware(as_of or utcnow())

        def _apply(db: Session) -> Optional[PenaltyEvent]:
            ledger = LedgerRepository(db)
            entry = ledger.get(entry_id)
            if entry is None:
                raise NotFoundError(f"Credit {entry_id} not found")
            if entry.type != SPENT:
                raise ValidationError(f"Credit {entry_id} is a {entry.type} entry, not a purchase")

            # Member lock first, same order as payments
            self.engine.require_member(db, entry.member_id, lock=True)
            db.refresh(entry, with_for_update=True)

            event = self._penalize_entry(ledger, entry, self.engine.load_settings(db), as_of, force)
            if event is not None:
                synchronize_balance(db, entry.member_id)
            return event

        return self.uow.run(_apply)

    # Late fees

    def process_late_fees(self, member_id: int, as_of: datetime | None = None) -> Decimal:
        """Charge one late fee per overdue installment; returns the total posted"""
        validate_id(member_id)
        as_of = ensure_aware(as_of or utcnow())
        events = self.uow.run(lambda db: self.late_fees_in(db, member_id, as_of))
        return sum((e.amount for e in events), ZERO)

    def late_fees_in(self, db: Session, member_id: int, as_of: datetime) -> List[PenaltyEvent]:
        self.engine.require_member(db, member_id, lock=True)
        settings = self.engine.load_settings(db)
        ledger = LedgerRepository(db)

        events = []
        for installment in ScheduleRepository(db).pending_for_member(member_id):
            if installment.late_fee_applied or ensure_aware(installment.due_date) >= as_of:
                continue

            unpaid = outstanding(installment)
            if unpaid <= ZERO:
                continue

            fee = compute_late_fee(unpaid, settings.late_fee_amount, settings.late_fee_percentage)
            if fee <= ZERO:
                continue

            if ledger.late_fee_for(installment.schedule_id) is not None:
                consistency_error_counter.inc()
                raise ConsistencyError(
                    f"Installment {installment.schedule_id} already has a late fee but is not flagged"
                )

            fee_entry = ledger.add_entry(
                member_id=member_id,
                entry_type=PENALTY,
                amount=fee,
                timestamp=as_of,
                schedule_id=installment.schedule_id,
                notes=f"Late fee for overdue installment {installment.schedule_id}",
            )
            installment.late_fee_applied = True
            installment.updated_at = as_of

            surcharge_counter.labels(kind="late_fee").inc()
            events.append(
                PenaltyEvent(
                    member_id=member_id,
                    penalty_entry_id=fee_entry.entry_id,
                    amount=fee,
                    kind="late_fee",
                    schedule_id=installment.schedule_id,
                )
            )

        synchronize_balance(db, member_id)
        return events

    # Read-only scan

    def get_members_nearing_penalty(
        self,
        days_threshold: int,
        as_of: datetime | None = None,
    ) -> List[MemberNearingPenalty]:
        """
        Members whose earliest unpenalized debt falls due within days_threshold days.

        Entries already past due are excluded: they belong to the penalty sweep.
        """
        if days_threshold < 0:
            raise ValidationError("days_threshold cannot be negative")
        as_of = ensure_aware(as_of or utcnow())
        horizon = as_of + timedelta(days=days_threshold)

        def _scan(db: Session) -> List[MemberNearingPenalty]:
            settings = SettingsRepository(db).get() or CreditSettings(**settings_defaults(self.engine.config))
            ledger = LedgerRepository(db)

            earliest: Dict[int, datetime] = {}
            for entry in ledger.unpenalized_spent():
                policy = resolve_penalty_policy(ledger.products_for_entry(entry), settings)
                if not policy.enforceable:
                    continue
                due = penalty_due_date(entry.timestamp, policy.due_days)
                if as_of < due <= horizon and (entry.member_id not in earliest or due < earliest[entry.member_id]):
                    earliest[entry.member_id] = due

            nearing = [
                MemberNearingPenalty(
                    member_id=member.member_id,
                    member_name=member.name,
                    member_email=member.email,
                    credit_amount=running_balance(db, member.member_id),
                    due_date=earliest[member.member_id],
                )
                for member in MemberRepository(db).get_many(list(earliest))
            ]
            return sorted(nearing, key=lambda m: (m.due_date, m.member_id))

        return self.uow.read(_scan)

    def record_member_failure(self, report: SweepReport, member_id: int, phase: str, error: Exception) -> None:
        report.record_failure(member_id)
        sweep_member_failures_counter.inc()
        logger.error(
            f"Sweep failed for member {member_id}: {error}",
            extra={"member_id": member_id, "phase": phase, "error_type": type(error).__name__},
        )
