"""Daily penalty sweep across all members"""

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.engine import Engine

from coop_credit.domain.models import SweepReport
from coop_credit.infrastructure.database.repositories import MemberRepository
from coop_credit.infrastructure.observability.logging import log_sweep
from coop_credit.infrastructure.observability.metrics import sweep_duration_histogram
from coop_credit.services.balance import synchronize_balance
from coop_credit.services.credit_engine import CreditEngine
from coop_credit.services.penalty_processor import PenaltyProcessor
from coop_credit.utils.date_utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

# Arbitrary key shared by every process running the sweep
SWEEP_LOCK_KEY = 724_305_118

_local_sweep_lock = threading.Lock()


@contextmanager
def sweep_guard(db_engine: Engine) -> Iterator[bool]:
    """
    Yield True if this caller may run the sweep, False if another run holds it.

    PostgreSQL uses a session-level advisory lock so overlapping cron
    invocations on different hosts exclude each other. Other databases fall
    back to an in-process lock.
    """
    if db_engine.dialect.name != "postgresql":
        acquired = _local_sweep_lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                _local_sweep_lock.release()
        return

    with db_engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
        acquired = conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": SWEEP_LOCK_KEY}).scalar()
        try:
            yield bool(acquired)
        finally:
            if acquired:
                conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": SWEEP_LOCK_KEY})


class PenaltySweep:
    """
    Scheduled batch run.

    Order matters: the nearing-penalty scan reads state before any surcharge
    is posted, then product penalties run, then each member gets late fees
    (and optionally interest) plus a balance sync in one transaction.
    """

    def __init__(self, engine: CreditEngine, processor: PenaltyProcessor, db_engine: Engine):
        self.engine = engine
        self.processor = processor
        self.db_engine = db_engine
        self.config = engine.config

    def run(self, as_of: datetime | None = None) -> SweepReport:
        as_of = ensure_aware(as_of or utcnow())

        with sweep_guard(self.db_engine) as acquired:
            if not acquired:
                logger.warning("Penalty sweep already running, skipping")
                return SweepReport(skipped=True)

            start = time.time()
            report = self._run(as_of)
            duration = time.time() - start

        sweep_duration_histogram.observe(duration)
        log_sweep(report.succeeded, report.failed, len(report.events), duration * 1000)
        return report

    def _run(self, as_of: datetime) -> SweepReport:
        nearing = self.processor.get_members_nearing_penalty(self.config.nearing_penalty_days, as_of)
        report = self.processor.apply_product_credit_penalties(as_of)
        report.nearing_penalty = nearing

        member_ids = self.engine.uow.read(lambda db: MemberRepository(db).list_ids())
        for member_id in member_ids:
            try:
                events = self.engine.uow.run(lambda db: self._settle_member(db, member_id, as_of))
            except Exception as e:
                self.processor.record_member_failure(report, member_id, "late_fees", e)
                continue
            report.events.extend(events)

        report.succeeded = len(set(member_ids) - set(report.failed_member_ids))
        return report

    def _settle_member(self, db, member_id: int, as_of: datetime) -> list:
        events = self.processor.late_fees_in(db, member_id, as_of)
        if self.config.sweep_apply_interest:
            self.engine.apply_interest_in(db, member_id, as_of)
        synchronize_balance(db, member_id)
        return events
