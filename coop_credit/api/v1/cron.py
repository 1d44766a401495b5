"""Scheduled penalty sweep and single-credit penalty trigger (cron secret required)"""

from dataclasses import asdict

from fastapi import APIRouter, BackgroundTasks, Depends

from coop_credit.api.dependencies import (
    get_notification_client,
    get_penalty_processor,
    get_penalty_sweep,
    verify_cron_secret,
)
from coop_credit.api.v1.schemas import (
    PenaltyEventSchema,
    PenaltyTriggerRequest,
    PenaltyTriggerResponse,
    SweepResponse,
)
from coop_credit.infrastructure.clients.notifications import NotificationClient
from coop_credit.services.penalty_processor import PenaltyProcessor
from coop_credit.services.sweep import PenaltySweep

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.post("/cron/penalty-sweep", response_model=SweepResponse)
def run_penalty_sweep(
    background_tasks: BackgroundTasks,
    sweep: PenaltySweep = Depends(get_penalty_sweep),
    notifications: NotificationClient = Depends(get_notification_client),
):
    """
    Daily batch: warn members nearing a penalty, then post overdue surcharges.

    Per-member failures are reported, not raised; a concurrent run returns
    skipped=true without touching the ledger.
    """
    report = sweep.run()

    for member in report.nearing_penalty:
        background_tasks.add_task(
            notifications.notify,
            {
                "event": "CREDIT_NEARING_PENALTY",
                "member_id": member.member_id,
                "member_email": member.member_email,
                "credit_amount": str(member.credit_amount),
                "due_date": member.due_date.isoformat(),
            },
        )
    for event in report.events:
        background_tasks.add_task(
            notifications.notify,
            {
                "event": "PENALTY_APPLIED" if event.kind == "product_penalty" else "LATE_FEE_APPLIED",
                "member_id": event.member_id,
                "penalty_entry_id": event.penalty_entry_id,
                "amount": str(event.amount),
            },
        )

    return SweepResponse(
        skipped=report.skipped,
        succeeded=report.succeeded,
        failed=report.failed,
        failed_member_ids=report.failed_member_ids,
        events=[asdict(e) for e in report.events],
        nearing_penalty=[asdict(m) for m in report.nearing_penalty],
    )


@router.post("/credits/{entry_id}/penalty", response_model=PenaltyTriggerResponse)
def trigger_credit_penalty(
    entry_id: int,
    body: PenaltyTriggerRequest,
    processor: PenaltyProcessor = Depends(get_penalty_processor),
):
    """Evaluate one purchase now; force skips the due date but never re-applies"""
    event = processor.apply_penalty_to_credit(entry_id, force=body.force)
    return PenaltyTriggerResponse(
        entry_id=entry_id,
        applied=event is not None,
        penalty=PenaltyEventSchema(**asdict(event)) if event is not None else None,
    )
