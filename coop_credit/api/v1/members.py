"""Member credit endpoints: balances, schedule, payments, interest and late fees"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request

from coop_credit.api.dependencies import (
    get_credit_engine,
    get_notification_client,
    get_penalty_processor,
    get_request_id,
)
from coop_credit.api.v1.schemas import (
    BalanceResponse,
    CreditSummaryResponse,
    InstallmentSchema,
    InterestResponse,
    LateFeeResponse,
    LedgerEntrySchema,
    NearingPenaltySchema,
    PaymentBody,
    PaymentResponse,
    UnpaidItemSchema,
)
from coop_credit.infrastructure.clients.notifications import NotificationClient
from coop_credit.services.credit_engine import CreditEngine
from coop_credit.services.penalty_processor import PenaltyProcessor
from coop_credit.utils.money import ZERO

router = APIRouter()


@router.get("/members/nearing-penalty", response_model=List[NearingPenaltySchema])
def members_nearing_penalty(
    days: int = Query(5, ge=0, le=365, description="Look-ahead window in days"),
    processor: PenaltyProcessor = Depends(get_penalty_processor),
):
    """Members whose oldest unpenalized purchase falls due within the window"""
    return [NearingPenaltySchema(**vars(m)) for m in processor.get_members_nearing_penalty(days)]


@router.get("/members/{member_id}/balance", response_model=BalanceResponse)
def get_balance(member_id: int, engine: CreditEngine = Depends(get_credit_engine)):
    """Running balance computed from the ledger (never the cached column)"""
    return BalanceResponse(member_id=member_id, credit_balance=engine.get_running_balance(member_id))


@router.post("/members/{member_id}/balance/sync", response_model=BalanceResponse)
def sync_balance(member_id: int, engine: CreditEngine = Depends(get_credit_engine)):
    return BalanceResponse(member_id=member_id, credit_balance=engine.synchronize_credit_balance(member_id))


@router.get("/members/{member_id}/credit-summary", response_model=CreditSummaryResponse)
def get_credit_summary(member_id: int, engine: CreditEngine = Depends(get_credit_engine)):
    return CreditSummaryResponse(**vars(engine.get_credit_summary(member_id)))


@router.get("/members/{member_id}/schedule", response_model=List[InstallmentSchema])
def get_schedule(member_id: int, engine: CreditEngine = Depends(get_credit_engine)):
    """Every installment for the member, latest due date first"""
    return [InstallmentSchema.model_validate(row) for row in engine.get_payment_schedule(member_id)]


@router.get("/members/{member_id}/unpaid-items", response_model=List[UnpaidItemSchema])
def get_unpaid_items(member_id: int, engine: CreditEngine = Depends(get_credit_engine)):
    return [UnpaidItemSchema(**vars(item)) for item in engine.get_unpaid_items(member_id)]


@router.get("/members/{member_id}/payments", response_model=List[LedgerEntrySchema])
def get_payments(member_id: int, engine: CreditEngine = Depends(get_credit_engine)):
    return [LedgerEntrySchema.model_validate(entry) for entry in engine.get_credit_payments(member_id)]


@router.post("/members/{member_id}/payments", response_model=PaymentResponse)
def apply_payment(
    member_id: int,
    body: PaymentBody,
    background_tasks: BackgroundTasks,
    request: Request,
    engine: CreditEngine = Depends(get_credit_engine),
    notifications: NotificationClient = Depends(get_notification_client),
):
    """
    Apply a payment against the member's debt, oldest debit first.

    Flow:
    1. Validate and allocate FIFO inside one transaction
    2. Commit, then notify the member asynchronously
    """
    result = engine.apply_payment(
        member_id,
        amount=body.amount,
        full=body.full,
        request_id=get_request_id(request),
    )

    if result.applied > ZERO:
        background_tasks.add_task(
            notifications.notify,
            {
                "event": "PAYMENT_APPLIED",
                "member_id": member_id,
                "payment_entry_id": result.payment_entry_id,
                "amount": str(result.applied),
                "new_balance": str(result.new_balance),
            },
        )

    return PaymentResponse(
        success=result.success,
        applied=result.applied,
        new_balance=result.new_balance,
        applied_payments=[vars(a) for a in result.applied_payments],
        message=result.message,
        payment_entry_id=result.payment_entry_id,
        partial_success=result.partial_success,
    )


@router.get("/members/{member_id}/interest", response_model=InterestResponse)
def calculate_interest(
    member_id: int,
    as_of: Optional[datetime] = Query(None, description="Evaluation time, defaults to now"),
    engine: CreditEngine = Depends(get_credit_engine),
):
    """Preview one billing period of interest; nothing is posted"""
    return InterestResponse(member_id=member_id, interest=engine.calculate_interest(member_id, as_of), applied=False)


@router.post("/members/{member_id}/interest", response_model=InterestResponse)
def apply_interest(member_id: int, engine: CreditEngine = Depends(get_credit_engine)):
    interest = engine.apply_interest(member_id)
    return InterestResponse(member_id=member_id, interest=interest, applied=interest > ZERO)


@router.post("/members/{member_id}/late-fees", response_model=LateFeeResponse)
def process_late_fees(member_id: int, processor: PenaltyProcessor = Depends(get_penalty_processor)):
    return LateFeeResponse(member_id=member_id, total_late_fees=processor.process_late_fees(member_id))
