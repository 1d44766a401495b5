"""Member-submitted payment requests and their admin approval"""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status

from coop_credit.api.dependencies import get_credit_engine, get_notification_client, get_request_id
from coop_credit.api.v1.schemas import (
    AllocationDetail,
    PaymentRequestCreate,
    PaymentRequestReject,
    PaymentRequestSchema,
    PaymentResponse,
)
from coop_credit.infrastructure.clients.notifications import NotificationClient
from coop_credit.services.credit_engine import CreditEngine
from coop_credit.utils.money import ZERO

router = APIRouter()


@router.post("/payment-requests", response_model=PaymentRequestSchema, status_code=status.HTTP_201_CREATED)
def create_payment_request(body: PaymentRequestCreate, engine: CreditEngine = Depends(get_credit_engine)):
    request = engine.create_payment_request(body.member_id, body.amount, body.notes)
    return PaymentRequestSchema.model_validate(request)


@router.post("/payment-requests/{payment_request_id}/approve", response_model=PaymentResponse)
def approve_payment_request(
    payment_request_id: int,
    background_tasks: BackgroundTasks,
    request: Request,
    response: Response,
    engine: CreditEngine = Depends(get_credit_engine),
    notifications: NotificationClient = Depends(get_notification_client),
):
    """
    Apply the requested amount and mark the request approved.

    Returns 207 when the payment committed but the request status could not
    be updated; the response message asks for manual reconciliation.
    """
    request_id = get_request_id(request)
    result = engine.approve_payment_request(payment_request_id, request_id=request_id)

    if result.partial_success:
        response.status_code = status.HTTP_207_MULTI_STATUS
        logging.warning(
            "Payment request approved with partial success",
            extra={"request_id": request_id, "payment_request_id": payment_request_id},
        )

    if result.applied > ZERO:
        background_tasks.add_task(
            notifications.notify,
            {
                "event": "PAYMENT_REQUEST_APPROVED",
                "payment_request_id": payment_request_id,
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


@router.post("/payment-requests/{payment_request_id}/reject", response_model=PaymentRequestSchema)
def reject_payment_request(
    payment_request_id: int,
    body: PaymentRequestReject,
    engine: CreditEngine = Depends(get_credit_engine),
):
    return PaymentRequestSchema.model_validate(engine.reject_payment_request(payment_request_id, body.notes))


@router.get("/payment-requests/{payment_request_id}/allocations", response_model=List[AllocationDetail])
def get_allocations(payment_request_id: int, engine: CreditEngine = Depends(get_credit_engine)):
    """Which debits an approved request paid down, and by how much"""
    return [
        AllocationDetail(
            allocation_id=allocation.allocation_id,
            payment_entry_id=allocation.payment_entry_id,
            credit_entry_id=allocation.credit_entry_id,
            allocated_amount=allocation.allocated_amount,
            credit_type=entry.type,
            credit_amount=entry.amount,
            credit_timestamp=entry.timestamp,
        )
        for allocation, entry in engine.get_allocations(payment_request_id)
    ]
