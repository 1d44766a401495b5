"""Credit sales and markup quotes"""

from fastapi import APIRouter, Depends, status

from coop_credit.api.dependencies import get_credit_engine
from coop_credit.api.v1.schemas import CreditSaleRequest, LedgerEntrySchema, MarkupRequest, MarkupResponse
from coop_credit.domain.models import CartItem
from coop_credit.services.credit_engine import CreditEngine

router = APIRouter()


@router.post("/markup", response_model=MarkupResponse)
def calculate_markup(body: MarkupRequest, engine: CreditEngine = Depends(get_credit_engine)):
    """Credit markup a cart would carry if sold on credit"""
    items = [CartItem(product_id=i.product_id, quantity=i.quantity, price=i.price) for i in body.items]
    return MarkupResponse(**vars(engine.quote_markup(items)))


@router.post("/credit-sales", response_model=LedgerEntrySchema, status_code=status.HTTP_201_CREATED)
def record_credit_sale(body: CreditSaleRequest, engine: CreditEngine = Depends(get_credit_engine)):
    """
    Post a completed credit sale.

    Creates the Spent entry and its installment schedule; rejected with 422
    when the amount exceeds the member's available credit.
    """
    entry = engine.record_credit_sale(
        body.member_id,
        body.amount,
        transaction_id=body.transaction_id,
        installments=body.installments,
        interval_days=body.interval_days,
        notes=body.notes,
    )
    return LedgerEntrySchema.model_validate(entry)
