"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PaymentBody(BaseModel):
    """Request body for POST /v1/members/{member_id}/payments"""

    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2, description="Amount to apply")
    full: bool = Field(False, description="Pay off the whole outstanding balance")

    @model_validator(mode="after")
    def amount_or_full(self) -> "PaymentBody":
        if not self.full and self.amount is None:
            raise ValueError("amount is required unless full is true")
        return self


class AllocationSchema(BaseModel):
    """Portion of a payment applied to one debit"""

    entry_id: int
    amount: Decimal
    related_transaction_id: Optional[int] = None


class PaymentResponse(BaseModel):
    """Outcome of a payment or an approved payment request"""

    success: bool
    applied: Decimal
    new_balance: Decimal
    applied_payments: List[AllocationSchema]
    message: Optional[str] = None
    payment_entry_id: Optional[int] = None
    partial_success: bool = False


class BalanceResponse(BaseModel):
    member_id: int
    credit_balance: Decimal


class CreditSummaryResponse(BaseModel):
    member_id: int
    credit_balance: Decimal
    credit_limit: Decimal
    available_credit: Decimal
    utilization_percentage: Decimal


class InstallmentSchema(BaseModel):
    """Single installment in a member's payment schedule"""

    model_config = ConfigDict(from_attributes=True)

    schedule_id: int
    transaction_id: Optional[int] = None
    credit_entry_id: Optional[int] = None
    installment_number: int
    total_installments: int
    amount: Decimal
    paid_amount: Decimal
    due_date: datetime
    status: str
    late_fee_applied: bool


class UnpaidItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    schedule_id: int
    transaction_id: Optional[int] = None
    installment_number: int
    total_installments: int
    amount: Decimal
    paid_amount: Decimal
    unpaid_amount: Decimal
    due_date: datetime
    status: str


class LedgerEntrySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: int
    member_id: int
    type: str
    amount: Decimal
    paid_amount: Decimal
    status: str
    related_transaction_id: Optional[int] = None
    timestamp: datetime
    notes: Optional[str] = None


class InterestResponse(BaseModel):
    member_id: int
    interest: Decimal
    applied: bool


class LateFeeResponse(BaseModel):
    member_id: int
    total_late_fees: Decimal


class PaymentRequestCreate(BaseModel):
    """Request body for POST /v1/payment-requests"""

    member_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    notes: Optional[str] = Field(None, max_length=500)


class PaymentRequestReject(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)


class PaymentRequestSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_request_id: int
    member_id: int
    amount: Decimal
    status: str
    payment_entry_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime
    approved_at: Optional[datetime] = None


class AllocationDetail(BaseModel):
    """Allocation row joined with the debit it paid down"""

    allocation_id: int
    payment_entry_id: int
    credit_entry_id: int
    allocated_amount: Decimal
    credit_type: str
    credit_amount: Decimal
    credit_timestamp: datetime


class CreditSettingsSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    interest_rate: Decimal
    grace_period_days: int
    late_fee_amount: Decimal
    late_fee_percentage: Decimal
    default_markup_percentage: Decimal
    credit_due_days: Optional[int] = None
    credit_penalty_type: Optional[str] = None
    credit_penalty_value: Optional[Decimal] = None


class CreditSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their current value"""

    interest_rate: Optional[Decimal] = Field(None, ge=0)
    grace_period_days: Optional[int] = Field(None, ge=0)
    late_fee_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    late_fee_percentage: Optional[Decimal] = Field(None, ge=0)
    default_markup_percentage: Optional[Decimal] = Field(None, ge=0)
    credit_due_days: Optional[int] = Field(None, ge=0)
    credit_penalty_type: Optional[Literal["fixed", "percentage"]] = None
    credit_penalty_value: Optional[Decimal] = Field(None, ge=0)


class MarkupItem(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: Decimal = Field(..., gt=0)
    price: Decimal = Field(..., ge=0)


class MarkupRequest(BaseModel):
    """Request body for POST /v1/markup"""

    items: List[MarkupItem]


class MarkupResponse(BaseModel):
    subtotal: Decimal
    total_markup: Decimal
    grand_total: Decimal


class CreditSaleRequest(BaseModel):
    """Request body for POST /v1/credit-sales"""

    member_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    transaction_id: Optional[int] = Field(None, gt=0)
    installments: int = Field(1, ge=1, le=24)
    interval_days: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = Field(None, max_length=500)


class NearingPenaltySchema(BaseModel):
    member_id: int
    member_name: str
    member_email: str
    credit_amount: Decimal
    due_date: datetime


class PenaltyEventSchema(BaseModel):
    member_id: int
    penalty_entry_id: int
    amount: Decimal
    kind: str
    source_entry_id: Optional[int] = None
    schedule_id: Optional[int] = None


class SweepResponse(BaseModel):
    """Response for POST /v1/cron/penalty-sweep"""

    skipped: bool
    succeeded: int
    failed: int
    failed_member_ids: List[int]
    events: List[PenaltyEventSchema]
    nearing_penalty: List[NearingPenaltySchema]


class PenaltyTriggerRequest(BaseModel):
    force: bool = Field(False, description="Skip the due-date check; never re-applies a penalty")


class PenaltyTriggerResponse(BaseModel):
    entry_id: int
    applied: bool
    penalty: Optional[PenaltyEventSchema] = None
