"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

# Ledger entry types
SPENT = "Spent"
PAYMENT = "Payment"
PENALTY = "Penalty"
INTEREST = "Interest"
DEBIT_TYPES = (SPENT, PENALTY, INTEREST)

# Ledger entry statuses
PENDING = "pending"
PARTIALLY_PAID = "partially_paid"
PAID = "paid"

# Penalty / markup policy types
FIXED = "fixed"
PERCENTAGE = "percentage"

# Payment request statuses
REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"


@dataclass
class Allocation:
    """Portion of a payment applied to one outstanding debit"""

    entry_id: int
    amount: Decimal
    related_transaction_id: Optional[int] = None


@dataclass
class PaymentResult:
    """Outcome of applying a payment"""

    success: bool
    applied: Decimal
    new_balance: Decimal
    applied_payments: List[Allocation] = field(default_factory=list)
    message: Optional[str] = None
    payment_entry_id: Optional[int] = None
    partial_success: bool = False


@dataclass
class PenaltyPolicy:
    """Effective overdue policy for one Spent entry"""

    due_days: Optional[int]
    penalty_type: Optional[str]  # "fixed" or "percentage"
    penalty_value: Decimal
    source: str  # "product" or "settings"

    @property
    def enforceable(self) -> bool:
        return (
            self.due_days is not None
            and self.penalty_type in (FIXED, PERCENTAGE)
            and self.penalty_value > 0
        )


@dataclass
class PenaltyEvent:
    """A surcharge posted by the processor, for collaborators to act on"""

    member_id: int
    penalty_entry_id: int
    amount: Decimal
    kind: str  # "product_penalty" | "late_fee" | "interest"
    source_entry_id: Optional[int] = None
    schedule_id: Optional[int] = None


@dataclass
class MemberNearingPenalty:
    """Member whose oldest unpenalized debt is about to fall due"""

    member_id: int
    member_name: str
    member_email: str
    credit_amount: Decimal
    due_date: datetime


@dataclass
class SweepReport:
    """Aggregate result of a batch run across members"""

    succeeded: int = 0
    failed: int = 0
    failed_member_ids: List[int] = field(default_factory=list)
    events: List[PenaltyEvent] = field(default_factory=list)
    nearing_penalty: List[MemberNearingPenalty] = field(default_factory=list)
    skipped: bool = False

    def record_failure(self, member_id: int) -> None:
        """Count a member once no matter how many phases failed for it"""
        if member_id not in self.failed_member_ids:
            self.failed += 1
            self.failed_member_ids.append(member_id)


@dataclass
class Installment:
    """Single payment in a repayment schedule"""

    installment_number: int
    due_date: datetime
    amount: Decimal


@dataclass
class CreditSummary:
    """Member credit position for display and limit checks"""

    member_id: int
    credit_balance: Decimal
    credit_limit: Decimal
    available_credit: Decimal
    utilization_percentage: Decimal


@dataclass
class CartItem:
    """Line item submitted for markup calculation"""

    product_id: int
    quantity: Decimal
    price: Decimal


@dataclass
class MarkupQuote:
    """Credit markup for a prospective credit sale"""

    subtotal: Decimal
    total_markup: Decimal
    grand_total: Decimal


@dataclass
class UnpaidItem:
    """Pending installment with what is still owed on it"""

    schedule_id: int
    transaction_id: Optional[int]
    installment_number: int
    total_installments: int
    amount: Decimal
    paid_amount: Decimal
    unpaid_amount: Decimal
    due_date: datetime
    status: str
