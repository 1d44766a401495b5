"""SQLAlchemy ORM models for the credit ledger"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from coop_credit.utils.date_utils import utcnow

Base = declarative_base()

# Fixed-point money column: never Float
Money = Numeric(12, 2, asdecimal=True)
Percent = Numeric(7, 2, asdecimal=True)


class Member(Base):
    """Cooperative member; the engine only writes credit_balance"""

    __tablename__ = "members"

    member_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    credit_limit = Column(Money, nullable=False, default=0)
    credit_balance = Column(Money, nullable=False, default=0)
    status = Column(String(50), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    entries = relationship("LedgerEntry", back_populates="member")


class Product(Base):
    """Catalog product with optional per-SKU credit policy overrides"""

    __tablename__ = "products"

    product_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=False, unique=True)
    price = Column(Money, nullable=False)
    credit_markup_type = Column(String(20), nullable=True)
    credit_markup_value = Column(Money, nullable=True)
    credit_due_days = Column(Integer, nullable=True)
    credit_penalty_type = Column(String(20), nullable=True)
    credit_penalty_value = Column(Money, nullable=True)


class CreditSettings(Base):
    """Singleton row of global credit defaults"""

    __tablename__ = "credit_settings"

    setting_id = Column(Integer, primary_key=True, autoincrement=True)
    default_markup_percentage = Column(Percent, nullable=False, default=0)
    interest_rate = Column(Percent, nullable=False, default=0)
    grace_period_days = Column(Integer, nullable=False, default=30)
    late_fee_amount = Column(Money, nullable=False, default=0)
    late_fee_percentage = Column(Percent, nullable=False, default=0)
    credit_due_days = Column(Integer, nullable=True, default=30)
    credit_penalty_type = Column(String(20), nullable=True)
    credit_penalty_value = Column(Money, nullable=True, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Transaction(Base):
    """Completed sale, owned by the sale subsystem"""

    __tablename__ = "transactions"

    transaction_id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.member_id"), nullable=True, index=True)
    total_amount = Column(Money, nullable=False)
    payment_method = Column(String(50), nullable=True)
    credit_markup_amount = Column(Money, nullable=False, default=0)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    items = relationship("TransactionItem", back_populates="transaction", cascade="all, delete-orphan")


class TransactionItem(Base):
    """Line item of a sale"""

    __tablename__ = "transaction_items"

    transaction_item_id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(Integer, ForeignKey("transactions.transaction_id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Numeric(10, 2), nullable=False)
    price_at_time_of_sale = Column(Money, nullable=False)

    transaction = relationship("Transaction", back_populates="items")
    product = relationship("Product")


class LedgerEntry(Base):
    """One Credit ledger row: Spent, Payment, Penalty or Interest"""

    __tablename__ = "credits"
    __table_args__ = (
        CheckConstraint("paid_amount >= 0", name="ck_credits_paid_non_negative"),
        CheckConstraint("paid_amount <= amount", name="ck_credits_paid_within_amount"),
        # At most one product penalty per Spent entry
        Index(
            "uq_credits_product_penalty",
            "source_entry_id",
            unique=True,
            sqlite_where=text("type = 'Penalty' AND schedule_id IS NULL"),
            postgresql_where=text("type = 'Penalty' AND schedule_id IS NULL"),
        ),
        # At most one late fee per installment
        Index(
            "uq_credits_late_fee",
            "schedule_id",
            unique=True,
            sqlite_where=text("schedule_id IS NOT NULL"),
            postgresql_where=text("schedule_id IS NOT NULL"),
        ),
        Index("ix_credits_member_status", "member_id", "status"),
    )

    entry_id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.member_id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    amount = Column(Money, nullable=False)
    paid_amount = Column(Money, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending")
    related_transaction_id = Column(Integer, ForeignKey("transactions.transaction_id"), nullable=True)
    source_entry_id = Column(Integer, ForeignKey("credits.entry_id"), nullable=True)
    schedule_id = Column(Integer, ForeignKey("payment_schedule.schedule_id"), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_penalty_applied = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    member = relationship("Member", back_populates="entries")
    transaction = relationship("Transaction")


class PaymentScheduleEntry(Base):
    """Installment of a credit sale"""

    __tablename__ = "payment_schedule"
    __table_args__ = (
        CheckConstraint("paid_amount >= 0", name="ck_schedule_paid_non_negative"),
        CheckConstraint("paid_amount <= amount", name="ck_schedule_paid_within_amount"),
    )

    schedule_id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.member_id"), nullable=False, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.transaction_id"), nullable=True, index=True)
    # Spent entry the installment belongs to; credits.schedule_id points the other way for late fees
    credit_entry_id = Column(
        Integer,
        ForeignKey("credits.entry_id", use_alter=True, name="fk_payment_schedule_credit_entry"),
        nullable=True,
        index=True,
    )
    installment_number = Column(Integer, nullable=False, default=1)
    total_installments = Column(Integer, nullable=False, default=1)
    amount = Column(Money, nullable=False)
    paid_amount = Column(Money, nullable=False, default=0)
    due_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    late_fee_applied = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class PaymentRequest(Base):
    """Member-submitted payment awaiting admin approval"""

    __tablename__ = "payment_requests"

    payment_request_id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.member_id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    payment_entry_id = Column(Integer, ForeignKey("credits.entry_id"), nullable=True)
    notes = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class PaymentAllocation(Base):
    """How much of one Payment entry went to one debit"""

    __tablename__ = "payment_allocations"

    allocation_id = Column(Integer, primary_key=True, autoincrement=True)
    payment_entry_id = Column(Integer, ForeignKey("credits.entry_id"), nullable=False, index=True)
    payment_request_id = Column(Integer, ForeignKey("payment_requests.payment_request_id"), nullable=True, index=True)
    credit_entry_id = Column(Integer, ForeignKey("credits.entry_id"), nullable=False)
    allocated_amount = Column(Money, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
