"""Domain-specific exceptions"""


class CreditEngineError(Exception):
    """Base exception for the credit engine"""

    pass


class ValidationError(CreditEngineError):
    """Input rejected before any storage access (bad amount, bad ID)"""

    pass


class CreditLimitExceededError(ValidationError):
    """Credit sale would push the member past their credit limit"""

    pass


class NotFoundError(CreditEngineError):
    """Member, ledger entry or payment request does not exist"""

    pass


class ConsistencyError(CreditEngineError):
    """A ledger invariant would be (or already is) violated"""

    pass


class TransientStorageError(CreditEngineError):
    """Retry-safe storage failure; the transaction was rolled back"""

    pass


class PartialSuccessAnomaly(CreditEngineError):
    """Money movement committed but a follow-up bookkeeping step failed"""

    def __init__(self, message: str, payment_entry_id: int | None = None):
        super().__init__(message)
        self.payment_entry_id = payment_entry_id
