"""Installment schedule generation for credit sales"""

from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import List

from coop_credit.domain.models import Installment
from coop_credit.utils.date_utils import add_days, utcnow
from coop_credit.utils.money import CENT, to_money


def generate_installment_plan(
    amount: Decimal,
    num_installments: int = 1,
    interval_days: int = 30,
    start_date: datetime | None = None,
) -> List[Installment]:
    """
    Split a credit sale into equal installments.

    - Installments are interval_days apart, first one due at start_date
    - Last installment absorbs the rounding remainder so the total is exact

    Args:
        amount: Total sale amount
        num_installments: Number of installments (default 1)
        interval_days: Days between due dates (default 30)
        start_date: First due date (default: now + interval_days)

    Example:
        $100.00 / 3 → [$33.33, $33.33, $33.34]
    """
    amount = to_money(amount)
    if amount <= 0 or num_installments <= 0:
        return []

    if start_date is None:
        start_date = add_days(utcnow(), interval_days)

    base_amount = (amount / num_installments).quantize(CENT, rounding=ROUND_DOWN)
    remainder = amount - base_amount * num_installments

    installments = []
    for i in range(num_installments):
        due_date = add_days(start_date, i * interval_days)

        # Last installment absorbs remainder to ensure exact total
        inst_amount = base_amount + (remainder if i == num_installments - 1 else 0)

        installments.append(
            Installment(installment_number=i + 1, due_date=due_date, amount=inst_amount)
        )

    return installments
