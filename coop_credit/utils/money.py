"""Fixed-point money helpers. Every monetary value in the engine is a Decimal."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce int/str/Decimal to a Decimal. Floats are converted via str to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e


def round_money(value: Decimal) -> Decimal:
    """Round half-up to cents. The only rounding rule used for money."""
    return to_money(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """percentage% of amount, rounded to cents"""
    return round_money(to_money(amount) * to_money(percentage) / Decimal(100))
