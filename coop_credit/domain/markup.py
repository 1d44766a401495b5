"""Credit markup for prospective credit sales"""

from decimal import Decimal
from typing import Dict, List

from coop_credit.domain.exceptions import ValidationError
from coop_credit.domain.models import CartItem, FIXED, MarkupQuote, PERCENTAGE
from coop_credit.utils.money import ZERO, percent_of, round_money, to_money


def calculate_markup(
    items: List[CartItem],
    products: Dict[int, object],
    default_markup_percentage: Decimal,
) -> MarkupQuote:
    """
    Price a cart sold on credit.

    Per item the product's credit_markup_type/value applies (percentage of
    the line subtotal, or fixed per unit); otherwise the settings default
    percentage.
    """
    subtotal = ZERO
    total_markup = ZERO

    for item in items:
        product = products.get(item.product_id)
        if product is None:
            raise ValidationError(f"Unknown product {item.product_id}")

        line_subtotal = to_money(item.price) * to_money(item.quantity)
        subtotal += line_subtotal

        markup_value = product.credit_markup_value
        if product.credit_markup_type == PERCENTAGE and markup_value:
            line_markup = percent_of(line_subtotal, markup_value)
        elif product.credit_markup_type == FIXED and markup_value:
            line_markup = round_money(to_money(markup_value) * to_money(item.quantity))
        else:
            line_markup = percent_of(line_subtotal, default_markup_percentage or ZERO)

        total_markup += line_markup

    subtotal = round_money(subtotal)
    return MarkupQuote(
        subtotal=subtotal,
        total_markup=total_markup,
        grand_total=subtotal + total_markup,
    )
