from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

Number = Union[Decimal, int, float, str]

_CENT = Decimal("0.01")


def to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 4.5 from turning into 4.4999999...
    return Decimal(str(value))


def calculate_line_total(
    quantity: int,
    regular_price: Optional[Number],
    sale_price: Optional[Number] = None,
    sale_required_quantity: Optional[int] = None,
) -> Decimal:
    """Total for one cart line under an optional "buy N for price" deal.

    Units that fill complete bundles are charged at ``sale_price`` each;
    the remainder is charged at ``regular_price``. No rounding happens here.

    Examples:
        >>> calculate_line_total(5, 10)
        Decimal('50')
        >>> calculate_line_total(7, 10, 15, 3)
        Decimal('100')
    """
    regular = to_decimal(regular_price)
    if not sale_price or not sale_required_quantity or quantity < sale_required_quantity:
        return regular * quantity

    sale = to_decimal(sale_price)
    tiers = quantity // sale_required_quantity
    sale_units = tiers * sale_required_quantity
    remainder = quantity - sale_units
    return tiers * sale * sale_required_quantity + remainder * regular


def format_price(value: Number) -> str:
    """Render a price with two decimals, e.g. ``Decimal('15') -> '15.00'``."""
    return str(to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP))


__all__ = ["calculate_line_total", "format_price", "to_decimal"]
