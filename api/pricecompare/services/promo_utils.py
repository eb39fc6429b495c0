"""Utilities for parsing prices and multi-buy deals out of result-table text."""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from pricecompare.services.domain import SaleTerms

_PRICE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)")

# "3 for $50", "3 for 50", "3for$50"
_FOR_PATTERN = re.compile(r"(\d+)\s*for\s*[$₪]?\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
# Hebrew listings: "3 ב-10", "3 ב 10 ₪", "2 יח' ב-15.90"
_HEBREW_PATTERN = re.compile(r"(\d+)\s*(?:יח'?|יחידות)?\s*ב\s*-?\s*[₪]?\s*(\d+(?:\.\d+)?)")


def parse_price(text: Optional[str]) -> Optional[Decimal]:
    """
    Extract a non-negative decimal price from a table cell.

    Examples:
        >>> parse_price("12.90")
        Decimal('12.90')
        >>> parse_price("₪ 1,299.00")
        Decimal('1299.00')
        >>> parse_price("n/a") is None
        True
    """
    if not text:
        return None

    # Remove thousands separators
    cleaned = text.replace(",", "").strip()
    match = _PRICE_PATTERN.search(cleaned)
    if not match:
        return None
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return None


def parse_multi_buy_deal(text: Optional[str]) -> Optional[SaleTerms]:
    """
    Parse a "N for X" promotion into per-unit sale terms.

    Args:
        text: Deal text (e.g., "3 for $10", "3 ב-10 ₪")

    Returns:
        SaleTerms with the bundle price spread over its units, or None when
        the text is not a multi-buy deal.

    Examples:
        >>> parse_multi_buy_deal("3 for $15")
        SaleTerms(sale_price=Decimal('5'), required_quantity=3)
        >>> parse_multi_buy_deal("On special") is None
        True
    """
    if not text:
        return None

    text = text.replace(",", "")
    match = _FOR_PATTERN.search(text) or _HEBREW_PATTERN.search(text)
    if not match:
        return None

    quantity = int(match.group(1))
    try:
        bundle_price = Decimal(match.group(2))
    except InvalidOperation:
        return None
    # "1 for 5" is just a price, not a bundle
    if quantity < 2 or bundle_price <= 0:
        return None

    return SaleTerms(sale_price=bundle_price / quantity, required_quantity=quantity)


__all__ = ["parse_price", "parse_multi_buy_deal"]
