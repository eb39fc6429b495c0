from __future__ import annotations

import logging
from typing import Iterable

from pricecompare.services.domain import ProductQuery, RawMatch
from pricecompare.services.price_source import PriceSource

logger = logging.getLogger(__name__)


def filter_by_city(matches: Iterable[RawMatch], city: str) -> list[RawMatch]:
    """Keep rows whose address mentions the requested city (case-insensitive)."""
    needle = (city or "").strip().lower()
    return [m for m in matches if m.address and needle in m.address.lower()]


class ProductResolver:
    """Resolves one cart line to the raw store rows offered for it in a city."""

    def __init__(self, source: PriceSource) -> None:
        self.source = source

    async def resolve(self, city: str, query: ProductQuery) -> list[RawMatch]:
        matches: list[RawMatch] = []
        if query.barcode:
            matches = await self.source.search(city, query.barcode)

        # Name results are only a fallback for a fruitless barcode search
        if not matches and query.name:
            logger.debug(f"No rows for barcode '{query.barcode}', searching by name '{query.name}'")
            matches = await self.source.search(city, query.name)

        filtered = filter_by_city(matches, city)
        if len(filtered) != len(matches):
            logger.debug(
                f"City filter dropped {len(matches) - len(filtered)} of {len(matches)} rows "
                f"for '{query.identifier}'"
            )
        return filtered


__all__ = ["ProductResolver", "filter_by_city"]
