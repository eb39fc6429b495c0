from __future__ import annotations

from typing import Iterable, Optional

from pricecompare.services.domain import AggregatedStore

DEFAULT_LIMIT = 5


def rank_stores(stores: Iterable[AggregatedStore], limit: Optional[int] = DEFAULT_LIMIT) -> list[AggregatedStore]:
    """Cheapest stores first, truncated to ``limit`` (None keeps them all).

    ``sorted`` is stable, so stores with equal totals keep insertion order.
    """
    ranked = sorted(stores, key=lambda s: s.total_price)
    if limit is not None:
        ranked = ranked[:limit]
    return ranked


__all__ = ["rank_stores", "DEFAULT_LIMIT"]
