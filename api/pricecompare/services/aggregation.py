from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from pricecompare.services.domain import AggregatedStore, ProductQuery, RawMatch
from pricecompare.services.errors import PriceSourceError
from pricecompare.services.pricing import calculate_line_total
from pricecompare.services.resolver import ProductResolver

logger = logging.getLogger(__name__)


def add_line(
    stores: dict[str, AggregatedStore],
    query: ProductQuery,
    matches: Sequence[RawMatch],
) -> None:
    """Fold one resolved cart line into the per-store accumulators.

    A store contributes at most once per line; duplicate rows for the same
    store keep the first price seen.
    """
    seen: set[str] = set()
    for match in matches:
        key = match.store_key
        if key in seen:
            continue
        seen.add(key)

        store = stores.get(key)
        if store is None:
            store = AggregatedStore(
                store_key=key,
                chain=match.chain,
                store_name=match.store_name,
                address=match.address,
            )
            stores[key] = store

        sale = match.sale
        store.total_price += calculate_line_total(
            query.quantity,
            match.unit_price,
            sale.sale_price if sale else None,
            sale.required_quantity if sale else None,
        )
        store.items_found += 1
        store.matched_identifiers.add(query.identifier)


class StoreAggregator:
    """Resolves every cart line and merges the matches into one record per store.

    Lines are resolved concurrently (at most ``max_concurrency`` source calls
    in flight) but folded in cart order, so totals and store insertion order
    match a sequential run.
    """

    def __init__(
        self,
        resolver: ProductResolver,
        *,
        max_concurrency: int = 4,
        failure_policy: str = "abort",
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if failure_policy not in ("abort", "skip"):
            raise ValueError(f"Unknown failure policy: {failure_policy}")
        self.resolver = resolver
        self.max_concurrency = max_concurrency
        self.failure_policy = failure_policy

    def _skippable(self, error: BaseException) -> bool:
        return self.failure_policy == "skip" and isinstance(error, PriceSourceError)

    async def _resolve_all(
        self, city: str, cart: Sequence[ProductQuery]
    ) -> list[Optional[list[RawMatch]]]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        stop = asyncio.Event()

        async def _resolve(query: ProductQuery) -> Optional[list[RawMatch]]:
            async with semaphore:
                # Lines still queued after an aborting failure never reach the source
                if stop.is_set():
                    return None
                try:
                    return await self.resolver.resolve(city, query)
                except Exception as e:
                    if not self._skippable(e):
                        stop.set()
                    raise

        tasks = [asyncio.ensure_future(_resolve(query)) for query in cart]
        try:
            await asyncio.wait(tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        results: list[Optional[list[RawMatch]]] = []
        first_error: Optional[BaseException] = None
        for query, task in zip(cart, tasks):
            error = task.exception()
            if error is None:
                results.append(task.result())
                continue
            results.append(None)
            if self._skippable(error):
                logger.warning(f"Skipping cart line '{query.identifier}' after price source failure: {error}")
            elif first_error is None:
                first_error = error

        # All-or-nothing: the first failing line in cart order aborts the comparison
        if first_error is not None:
            raise first_error
        return results

    async def aggregate(self, city: str, cart: Sequence[ProductQuery]) -> dict[str, AggregatedStore]:
        stores: dict[str, AggregatedStore] = {}
        if not cart:
            return stores

        resolved = await self._resolve_all(city, cart)
        for query, matches in zip(cart, resolved):
            if matches:
                add_line(stores, query, matches)

        logger.info(f"Aggregated {len(cart)} cart lines into {len(stores)} stores for '{city}'")
        return stores


__all__ = ["StoreAggregator", "add_line"]
