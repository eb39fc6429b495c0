from __future__ import annotations

import hashlib
import json
import logging
from typing import Optional, Sequence

from pricecompare.core.config import Settings, get_settings
from pricecompare.services.aggregation import StoreAggregator
from pricecompare.services.cache import MemoryCacheStore, RedisCacheStore, ResultCache
from pricecompare.services.distance import DistanceEnricher
from pricecompare.services.domain import AggregatedStore, ProductQuery
from pricecompare.services.errors import InvalidComparisonRequest, NoStoresFound
from pricecompare.services.price_source import ChpPriceSource, PriceSource
from pricecompare.services.rankings import DEFAULT_LIMIT, rank_stores
from pricecompare.services.resolver import ProductResolver

logger = logging.getLogger(__name__)


def normalize_cart(products: Sequence[ProductQuery]) -> list[ProductQuery]:
    """Trim identifiers, drop unidentifiable lines and merge repeated products.

    Repeated identifiers are merged into one line with the summed quantity,
    keeping the position of the first occurrence.
    """
    merged: dict[str, ProductQuery] = {}
    for product in products:
        barcode = (product.barcode or "").strip()
        name = (product.name or "").strip()
        line = ProductQuery(barcode=barcode, name=name, quantity=max(1, int(product.quantity or 1)))
        if not line.identifier:
            continue
        existing = merged.get(line.identifier)
        if existing is None:
            merged[line.identifier] = line
        else:
            merged[line.identifier] = ProductQuery(
                barcode=existing.barcode,
                name=existing.name or line.name,
                quantity=existing.quantity + line.quantity,
            )
    return list(merged.values())


def validate_request(city: Optional[str], products: Sequence[ProductQuery]) -> tuple[str, list[ProductQuery]]:
    city = (city or "").strip()
    if not city:
        raise InvalidComparisonRequest("city", "Missing city. Please enter a valid city.")
    if not products:
        raise InvalidComparisonRequest("products", "Missing products. Please add products to your list.")
    cart = normalize_cart(products)
    if not cart:
        raise InvalidComparisonRequest("products", "Products need a barcode or a name.")
    return city, cart


def comparison_cache_key(city: str, cart: Sequence[ProductQuery]) -> str:
    """Order-independent key for a city and cart.

    Lines are JSON-encoded as [identifier, quantity] pairs so identifiers
    containing separators cannot collide with other carts.
    """
    lines = sorted([line.identifier, line.quantity] for line in cart)
    payload = json.dumps([city.strip().lower(), lines], ensure_ascii=False, separators=(",", ":"))
    return "compare:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ComparisonService:
    """Runs a full cart comparison: aggregate (cached), rank, then enrich with distance."""

    def __init__(
        self,
        source: PriceSource,
        *,
        cache: Optional[ResultCache] = None,
        enricher: Optional[DistanceEnricher] = None,
        result_limit: int = DEFAULT_LIMIT,
        max_concurrency: int = 4,
        failure_policy: str = "abort",
    ) -> None:
        self.source = source
        self.cache = cache
        self.enricher = enricher
        self.result_limit = result_limit
        self.aggregator = StoreAggregator(
            ProductResolver(source),
            max_concurrency=max_concurrency,
            failure_policy=failure_policy,
        )

    async def aggregate(self, city: str, cart: Sequence[ProductQuery]) -> list[AggregatedStore]:
        """Aggregated stores in insertion order, served from the cache when fresh."""

        async def _produce() -> list[dict]:
            stores = await self.aggregator.aggregate(city, cart)
            return [store.to_dict() for store in stores.values()]

        if self.cache is None:
            data = await _produce()
        else:
            data = await self.cache.get_or_compute(comparison_cache_key(city, cart), _produce)
        return [AggregatedStore.from_dict(item) for item in data]

    async def compare(
        self,
        city: Optional[str],
        products: Sequence[ProductQuery],
        *,
        with_distance: bool = True,
        all_stores: bool = False,
        require_results: bool = False,
    ) -> list[AggregatedStore]:
        """Cheapest stores for the cart, ascending by total.

        Truncated to the configured result limit unless ``all_stores`` is set.
        When no store matched, returns an empty list, or raises ``NoStoresFound``
        if ``require_results`` is set.
        """
        city, cart = validate_request(city, products)
        stores = await self.aggregate(city, cart)

        ranked = rank_stores(stores, None if all_stores else self.result_limit)
        if not ranked and require_results:
            raise NoStoresFound()
        # Distances never change the order, so only the returned stores are looked up
        if with_distance and self.enricher is not None and ranked:
            await self.enricher.enrich(city, ranked)
        return ranked

    async def aclose(self) -> None:
        await self.source.aclose()
        if self.enricher is not None:
            await self.enricher.aclose()
        if self.cache is not None:
            await self.cache.aclose()


def build_result_cache(settings: Settings) -> ResultCache:
    if settings.cache_backend == "redis":
        store = RedisCacheStore(settings.redis_url)
    else:
        store = MemoryCacheStore(max_entries=settings.compare_cache_max_entries)
    return ResultCache(store, ttl=settings.compare_cache_ttl_seconds)


def build_comparison_service(settings: Optional[Settings] = None) -> ComparisonService:
    settings = settings or get_settings()
    enricher = DistanceEnricher(settings)
    if not enricher.enabled:
        logger.info("GOOGLE_MAPS_API_KEY not set; store distances will be null")
    return ComparisonService(
        ChpPriceSource(settings),
        cache=build_result_cache(settings),
        enricher=enricher,
        result_limit=settings.compare_result_limit,
        max_concurrency=settings.compare_max_concurrency,
        failure_policy=settings.compare_failure_policy,
    )


__all__ = [
    "ComparisonService",
    "build_comparison_service",
    "build_result_cache",
    "comparison_cache_key",
    "normalize_cart",
    "validate_request",
]
