"""Tests for folding per-line matches into per-store totals."""
from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from conftest import FakePriceSource, make_match
from pricecompare.services.aggregation import StoreAggregator, add_line
from pricecompare.services.domain import ProductQuery, SaleTerms
from pricecompare.services.errors import PriceSourceError
from pricecompare.services.resolver import ProductResolver

TEL_AVIV_CART = [
    ProductQuery(barcode="123", quantity=2),
    ProductQuery(barcode="", name="Milk", quantity=1),
]


def _aggregator(source: FakePriceSource, **kwargs) -> StoreAggregator:
    return StoreAggregator(ProductResolver(source), **kwargs)


class TestAddLine:
    """Tests for the add_line fold step."""

    def test_creates_store_on_first_match(self):
        stores = {}
        add_line(stores, ProductQuery("123", "", 2), [make_match("A", "5.00", chain="Chain A")])

        store = stores["A-Dizengoff 50, Tel Aviv"]
        assert store.chain == "Chain A"
        assert store.total_price == Decimal("10.00")
        assert store.items_found == 1
        assert store.matched_identifiers == {"123"}
        assert store.distance_km is None

    def test_accumulates_across_lines(self):
        stores = {}
        add_line(stores, ProductQuery("1", "", 1), [make_match("A", "2.00")])
        add_line(stores, ProductQuery("2", "", 3), [make_match("A", "1.50")])

        store = stores["A-Dizengoff 50, Tel Aviv"]
        assert store.total_price == Decimal("6.50")
        assert store.items_found == 2
        assert store.matched_identifiers == {"1", "2"}

    def test_same_name_different_address_are_different_stores(self):
        stores = {}
        add_line(
            stores,
            ProductQuery("1", "", 1),
            [make_match("A", 1, address="Herzl 1, Tel Aviv"), make_match("A", 2, address="Herzl 9, Tel Aviv")],
        )
        assert len(stores) == 2

    def test_duplicate_rows_count_once_per_line(self):
        stores = {}
        add_line(stores, ProductQuery("1", "", 1), [make_match("A", "2.00"), make_match("A", "3.00")])

        store = stores["A-Dizengoff 50, Tel Aviv"]
        assert store.total_price == Decimal("2.00")
        assert store.items_found == 1

    def test_sale_terms_apply_tiered_pricing(self):
        stores = {}
        sale = SaleTerms(sale_price=Decimal("15"), required_quantity=3)
        add_line(stores, ProductQuery("1", "", 7), [make_match("A", "10", sale=sale)])
        assert stores["A-Dizengoff 50, Tel Aviv"].total_price == Decimal("100")

    def test_name_line_records_name_identifier(self):
        stores = {}
        add_line(stores, ProductQuery("", "Milk", 1), [make_match("A", "6.00")])
        assert stores["A-Dizengoff 50, Tel Aviv"].matched_identifiers == {"Milk"}


class TestStoreAggregator:
    """Tests for StoreAggregator.aggregate."""

    @pytest.mark.asyncio
    async def test_tel_aviv_scenario(self, tel_aviv_source):
        stores = await _aggregator(tel_aviv_source).aggregate("Tel Aviv", TEL_AVIV_CART)

        store_a = stores["Store A-Herzl 1, Tel Aviv"]
        store_b = stores["Store B-Ibn Gabirol 2, Tel Aviv"]
        assert store_a.total_price == Decimal("10.00")
        assert store_a.items_found == 1
        assert store_b.total_price == Decimal("15.00")
        assert store_b.items_found == 2
        assert store_b.matched_identifiers == {"123", "Milk"}

    @pytest.mark.asyncio
    async def test_coverage_invariants(self, tel_aviv_source):
        stores = await _aggregator(tel_aviv_source).aggregate("Tel Aviv", TEL_AVIV_CART)
        cart_identifiers = {line.identifier for line in TEL_AVIV_CART}

        for store in stores.values():
            assert store.items_found <= len(TEL_AVIV_CART)
            assert store.items_found == len(store.matched_identifiers)
            assert store.matched_identifiers <= cart_identifiers

    @pytest.mark.asyncio
    async def test_out_of_city_rows_never_aggregate(self):
        source = FakePriceSource(
            {"123": [make_match("Near", 5), make_match("Far", 1, address="Beersheba")]}
        )
        stores = await _aggregator(source).aggregate("Tel Aviv", [ProductQuery("123", "", 1)])
        assert [s.store_name for s in stores.values()] == ["Near"]

    @pytest.mark.asyncio
    async def test_no_matches_is_empty(self, fake_source):
        stores = await _aggregator(fake_source).aggregate("Tel Aviv", [ProductQuery("404", "", 1)])
        assert stores == {}

    @pytest.mark.asyncio
    async def test_empty_cart(self, fake_source):
        assert await _aggregator(fake_source).aggregate("Tel Aviv", []) == {}
        assert fake_source.calls == []

    @pytest.mark.asyncio
    async def test_insertion_order_follows_cart_order(self):
        # The second line resolves first, but stores still appear in cart order
        source = FakePriceSource(
            {
                "slow": [make_match("First", 1)],
                "fast": [make_match("Second", 1)],
            }
        )
        original_search = source.search

        async def search(city, identifier):
            if identifier == "slow":
                await asyncio.sleep(0.05)
            return await original_search(city, identifier)

        source.search = search
        stores = await _aggregator(source).aggregate(
            "Tel Aviv", [ProductQuery("slow", "", 1), ProductQuery("fast", "", 1)]
        )
        assert [s.store_name for s in stores.values()] == ["First", "Second"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        source = FakePriceSource(
            {str(i): [make_match("A", 1)] for i in range(8)},
            delay=0.01,
        )
        cart = [ProductQuery(str(i), "", 1) for i in range(8)]
        await _aggregator(source, max_concurrency=3).aggregate("Tel Aviv", cart)

        assert source.max_in_flight <= 3
        assert len(source.calls) == 8

    @pytest.mark.asyncio
    async def test_sequential_when_concurrency_is_one(self):
        source = FakePriceSource({str(i): [] for i in range(4)}, delay=0.01)
        cart = [ProductQuery(str(i), "", 1) for i in range(4)]
        await _aggregator(source, max_concurrency=1).aggregate("Tel Aviv", cart)
        assert source.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_abort_policy_raises(self):
        source = FakePriceSource(
            {"ok": [make_match("A", 1)], "bad": PriceSourceError("boom")}
        )
        with pytest.raises(PriceSourceError):
            await _aggregator(source).aggregate(
                "Tel Aviv", [ProductQuery("ok", "", 1), ProductQuery("bad", "", 1)]
            )

    @pytest.mark.asyncio
    async def test_abort_policy_stops_querying_after_failure(self):
        source = FakePriceSource(
            {"bad": PriceSourceError("boom"), "ok1": [make_match("A", 1)], "ok2": [make_match("B", 1)]}
        )
        cart = [ProductQuery("bad", "", 1), ProductQuery("ok1", "", 1), ProductQuery("ok2", "", 1)]

        with pytest.raises(PriceSourceError):
            await _aggregator(source, max_concurrency=1).aggregate("Tel Aviv", cart)

        assert source.identifiers == ["bad"]

    @pytest.mark.asyncio
    async def test_abort_raises_first_failure_in_cart_order(self):
        first = PriceSourceError("first")
        source = FakePriceSource({"a": first, "b": PriceSourceError("second")})

        with pytest.raises(PriceSourceError) as exc_info:
            await _aggregator(source, max_concurrency=2).aggregate(
                "Tel Aviv", [ProductQuery("a", "", 1), ProductQuery("b", "", 1)]
            )

        assert exc_info.value is first

    @pytest.mark.asyncio
    async def test_skip_policy_queries_every_line(self):
        source = FakePriceSource({"bad": PriceSourceError("boom"), "ok": [make_match("A", 1)]})
        await _aggregator(source, max_concurrency=1, failure_policy="skip").aggregate(
            "Tel Aviv", [ProductQuery("bad", "", 1), ProductQuery("ok", "", 1)]
        )
        assert source.identifiers == ["bad", "ok"]

    @pytest.mark.asyncio
    async def test_skip_policy_keeps_other_lines(self):
        source = FakePriceSource(
            {"ok": [make_match("A", "2.00")], "bad": PriceSourceError("boom")}
        )
        stores = await _aggregator(source, failure_policy="skip").aggregate(
            "Tel Aviv", [ProductQuery("bad", "", 1), ProductQuery("ok", "", 2)]
        )
        store = stores["A-Dizengoff 50, Tel Aviv"]
        assert store.total_price == Decimal("4.00")
        assert store.matched_identifiers == {"ok"}

    @pytest.mark.asyncio
    async def test_skip_policy_does_not_hide_programming_errors(self):
        source = FakePriceSource({"bad": RuntimeError("bug")})
        with pytest.raises(RuntimeError):
            await _aggregator(source, failure_policy="skip").aggregate(
                "Tel Aviv", [ProductQuery("bad", "", 1)]
            )

    def test_rejects_invalid_settings(self, fake_source):
        with pytest.raises(ValueError):
            _aggregator(fake_source, max_concurrency=0)
        with pytest.raises(ValueError):
            _aggregator(fake_source, failure_policy="retry")
