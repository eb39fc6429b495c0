"""
Adapters for the external per-product price source.

The comparison engine only sees ``PriceSource.search(city, identifier)``
returning typed ``RawMatch`` rows. Everything about the CHP HTML results
page (request parameters, table layout, number formats) stays in this module.
"""
from __future__ import annotations

import abc
import logging
from html.parser import HTMLParser
from typing import List, Optional

import httpx

from pricecompare.core.config import Settings, get_settings
from pricecompare.services.domain import RawMatch
from pricecompare.services.errors import PriceSourceError
from pricecompare.services.promo_utils import parse_multi_buy_deal, parse_price

logger = logging.getLogger(__name__)

CHP_STREET_ID = 9000
CHP_CITY_ID = 0

# Result table cell layout
_CHAIN_CELL = 0
_STORE_CELL = 1
_ADDRESS_CELL = 2
_PROMO_CELL = 3
_PRICE_CELL = 4
_MIN_CELLS = 5

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
    "Accept-Language": "he-IL,he;q=0.9,en-US;q=0.8,en;q=0.7",
    "X-Requested-With": "XMLHttpRequest",
    "Referer": "https://chp.co.il/",
}


class PriceSource(abc.ABC):
    """Produces raw per-store rows for one product query in one city."""

    @abc.abstractmethod
    async def search(self, city: str, identifier: str) -> List[RawMatch]:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class ResultsTableParser(HTMLParser):
    """Collects the cell texts of every ``table.results-table tbody tr`` row."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.rows: List[List[str]] = []
        self._table_depth = 0
        self._in_tbody = False
        self._row: Optional[List[str]] = None
        self._cell: Optional[List[str]] = None

    def handle_starttag(self, tag: str, attrs: List[tuple[str, Optional[str]]]) -> None:
        tag = tag.lower()
        if tag == "table":
            if self._table_depth:
                # Nested tables inside a results row count as cell content
                self._table_depth += 1
                return
            classes = (dict(attrs).get("class") or "").split()
            if "results-table" in classes:
                self._table_depth = 1
            return

        if self._table_depth != 1:
            return
        if tag == "tbody":
            self._in_tbody = True
        elif tag == "tr" and self._in_tbody:
            self._row = []
        elif tag in ("td", "th") and self._row is not None:
            self._cell = []

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        if tag == "table" and self._table_depth:
            self._table_depth -= 1
            if not self._table_depth:
                self._in_tbody = False
                self._row = None
                self._cell = None
            return

        if self._table_depth != 1:
            return
        if tag in ("td", "th") and self._cell is not None and self._row is not None:
            self._row.append(" ".join("".join(self._cell).split()))
            self._cell = None
        elif tag == "tr" and self._row is not None:
            self.rows.append(self._row)
            self._row = None
        elif tag == "tbody":
            self._in_tbody = False

    def handle_data(self, data: str) -> None:
        if self._cell is not None:
            self._cell.append(data)


def parse_results_table(html: str) -> List[RawMatch]:
    """Turn a CHP results page into typed rows, dropping unusable ones."""
    parser = ResultsTableParser()
    parser.feed(html)
    parser.close()

    matches: List[RawMatch] = []
    for cells in parser.rows:
        if len(cells) < _MIN_CELLS:
            continue
        store_name = cells[_STORE_CELL]
        price = parse_price(cells[_PRICE_CELL])
        if not store_name or price is None:
            continue
        matches.append(
            RawMatch(
                chain=cells[_CHAIN_CELL],
                store_name=store_name,
                address=cells[_ADDRESS_CELL],
                unit_price=price,
                sale=parse_multi_buy_deal(cells[_PROMO_CELL]),
            )
        )
    return matches


class ChpPriceSource(PriceSource):
    """Queries the CHP comparison page for one barcode or product name."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=self.settings.price_source_timeout_seconds,
            headers=DEFAULT_HEADERS,
        )

    def _build_params(self, city: str, identifier: str) -> dict:
        return {
            "shopping_address": city,
            "shopping_address_street_id": CHP_STREET_ID,
            "shopping_address_city_id": CHP_CITY_ID,
            "product_barcode": identifier,
            "from": 0,
            "num_results": self.settings.price_source_result_limit,
        }

    async def search(self, city: str, identifier: str) -> List[RawMatch]:
        try:
            response = await self.client.get(
                self.settings.price_source_url,
                params=self._build_params(city, identifier),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Price source request failed for '{identifier}' in '{city}': {e!r}")
            raise PriceSourceError(f"Price source request failed: {e!r}") from e

        try:
            matches = parse_results_table(response.text)
        except Exception as e:
            logger.error(f"Could not parse price source page for '{identifier}': {e!r}")
            raise PriceSourceError(f"Price source returned an unreadable page: {e!r}") from e

        logger.debug(f"Price source returned {len(matches)} rows for '{identifier}' in '{city}'")
        return matches

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


__all__ = [
    "PriceSource",
    "ChpPriceSource",
    "ResultsTableParser",
    "parse_results_table",
    "DEFAULT_HEADERS",
]
