"""Best-effort travel distance between the shopper and candidate stores."""
from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx

from pricecompare.core.config import Settings, get_settings
from pricecompare.services.domain import AggregatedStore
from pricecompare.services.errors import DistanceLookupError

logger = logging.getLogger(__name__)


class DistanceEnricher:
    """Annotates stores with driving distance from the Google Distance Matrix API.

    Any failure leaves every ``distance_km`` as None; enrichment never fails
    the comparison it belongs to.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.api_key = self.settings.google_maps_api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.settings.distance_timeout_seconds)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def fetch_distances(self, origin: str, addresses: Sequence[str]) -> dict[str, Optional[float]]:
        """Return km per destination address from one batched request."""
        if not self.api_key:
            raise DistanceLookupError("Missing GOOGLE_MAPS_API_KEY")

        params = {
            "origins": origin,
            "destinations": "|".join(addresses),
            "mode": "driving",
            "key": self.api_key,
        }
        try:
            response = await self.client.get(self.settings.distance_matrix_url, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DistanceLookupError(f"Distance request failed: {e!r}") from e

        status = data.get("status") if isinstance(data, dict) else None
        if status != "OK":
            raise DistanceLookupError(f"Google Maps API error: {status}")

        try:
            elements = data["rows"][0]["elements"]
            distances: dict[str, Optional[float]] = {}
            for address, element in zip(addresses, elements):
                if element.get("status") == "OK":
                    distances[address] = element["distance"]["value"] / 1000
                else:
                    distances[address] = None
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise DistanceLookupError(f"Malformed distance matrix response: {e!r}") from e
        return distances

    async def enrich(self, origin: str, stores: list[AggregatedStore]) -> list[AggregatedStore]:
        if not stores:
            return stores

        # One destination per address even when several stores share it
        addresses = list(dict.fromkeys(s.address for s in stores))
        try:
            distances = await self.fetch_distances(origin, addresses)
        except DistanceLookupError as e:
            logger.warning(f"Distance enrichment skipped: {e}")
            return stores

        for store in stores:
            store.distance_km = distances.get(store.address)
        return stores

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


__all__ = ["DistanceEnricher"]
