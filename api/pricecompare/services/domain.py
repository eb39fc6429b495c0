"""Value objects passed between the comparison services."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional


@dataclass(frozen=True)
class ProductQuery:
    """One cart line. Matched by barcode when present, else by name."""

    barcode: str = ""
    name: str = ""
    quantity: int = 1

    @property
    def identifier(self) -> str:
        return self.barcode or self.name


@dataclass(frozen=True)
class SaleTerms:
    """A "buy N for X" deal. ``sale_price`` is the per-unit price inside a bundle."""

    sale_price: Decimal
    required_quantity: int


@dataclass(frozen=True)
class RawMatch:
    chain: str
    store_name: str
    address: str
    unit_price: Decimal
    sale: Optional[SaleTerms] = None

    @property
    def store_key(self) -> str:
        return f"{self.store_name}-{self.address}"


@dataclass
class AggregatedStore:
    store_key: str
    chain: str
    store_name: str
    address: str
    total_price: Decimal = Decimal("0")
    items_found: int = 0
    matched_identifiers: set[str] = field(default_factory=set)
    distance_km: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form used by the result cache."""
        return {
            "store_key": self.store_key,
            "chain": self.chain,
            "store_name": self.store_name,
            "address": self.address,
            "total_price": str(self.total_price),
            "items_found": self.items_found,
            "matched_identifiers": sorted(self.matched_identifiers),
            "distance_km": self.distance_km,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AggregatedStore":
        return cls(
            store_key=data["store_key"],
            chain=data["chain"],
            store_name=data["store_name"],
            address=data["address"],
            total_price=Decimal(data["total_price"]),
            items_found=int(data["items_found"]),
            matched_identifiers=set(data.get("matched_identifiers") or []),
            distance_km=data.get("distance_km"),
        )


__all__ = ["ProductQuery", "SaleTerms", "RawMatch", "AggregatedStore"]
