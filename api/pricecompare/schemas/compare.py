from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pricecompare.services.domain import AggregatedStore, ProductQuery
from pricecompare.services.pricing import format_price


def _as_text(value: Any) -> str:
    # Clients send barcodes as numbers or null as often as strings
    if value is None:
        return ""
    return str(value).strip()


class CartProduct(BaseModel):
    barcode: str = ""
    name: str = ""
    quantity: int = Field(default=1, ge=1)

    @field_validator("barcode", "name", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return _as_text(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _default_quantity(cls, v: Any) -> Any:
        return 1 if v in (None, "", 0) else v

    def to_query(self) -> ProductQuery:
        return ProductQuery(barcode=self.barcode, name=self.name, quantity=self.quantity)


# city/products are optional at the schema level so a missing field is a 400
# with a readable message rather than a 422.
class PriceCompareRequest(BaseModel):
    city: Optional[str] = None
    products: list[CartProduct] = Field(default_factory=list)


class BarcodeCompareRequest(BaseModel):
    city: Optional[str] = None
    barcodes: list[str] = Field(default_factory=list)

    @field_validator("barcodes", mode="before")
    @classmethod
    def _coerce_barcodes(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [b for b in (_as_text(item) for item in v) if b]
        return v

    def to_queries(self) -> list[ProductQuery]:
        return [ProductQuery(barcode=barcode) for barcode in self.barcodes]


class StoreComparison(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    branch: str
    store_name: str
    address: str
    total_price: str
    items_found: int
    matched_identifiers: list[str]
    distance: Optional[float] = None

    @classmethod
    def from_store(cls, store: AggregatedStore) -> "StoreComparison":
        return cls(
            branch=store.chain,
            store_name=store.store_name,
            address=store.address,
            total_price=format_price(store.total_price),
            items_found=store.items_found,
            matched_identifiers=sorted(store.matched_identifiers),
            distance=store.distance_km,
        )


__all__ = [
    "CartProduct",
    "PriceCompareRequest",
    "BarcodeCompareRequest",
    "StoreComparison",
]
