from __future__ import annotations


class ComparisonError(Exception):
    """Base class for failures of a store price comparison."""


class InvalidComparisonRequest(ComparisonError):
    """The request is missing a required field. Raised before any external call."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class NoStoresFound(ComparisonError):
    def __init__(self, message: str = "No stores found for your city and products. Try a different city or product.") -> None:
        super().__init__(message)
        self.message = message


class PriceSourceError(ComparisonError):
    """Transport or parse failure of the external price source."""


class DistanceLookupError(ComparisonError):
    """Distance provider unavailable or returned something unusable."""


__all__ = [
    "ComparisonError",
    "InvalidComparisonRequest",
    "NoStoresFound",
    "PriceSourceError",
    "DistanceLookupError",
]
