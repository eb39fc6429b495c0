from __future__ import annotations

import logging
from typing import Optional, Sequence
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from pricecompare.db.session import get_async_session
from pricecompare.schemas.compare import BarcodeCompareRequest, PriceCompareRequest, StoreComparison
from pricecompare.services.comparison import ComparisonService
from pricecompare.services.domain import ProductQuery
from pricecompare.services.errors import InvalidComparisonRequest, NoStoresFound, PriceSourceError
from pricecompare.services.lists import fetch_list_queries

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/compare", tags=["compare"])


def get_comparison_service(request: Request) -> ComparisonService:
    return request.app.state.comparison_service


async def _run_comparison(
    service: ComparisonService,
    city: Optional[str],
    products: Sequence[ProductQuery],
    *,
    with_distance: bool,
    all_stores: bool,
    require_results: bool = False,
) -> list[StoreComparison]:
    try:
        stores = await service.compare(
            city,
            products,
            with_distance=with_distance,
            all_stores=all_stores,
            require_results=require_results,
        )
    except InvalidComparisonRequest as e:
        raise HTTPException(status_code=400, detail=e.message)
    except NoStoresFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except PriceSourceError:
        logger.exception(f"Price comparison failed for city '{city}'")
        raise HTTPException(status_code=500, detail="Price comparison failed")
    return [StoreComparison.from_store(store) for store in stores]


@router.post("/price", response_model=list[StoreComparison])
async def compare_cart_prices(
    request: PriceCompareRequest,
    service: ComparisonService = Depends(get_comparison_service),
) -> list[StoreComparison]:
    """Cheapest five stores for a cart, with distances when configured."""
    return await _run_comparison(
        service,
        request.city,
        [product.to_query() for product in request.products],
        with_distance=True,
        all_stores=False,
        require_results=True,
    )


@router.post("", response_model=list[StoreComparison])
async def compare_barcodes(
    request: BarcodeCompareRequest,
    service: ComparisonService = Depends(get_comparison_service),
) -> list[StoreComparison]:
    """Every matching store for a list of barcodes, cheapest first."""
    if not (request.city or "").strip() or not request.barcodes:
        raise HTTPException(status_code=400, detail="Missing city or barcodes array")
    return await _run_comparison(
        service,
        request.city,
        request.to_queries(),
        with_distance=False,
        all_stores=True,
    )


@router.get("/{list_id}", response_model=list[StoreComparison])
async def compare_saved_list(
    list_id: UUID,
    location: Optional[str] = Query(None),
    service: ComparisonService = Depends(get_comparison_service),
) -> list[StoreComparison]:
    """Compare the barcoded items of a saved shopping list in ``location``."""
    if not (location or "").strip():
        raise HTTPException(status_code=400, detail="Missing location")

    async with get_async_session() as session:
        queries = await fetch_list_queries(session, list_id)

    if queries is None:
        raise HTTPException(status_code=404, detail="List not found")
    if not queries:
        raise HTTPException(status_code=404, detail="No barcodes in list")

    return await _run_comparison(
        service,
        location,
        queries,
        with_distance=False,
        all_stores=True,
    )


__all__ = ["router", "get_comparison_service"]
