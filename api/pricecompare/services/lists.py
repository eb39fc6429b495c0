from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from pricecompare.db.models import ListItem, ShoppingList
from pricecompare.services.domain import ProductQuery


async def fetch_list_queries(session: AsyncSession, list_id: UUID) -> Optional[list[ProductQuery]]:
    """Cart lines for a saved shopping list.

    Only items whose product has a barcode are returned, in list position
    order. None means the list does not exist.
    """
    result = await session.execute(
        select(ShoppingList)
        .where(ShoppingList.id == list_id)
        .options(selectinload(ShoppingList.items).selectinload(ListItem.product))
        .execution_options(populate_existing=True)
    )
    shopping_list = result.scalar_one_or_none()
    if shopping_list is None:
        return None

    queries = []
    for item in sorted(shopping_list.items, key=lambda item: item.position):
        product = item.product
        if product is None or not (product.barcode or "").strip():
            continue
        queries.append(
            ProductQuery(
                barcode=product.barcode.strip(),
                name=product.name,
                quantity=max(1, item.quantity or 1),
            )
        )
    return queries


__all__ = ["fetch_list_queries"]
