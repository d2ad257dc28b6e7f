from __future__ import annotations

import logging
from typing import Protocol, Sequence

from clinicsched.domain import CatalogItem, FetchError, InventoryCheckResult, InventoryItemCheck

logger = logging.getLogger(__name__)


class InventoryCatalog(Protocol):
    async def common_items_for_category(self, category: str) -> Sequence[CatalogItem]: ...


def compare_stock(items: Sequence[CatalogItem]) -> InventoryCheckResult:
    return InventoryCheckResult.from_items(
        InventoryItemCheck(
            name=item.name,
            estimated_quantity=item.estimated_quantity,
            current_stock=item.current_stock,
            is_low=item.current_stock < item.estimated_quantity,
            item_id=item.item_id,
        )
        for item in items
    )


class InventoryChecker:
    """Compares required vs on-hand quantities for a procedure category.

    Read-only: stock levels are never changed here. No retry on failure.
    """

    def __init__(self, catalog: InventoryCatalog) -> None:
        self._catalog = catalog

    async def check_availability(self, category: str) -> InventoryCheckResult:
        try:
            items = await self._catalog.common_items_for_category(category)
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(f"Failed to load inventory items for {category!r} ({type(e).__name__}: {e})") from e

        result = compare_stock(items)
        logger.info(
            "Inventory check for %r: items=%d low=%d",
            category,
            len(result.items),
            len(result.low_items),
        )
        return result
