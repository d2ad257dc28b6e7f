from __future__ import annotations

import httpx
import pytest

from clinicsched.domain import CatalogItem, FetchError
from clinicsched.inventory import InventoryChecker


async def test_cleaning_with_short_gauze_reports_low_stock(catalog) -> None:
    catalog.items["Cleaning"] = [CatalogItem(name="Gauze", estimated_quantity=2, current_stock=1)]

    result = await InventoryChecker(catalog).check_availability("Cleaning")

    assert result.has_low_stock is True
    assert len(result.items) == 1
    item = result.items[0]
    assert (item.name, item.estimated_quantity, item.current_stock, item.is_low) == ("Gauze", 2, 1, True)
    assert result.low_items == result.items


async def test_enough_stock_is_not_low(catalog) -> None:
    catalog.items["Preventive"] = [
        CatalogItem(name="Gloves", estimated_quantity=2, current_stock=2),
        CatalogItem(name="Fluoride varnish", estimated_quantity=1, current_stock=40),
    ]

    result = await InventoryChecker(catalog).check_availability("Preventive")

    assert result.has_low_stock is False
    assert [i.is_low for i in result.items] == [False, False]
    assert result.low_items == ()


async def test_one_low_item_marks_whole_result_low(catalog) -> None:
    catalog.items["Implant"] = [
        CatalogItem(name="Implant fixture", estimated_quantity=1, current_stock=5),
        CatalogItem(name="Bone graft", estimated_quantity=1, current_stock=0),
    ]

    result = await InventoryChecker(catalog).check_availability("Implant")

    assert result.has_low_stock is True
    assert [i.name for i in result.low_items] == ["Bone graft"]


async def test_empty_catalog_reports_nothing(catalog) -> None:
    result = await InventoryChecker(catalog).check_availability("Diagnostic")

    assert result.has_low_stock is False
    assert result.items == ()
    assert catalog.calls == ["Diagnostic"]


async def test_catalog_failure_surfaces_as_fetch_error_without_retry(catalog) -> None:
    catalog.error = httpx.ConnectError("connection refused")

    with pytest.raises(FetchError, match=r"Cleaning"):
        await InventoryChecker(catalog).check_availability("Cleaning")

    assert catalog.calls == ["Cleaning"]


async def test_fetch_error_from_catalog_is_passed_through(catalog) -> None:
    original = FetchError("GET /dental/procedures/inventory-items failed")
    catalog.error = original

    with pytest.raises(FetchError) as exc_info:
        await InventoryChecker(catalog).check_availability("Cleaning")

    assert exc_info.value is original


def test_catalog_item_without_estimate_counts_one_unit() -> None:
    item = CatalogItem.from_json({"name": "Bib", "currentStock": 0})

    assert item.estimated_quantity == 1
    assert item.current_stock == 0
