from decimal import Decimal

import pytest

from shop.services.shipping import (
    ShippingError, ShippingItem, calculate_package, calculate_shipping_options, determine_zone, find_option
)


@pytest.mark.parametrize("country, state, postal_code, zone", [
    ("PT", None, "1000-100", "DOMESTIC"),
    ("pt", "Madeira", None, "ISLANDS"),
    ("PT", None, "9500-000", "ISLANDS"),
    ("ES", None, None, "EU"),
    ("US", None, None, "INTERNATIONAL"),
])
def test_determine_zone(country, state, postal_code, zone):
    assert determine_zone(country, state, postal_code) == zone


def test_package_defaults():
    package = calculate_package([ShippingItem(quantity=2)])
    assert package["weight"] == 1.0
    assert package["volume"] == 3000.0
    assert package["largest_dimension"] == 20.0


def test_domestic_options_sorted_with_free_shipping():
    result = calculate_shipping_options("PT", [ShippingItem(weight=1)], Decimal("60"))
    assert result["zone"] == "DOMESTIC"
    assert [o["type"] for o in result["options"]] == ["FREE", "STANDARD", "EXPRESS"]
    assert result["options"][1]["price"] == 3.99


def test_free_shipping_requires_minimum():
    result = calculate_shipping_options("PT", [ShippingItem(weight=1)], Decimal("49.99"))
    assert "FREE" not in [o["type"] for o in result["options"]]


def test_heavy_surcharge_not_applied_to_free_option():
    result = calculate_shipping_options("PT", [ShippingItem(weight=12)], Decimal("60"))
    assert result["surcharge"] == 2.5
    prices = {o["type"]: o["price"] for o in result["options"]}
    assert prices == {"FREE": 0.0, "STANDARD": 6.49, "EXPRESS": 9.49}


def test_oversize_surcharge():
    result = calculate_shipping_options("ES", [ShippingItem(weight=1, length=120)], Decimal("10"))
    assert result["surcharge"] == 10.0
    assert find_option(result, "eu_standard")["price"] == 22.99


def test_too_heavy_for_zone():
    with pytest.raises(ShippingError):
        calculate_shipping_options("US", [ShippingItem(weight=6)], Decimal("10"))


def test_find_option_by_type():
    result = calculate_shipping_options("PT", [ShippingItem()], Decimal("10"))
    assert find_option(result, "EXPRESS")["id"] == "domestic_express"
    assert find_option(result, "FREE") is None


@pytest.mark.parametrize("country, state, days", [
    ("PT", "Açores", {"islands_standard": "3-5", "islands_express": "2-3"}),
    ("FR", None, {"eu_standard": "5-7", "eu_express": "3-4"}),
    ("BR", None, {"international_standard": "7-14", "international_express": "4-7"}),
])
def test_estimated_days_per_zone(country, state, days):
    result = calculate_shipping_options(country, [ShippingItem(weight=1)], Decimal("10"), state=state)
    assert {o["id"]: o["estimated_days"] for o in result["options"]} == days
