import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas.bundle_schemas import (
    BuyXGetYDiscount,
    CartLineItem,
    DiscountTier,
    FixedAmountDiscount,
    PercentageDiscount,
    TieredDiscount,
    normalize_bundle,
    parse_discount_rule,
    validate_bundle,
)
from services.exceptions import InvalidBundleError, InvalidRuleError


STORED_BUNDLE = {
    "_id": "64f0c0ffee",
    "shopId": "demo-shop.myshopify.com",
    "name": "Morning Routine",
    "description": "Coffee + mug",
    "products": [
        {"productId": "101", "variantId": "9001", "quantity": 1, "price": "20.00"},
        {"productId": "102", "variantId": "9002", "quantity": 2, "price": 30},
    ],
    "discountRules": [
        {"type": "tiered", "value": 0, "tiers": [{"quantity": 2, "discount": 5}, {"quantity": 3, "discount": 10}]},
        {"type": "percentage", "value": 50},
    ],
    "isActive": True,
    "validFrom": "2024-01-01T00:00:00Z",
    "validTo": None,
}


def test_parse_percentage_from_float():
    rule = parse_discount_rule({"type": "percentage", "value": 12.5})
    assert rule == PercentageDiscount(value=Decimal("12.5"))


def test_parse_fixed_aliases():
    assert isinstance(parse_discount_rule({"type": "fixed", "value": "39.99"}), FixedAmountDiscount)
    assert isinstance(parse_discount_rule({"type": "FIXED_AMOUNT", "value": 0}), FixedAmountDiscount)


def test_parse_bxgy_camel_and_snake_case():
    camel = parse_discount_rule({"type": "bxgy", "value": 0, "minQuantity": 2, "freeQuantity": 1})
    snake = parse_discount_rule({"type": "bxgy", "min_quantity": 2, "free_quantity": 1})
    assert camel == snake == BuyXGetYDiscount(min_quantity=2, free_quantity=1)


def test_parse_bxgy_missing_min_quantity():
    with pytest.raises(InvalidRuleError) as exc:
        parse_discount_rule({"type": "bxgy", "value": 0, "freeQuantity": 1})
    assert "minQuantity" in str(exc.value)
    assert exc.value.rule_type == "bxgy"


def test_parse_tiered():
    rule = parse_discount_rule({"type": "tiered", "tiers": [{"quantity": 3, "discount": 10}, {"min_qty": 5, "discount_value": 15}]})
    assert rule == TieredDiscount(
        tiers=(DiscountTier(quantity=3, discount=Decimal("10")), DiscountTier(quantity=5, discount=Decimal("15")))
    )


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "percentage"},
        {"type": "percentage", "value": 0},
        {"type": "percentage", "value": 100},
        {"type": "percentage", "value": "ten"},
        {"type": "fixed", "value": -1},
        {"type": "bxgy", "minQuantity": 0, "freeQuantity": 1},
        {"type": "bxgy", "minQuantity": 2.5, "freeQuantity": 1},
        {"type": "tiered"},
        {"type": "tiered", "tiers": [{"quantity": 2}]},
        {"type": "tiered", "tiers": [{"quantity": 2, "discount": 120}]},
        {"type": "mystery", "value": 5},
        {"value": 5},
        "percentage",
    ],
)
def test_invalid_rules_raise(payload):
    with pytest.raises(InvalidRuleError):
        parse_discount_rule(payload)


def test_rule_round_trips_through_stored_shape():
    rule = BuyXGetYDiscount(min_quantity=3, free_quantity=1)
    assert rule.to_dict() == {"type": "bxgy", "minQuantity": 3, "freeQuantity": 1}
    assert parse_discount_rule(rule.to_dict()) == rule


def test_normalize_stored_bundle_uses_first_rule():
    bundle = normalize_bundle(STORED_BUNDLE)

    assert bundle.id == "64f0c0ffee"
    assert bundle.shop_id == "demo-shop.myshopify.com"
    assert [p.product_id for p in bundle.products] == ["101", "102"]
    assert bundle.products[1].unit_price == Decimal("30")
    assert isinstance(bundle.discount_rule, TieredDiscount)
    assert bundle.default_quantities == {"101": 1, "102": 2}


def test_normalize_fills_prices_from_catalog():
    doc = {
        "id": "b1",
        "name": "No prices stored",
        "products": [{"productId": "1", "variantId": "v1"}, {"productId": "2", "variantId": "v2", "quantity": 3}],
        "discountRule": {"type": "percentage", "value": 10},
    }
    bundle = normalize_bundle(doc, prices={"v1": "12.50", "2": 4})

    assert bundle.products[0].unit_price == Decimal("12.50")
    assert bundle.products[0].quantity == 1
    assert bundle.products[1].unit_price == Decimal("4")


def test_normalize_missing_price_raises():
    doc = {"id": "b1", "name": "x", "products": [{"productId": "1"}], "discountRule": {"type": "fixed", "value": 5}}
    with pytest.raises(InvalidBundleError):
        normalize_bundle(doc)


def test_normalize_missing_rule_raises():
    doc = {"id": "b1", "name": "x", "products": [{"productId": "1", "price": 1}]}
    with pytest.raises(InvalidRuleError):
        normalize_bundle(doc)


def test_duplicate_products_rejected():
    doc = {
        "id": "b1",
        "name": "x",
        "products": [{"productId": "1", "price": 1}, {"productId": "1", "price": 2}],
        "discountRule": {"type": "fixed", "value": 5},
    }
    with pytest.raises(InvalidBundleError):
        normalize_bundle(doc)


def test_is_live_window():
    doc = dict(STORED_BUNDLE, validTo="2024-06-30T23:59:59+00:00")
    bundle = normalize_bundle(doc)

    assert bundle.is_live(datetime(2024, 3, 1, tzinfo=timezone.utc))
    assert bundle.is_live(datetime(2024, 3, 1))  # naive treated as UTC
    assert not bundle.is_live(datetime(2023, 12, 31, tzinfo=timezone.utc))
    assert not bundle.is_live(datetime(2024, 7, 1, tzinfo=timezone.utc))


def test_inactive_bundle_not_live():
    bundle = normalize_bundle(dict(STORED_BUNDLE, isActive=False))
    assert not bundle.is_live(datetime(2024, 3, 1, tzinfo=timezone.utc))


def test_validate_bundle_collects_errors():
    ok, errors = validate_bundle(STORED_BUNDLE)
    assert ok and errors == []

    ok, errors = validate_bundle(
        {
            "name": "",
            "products": [{"productId": "1", "price": -5}, {"price": 2}],
            "discountRule": {"type": "bxgy", "freeQuantity": 1},
            "validFrom": "yesterday",
        }
    )
    assert not ok
    assert "Missing required field: id" in errors
    assert "Missing required field: name" in errors
    assert any(e.startswith("Product 0:") for e in errors)
    assert any(e.startswith("Product 1:") for e in errors)
    assert any(e.startswith("Discount rule:") for e in errors)
    assert any("validFrom" in e for e in errors)


def test_cart_line_item_coerces_values():
    line = CartLineItem(id=42, quantity=2, unit_price="19.99", bundle_id="b1")

    assert line.id == "42"
    assert line.unit_price == Decimal("19.99")
    assert line.line_total == Decimal("39.98")


@pytest.mark.parametrize("kwargs", [{"quantity": -1, "unit_price": "1"}, {"quantity": 1, "unit_price": "-0.01"}])
def test_cart_line_item_rejects_negative_values(kwargs):
    with pytest.raises(InvalidBundleError):
        CartLineItem(id="1", **kwargs)
