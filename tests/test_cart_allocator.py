import logging
import sys
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas.bundle_schemas import (
    Bundle,
    BundleProduct,
    BuyXGetYDiscount,
    CartLineItem,
    DiscountTier,
    FixedAmountDiscount,
    PercentageDiscount,
    TieredDiscount,
)
from services.cart_allocator import allocate, build_cart_update, group_by_bundle
from services.exceptions import UnknownBundleError
from services.pricing import resolve


def _bundle(bundle_id, rule):
    # Definition prices are irrelevant to cart allocation; the cart's own prices are used
    return Bundle(
        id=bundle_id,
        name=f"Bundle {bundle_id}",
        products=(
            BundleProduct(product_id="p1", variant_id="v1", quantity=1, unit_price=Decimal("1")),
            BundleProduct(product_id="p2", variant_id="v2", quantity=1, unit_price=Decimal("1")),
        ),
        discount_rule=rule,
    )


def _line(line_id, qty, price, bundle_id=None, key=None):
    return CartLineItem(id=line_id, quantity=qty, unit_price=Decimal(price), bundle_id=bundle_id, key=key)


def test_percentage_group_spreads_discount_proportionally():
    lookup = {"b1": _bundle("b1", PercentageDiscount(value=Decimal("10")))}
    lines = [_line("1", 1, "20", "b1"), _line("2", 1, "30", "b1")]

    result = allocate(lines, lookup)

    assert [i.id for i in result.items] == ["1", "2"]
    assert result.items[0].discounted_unit_price == Decimal("18")
    assert result.items[1].discounted_unit_price == Decimal("27")
    assert result.total_discount == Decimal("5")


def test_untagged_lines_excluded_from_result():
    lookup = {"b1": _bundle("b1", PercentageDiscount(value=Decimal("10")))}
    lines = [_line("1", 1, "20", "b1"), _line("loose", 3, "9.99")]

    result = allocate(lines, lookup)

    assert [i.id for i in result.items] == ["1"]
    assert result.price_for("loose") is None


def test_conservation_per_group():
    rules = [
        PercentageDiscount(value=Decimal("17.5")),
        FixedAmountDiscount(value=Decimal("49.99")),
        BuyXGetYDiscount(min_quantity=3, free_quantity=1),
        TieredDiscount(tiers=(DiscountTier(quantity=2, discount=Decimal("5")), DiscountTier(quantity=4, discount=Decimal("12")))),
    ]
    lines = [_line("a", 2, "19.99", "b"), _line("b", 1, "7.33", "b"), _line("c", 3, "4.10", "b")]

    for rule in rules:
        bundle = _bundle("b", rule)
        result = allocate(lines, {"b": bundle})
        group = result.groups[0]

        allocated_total = sum(i.discounted_unit_price * i.quantity for i in result.items)
        assert abs(allocated_total - group.discounted_total) < Decimal("0.01")

        rounded_total = sum(Decimal(p) * l.quantity for p, l in zip(build_cart_update(result)["updates"].values(), lines))
        assert abs(rounded_total - group.discounted_total) <= Decimal("0.01") * sum(l.quantity for l in lines)


def test_group_total_matches_resolver_on_cart_prices():
    rule = BuyXGetYDiscount(min_quantity=2, free_quantity=1)
    lines = [_line("A", 2, "20", "b"), _line("B", 2, "30", "b")]
    priced_bundle = Bundle(
        id="b",
        name="cart view",
        products=(
            BundleProduct(product_id="A", variant_id="", quantity=1, unit_price=Decimal("20")),
            BundleProduct(product_id="B", variant_id="", quantity=1, unit_price=Decimal("30")),
        ),
        discount_rule=rule,
    )

    result = allocate(lines, {"b": _bundle("b", rule)})

    assert result.groups[0].discounted_total == resolve(priced_bundle, {"A": 2, "B": 2}) == Decimal("50")
    assert result.items[0].discounted_unit_price == Decimal("10")
    assert result.items[1].discounted_unit_price == Decimal("15")
    assert result.total_discount == Decimal("50")


def test_unknown_bundle_is_skipped_not_raised(caplog):
    lookup = {"known": _bundle("known", PercentageDiscount(value=Decimal("50")))}
    lines = [
        _line("1", 1, "10", "known"),
        _line("2", 2, "15", "missing"),
        _line("3", 1, "5", "missing"),
    ]

    with caplog.at_level(logging.WARNING):
        result = allocate(lines, lookup)

    assert [i.id for i in result.items] == ["1"]
    assert result.total_discount == Decimal("5")
    assert len(result.unresolved) == 1
    error = result.unresolved[0]
    assert isinstance(error, UnknownBundleError)
    assert error.bundle_id == "missing"
    assert error.line_item_ids == ["2", "3"]
    assert "missing" in caplog.text


def test_zero_priced_group_gets_no_discount():
    lookup = {"b": _bundle("b", FixedAmountDiscount(value=Decimal("10")))}
    lines = [_line("1", 1, "0", "b"), _line("2", 2, "0", "b")]

    result = allocate(lines, lookup)

    assert all(i.discounted_unit_price == Decimal("0") for i in result.items)
    assert result.total_discount == Decimal("0")
    assert result.groups[0].discounted_total == Decimal("0")


def test_fixed_amount_above_total_raises_prices():
    lookup = {"b": _bundle("b", FixedAmountDiscount(value=Decimal("60")))}
    lines = [_line("1", 1, "20", "b"), _line("2", 1, "30", "b")]

    result = allocate(lines, lookup)

    assert result.items[0].discounted_unit_price == Decimal("24")
    assert result.items[1].discounted_unit_price == Decimal("36")
    assert result.total_discount == Decimal("-10")


def test_multiple_groups_sum_discounts():
    lookup = {
        "x": _bundle("x", PercentageDiscount(value=Decimal("10"))),
        "y": _bundle("y", FixedAmountDiscount(value=Decimal("15"))),
    }
    lines = [
        _line("1", 1, "50", "x"),
        _line("2", 1, "10", "y"),
        _line("3", 1, "10", "y"),
    ]

    result = allocate(lines, lookup)

    assert [g.bundle_id for g in result.groups] == ["x", "y"]
    assert result.total_discount == Decimal("5") + Decimal("5")


def test_group_by_bundle_preserves_first_seen_order():
    lines = [_line("1", 1, "1", "b"), _line("2", 1, "1", "a"), _line("3", 1, "1", "b"), _line("4", 1, "1")]
    groups = group_by_bundle(lines)

    assert list(groups) == ["b", "a"]
    assert [l.id for l in groups["b"]] == ["1", "3"]


def test_build_cart_update_rounds_half_up():
    lookup = {"b": _bundle("b", PercentageDiscount(value=Decimal("33")))}
    lines = [_line("11", 1, "10.05", "b")]

    update = build_cart_update(allocate(lines, lookup))

    # 10.05 * 0.67 = 6.7335
    assert update == {"updates": {"11": "6.73"}}


def test_to_dict_reports_unresolved():
    result = allocate([_line("1", 1, "10", "ghost")], {})
    payload = result.to_dict()

    assert payload["items"] == []
    assert payload["totalDiscount"] == "0.00"
    assert payload["unresolvedBundles"] == ["ghost"]


def test_same_variant_twice_in_one_group():
    lookup = {
        "b": _bundle("b", PercentageDiscount(value=Decimal("10"))),
        "other": _bundle("other", FixedAmountDiscount(value=Decimal("4"))),
    }
    lines = [
        _line("111", 1, "20", "b", key="111:engraved"),
        _line("111", 2, "20", "b", key="111:plain"),
        _line("loose", 1, "9.99"),
        _line("222", 1, "5", "other", key="222:gift"),
    ]

    result = allocate(lines, lookup)

    first = result.groups[0]
    assert first.original_total == Decimal("60")
    assert first.discounted_total == Decimal("54")
    assert first.line_item_ids == ["111:engraved", "111:plain"]
    assert result.groups[1].discounted_total == Decimal("4")
    assert result.total_discount == Decimal("7")
    assert build_cart_update(result) == {
        "updates": {"111:engraved": "18.00", "111:plain": "18.00", "222:gift": "4.00"}
    }


def test_same_variant_twice_without_keys():
    lookup = {
        "b": _bundle("b", PercentageDiscount(value=Decimal("10"))),
        "other": _bundle("other", PercentageDiscount(value=Decimal("20"))),
    }
    lines = [_line("111", 1, "20", "b"), _line("111", 2, "20", "b"), _line("222", 1, "5", "other")]

    result = allocate(lines, lookup)

    # both lines count towards the group total
    assert result.groups[0].original_total == Decimal("60")
    assert [i.quantity for i in result.items] == [1, 2, 1]
    assert result.total_discount == Decimal("7")
    assert build_cart_update(result) == {"updates": {"111": "18.00", "222": "4.00"}}


def test_price_for_uses_line_key():
    lookup = {"b": _bundle("b", PercentageDiscount(value=Decimal("10")))}
    lines = [_line("111", 1, "20", "b", key="k-small"), _line("111", 1, "30", "b", key="k-large")]

    result = allocate(lines, lookup)

    assert result.price_for("k-small") == Decimal("18")
    assert result.price_for("k-large") == Decimal("27")
    assert result.price_for("111") is None
    assert [i["key"] for i in result.to_dict()["items"]] == ["k-small", "k-large"]
