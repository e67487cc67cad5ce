"""
Bundle Pricing Resolver
Deterministic discounted totals for a bundle and a set of purchased quantities.

Pure functions: no I/O, inputs are never mutated. All arithmetic is Decimal
and stays unrounded; ``round_price`` is applied only where a value is presented.
"""
from typing import Dict, List, Mapping, Optional, Tuple
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from schemas.bundle_schemas import (
    Bundle,
    BundleProduct,
    DiscountRule,
    PercentageDiscount,
    FixedAmountDiscount,
    BuyXGetYDiscount,
    TieredDiscount,
    DiscountTier,
)
from services.exceptions import InvalidRuleError, InvalidBundleError

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class BundlePriceBreakdown:
    """Unrounded pricing of one bundle purchase"""
    bundle_id: str
    original_total: Decimal
    discounted_total: Decimal
    total_quantity: int

    @property
    def discount_amount(self) -> Decimal:
        return self.original_total - self.discounted_total


def round_price(amount: Decimal, places: int = 2) -> Decimal:
    """Round half-up to ``places`` decimals. Presentation only."""
    quantum = Decimal(1).scaleb(-places)
    return Decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)


def _purchased_quantity(product: BundleProduct, quantities: Mapping[str, int]) -> int:
    qty = quantities.get(product.product_id, 0)
    if isinstance(qty, bool) or not isinstance(qty, int):
        try:
            as_int = int(qty)
        except (TypeError, ValueError):
            raise InvalidBundleError(f"quantity for {product.product_id} must be an integer, got {qty!r}")
        if as_int != qty:
            raise InvalidBundleError(f"quantity for {product.product_id} must be an integer, got {qty!r}")
        qty = as_int
    if qty < 0:
        raise InvalidBundleError(f"quantity for {product.product_id} must be >= 0, got {qty}")
    return qty


def purchased_lines(bundle: Bundle, quantities: Mapping[str, int]) -> List[Tuple[BundleProduct, int]]:
    """Pair every bundle product with its purchased quantity (absent -> 0)."""
    unknown = set(quantities) - {p.product_id for p in bundle.products}
    if unknown:
        logger.debug(f"Ignoring quantities for products outside bundle {bundle.id}: {sorted(unknown)}")
    return [(product, _purchased_quantity(product, quantities)) for product in bundle.products]


def original_total(bundle: Bundle, quantities: Mapping[str, int]) -> Decimal:
    return sum((p.unit_price * qty for p, qty in purchased_lines(bundle, quantities)), ZERO)


def select_tier(rule: TieredDiscount, total_quantity: int) -> Optional[DiscountTier]:
    """
    Highest threshold <= total_quantity, or None.

    Below every threshold there is no discount; the lowest tier is not a floor.
    Equal thresholds resolve to the one listed first.
    """
    for tier in sorted(rule.tiers, key=lambda t: t.quantity, reverse=True):
        if total_quantity >= tier.quantity:
            return tier
    return None


def apply_rule(rule: DiscountRule, original: Decimal, total_quantity: int) -> Decimal:
    """Discounted total for ``original`` under ``rule``."""
    if isinstance(rule, PercentageDiscount):
        return original * (HUNDRED - rule.value) / HUNDRED

    if isinstance(rule, FixedAmountDiscount):
        # Not capped by the original total
        return rule.value

    if isinstance(rule, BuyXGetYDiscount):
        if total_quantity <= 0:
            return original
        # Not capped by the purchased quantity either
        free_units = (total_quantity // rule.min_quantity) * rule.free_quantity
        return original * (total_quantity - free_units) / total_quantity

    if isinstance(rule, TieredDiscount):
        tier = select_tier(rule, total_quantity)
        if tier is None:
            return original
        return original * (HUNDRED - tier.discount) / HUNDRED

    raise InvalidRuleError(f"Unsupported discount rule: {rule!r}")


def price_bundle(bundle: Bundle, quantities: Mapping[str, int]) -> BundlePriceBreakdown:
    """Original and discounted totals for the purchased quantities."""
    lines = purchased_lines(bundle, quantities)
    total = sum((p.unit_price * qty for p, qty in lines), ZERO)
    total_qty = sum(qty for _, qty in lines)

    discounted = apply_rule(bundle.discount_rule, total, total_qty)
    logger.debug(
        f"Resolved bundle {bundle.id} ({bundle.discount_rule.kind}): "
        f"qty={total_qty} original={total} discounted={discounted}"
    )
    return BundlePriceBreakdown(
        bundle_id=bundle.id,
        original_total=total,
        discounted_total=discounted,
        total_quantity=total_qty,
    )


def resolve(bundle: Bundle, quantities: Mapping[str, int]) -> Decimal:
    """
    Discounted total for a bundle purchase.

    Args:
        bundle: Bundle definition (prices + discount rule)
        quantities: product_id -> purchased quantity; products absent contribute zero

    Raises:
        InvalidRuleError: rule is not one of the supported kinds
        InvalidBundleError: a quantity is negative or not a whole number
    """
    return price_bundle(bundle, quantities).discounted_total


def resolve_default(bundle: Bundle) -> BundlePriceBreakdown:
    """Price the bundle as composed (each product at its own bundle quantity)."""
    return price_bundle(bundle, bundle.default_quantities)


def tier_table(rule: TieredDiscount) -> List[Dict[str, str]]:
    """Ascending threshold table for display ("Buy 3+, save 10%")."""
    rows = []
    for tier in sorted(rule.tiers, key=lambda t: t.quantity):
        rows.append({"quantity": str(tier.quantity), "discount": str(tier.discount)})
    return rows
