"""
Cart Discount Allocator
Groups bundle-tagged cart lines, prices each group with the resolver and spreads
the bundle discount proportionally back onto the lines (the cart prices per line,
not per bundle).
"""
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal

from schemas.bundle_schemas import Bundle, CartLineItem
from services.exceptions import UnknownBundleError
from services.pricing import ZERO, apply_rule, round_price

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocatedItem:
    id: str
    quantity: int
    unit_price: Decimal
    discounted_unit_price: Decimal  # unrounded
    key: Optional[str] = None

    @property
    def line_key(self) -> str:
        return self.key or self.id

    @property
    def discounted_line_total(self) -> Decimal:
        return self.discounted_unit_price * self.quantity

    def to_dict(self, places: int = 2) -> Dict[str, Any]:
        return {
            "id": self.id,
            "key": self.line_key,
            "quantity": self.quantity,
            "unitPrice": str(round_price(self.unit_price, places)),
            "discountedUnitPrice": str(round_price(self.discounted_unit_price, places)),
        }


@dataclass(frozen=True)
class GroupSummary:
    """Pricing of one bundle group in the cart"""
    bundle_id: str
    original_total: Decimal
    discounted_total: Decimal
    line_item_ids: List[str] = field(default_factory=list)

    @property
    def discount(self) -> Decimal:
        return self.original_total - self.discounted_total


@dataclass
class AllocationResult:
    items: List[AllocatedItem] = field(default_factory=list)
    total_discount: Decimal = ZERO
    groups: List[GroupSummary] = field(default_factory=list)
    unresolved: List[UnknownBundleError] = field(default_factory=list)

    def price_for(self, line_key: str) -> Optional[Decimal]:
        """Discounted unit price of the line with this key (its id when it has no key)."""
        for item in self.items:
            if item.line_key == line_key:
                return item.discounted_unit_price
        return None

    def to_dict(self, places: int = 2) -> Dict[str, Any]:
        return {
            "items": [i.to_dict(places) for i in self.items],
            "totalDiscount": str(round_price(self.total_discount, places)),
            "unresolvedBundles": [e.bundle_id for e in self.unresolved],
        }


def group_by_bundle(line_items: Sequence[CartLineItem]) -> "OrderedDict[str, List[CartLineItem]]":
    """Bundle id -> lines, in first-seen order. Untagged lines are left out."""
    groups: "OrderedDict[str, List[CartLineItem]]" = OrderedDict()
    for item in line_items:
        if not item.bundle_id:
            continue
        groups.setdefault(item.bundle_id, []).append(item)
    return groups


def allocate_group(bundle: Bundle, items: List[CartLineItem]) -> Tuple[GroupSummary, List[AllocatedItem]]:
    """
    Price one bundle group.

    The bundle's rule runs over the cart's own lines and prices. Every line
    counts on its own, so the same variant on two lines is summed twice.

    Returns:
        (GroupSummary, [AllocatedItem, ...])
    """
    original = sum((item.line_total for item in items), ZERO)
    total_quantity = sum(item.quantity for item in items)

    if original == ZERO:
        # Nothing to spread a discount over; no discount
        ratio = Decimal('1')
        discounted = original
    else:
        discounted = apply_rule(bundle.discount_rule, original, total_quantity)
        ratio = discounted / original

    allocated = [
        AllocatedItem(
            id=item.id,
            quantity=item.quantity,
            unit_price=item.unit_price,
            discounted_unit_price=item.unit_price * ratio,
            key=item.key,
        )
        for item in items
    ]
    summary = GroupSummary(
        bundle_id=bundle.id,
        original_total=original,
        discounted_total=discounted,
        line_item_ids=[item.line_key for item in items],
    )
    return summary, allocated


def allocate(
    line_items: Sequence[CartLineItem],
    bundle_lookup: Mapping[str, Bundle],
) -> AllocationResult:
    """
    Distribute bundle discounts across cart lines.

    Lines without a bundle id are not returned; callers keep them at their own
    price. A group whose bundle is missing from ``bundle_lookup`` is skipped
    (priced at original value) and reported in ``result.unresolved``.
    """
    result = AllocationResult()

    for bundle_id, items in group_by_bundle(line_items).items():
        bundle = bundle_lookup.get(bundle_id)
        if bundle is None:
            error = UnknownBundleError(bundle_id, [item.line_key for item in items])
            logger.warning(f"Skipping bundle group: {error}", extra={"bundle_id": bundle_id})
            result.unresolved.append(error)
            continue

        summary, allocated = allocate_group(bundle, items)
        result.groups.append(summary)
        result.items.extend(allocated)
        result.total_discount += summary.discount

    if result.groups:
        logger.info(
            f"Allocated {len(result.groups)} bundle group(s), "
            f"total discount {round_price(result.total_discount)}"
        )
    return result


def build_cart_update(result: AllocationResult, places: int = 2) -> Dict[str, Dict[str, str]]:
    """
    Body for the host cart's update call: ``{"updates": {line_key: price}}``.

    Entries use the line key, so two lines of one variant stay apart when
    the cart gave each line a key. Prices are rounded half-up here; posting
    the body is the caller's job.
    """
    return {
        "updates": {
            item.line_key: str(round_price(item.discounted_unit_price, places))
            for item in result.items
        }
    }
