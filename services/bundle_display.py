"""
Storefront bundle quote: original vs bundle price for the product-page widget.
"""
from typing import Any, Dict, List, Mapping, Optional
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from schemas.bundle_schemas import Bundle, TieredDiscount
from services.pricing import HUNDRED, ZERO, price_bundle, round_price, tier_table
from settings import PricingSettings

logger = logging.getLogger(__name__)


def format_price(amount: Decimal, settings: PricingSettings) -> str:
    """``$1,234.50`` style. Negative amounts keep the sign in front of the symbol."""
    places = settings.price_places
    rounded = round_price(amount, places)
    sign = "-" if rounded < 0 else ""
    text = f"{abs(rounded):,.{places}f}"
    if settings.currency_symbol:
        return f"{sign}{settings.currency_symbol}{text}"
    return f"{sign}{text} {settings.currency}"


@dataclass(frozen=True)
class BundleQuote:
    bundle_id: str
    name: str
    original_total: Decimal
    bundle_price: Decimal
    savings: Decimal
    savings_percentage: Decimal
    total_quantity: int
    tiers: List[Dict[str, str]] = field(default_factory=list)

    def formatted(self, settings: PricingSettings) -> Dict[str, str]:
        return {
            "original_price": format_price(self.original_total, settings),
            "bundle_price": format_price(self.bundle_price, settings),
            "you_save": format_price(self.savings, settings),
            "savings_pct": f"{self.savings_percentage:.0f}%",
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bundleId": self.bundle_id,
            "name": self.name,
            "originalTotal": str(self.original_total),
            "bundlePrice": str(self.bundle_price),
            "savings": str(self.savings),
            "savingsPercentage": str(self.savings_percentage),
            "totalQuantity": self.total_quantity,
            "tiers": self.tiers,
        }


def quote_bundle(
    bundle: Bundle,
    settings: PricingSettings,
    quantities: Optional[Mapping[str, int]] = None,
) -> BundleQuote:
    """
    Price a bundle for display.

    With no ``quantities`` the bundle is quoted as composed. Savings can be
    negative when a fixed bundle price exceeds the component total.
    """
    if quantities is None:
        quantities = bundle.default_quantities
    priced = price_bundle(bundle, quantities)
    places = settings.price_places

    original = round_price(priced.original_total, places)
    bundle_price = round_price(priced.discounted_total, places)
    savings = original - bundle_price
    if priced.original_total > ZERO:
        savings_pct = round_price(priced.discount_amount / priced.original_total * HUNDRED, 2)
    else:
        savings_pct = round_price(ZERO, 2)

    if savings < 0:
        logger.info(
            f"Bundle {bundle.id} is priced above its component total by {abs(savings)}",
            extra={"bundle_id": bundle.id},
        )

    tiers = tier_table(bundle.discount_rule) if isinstance(bundle.discount_rule, TieredDiscount) else []
    return BundleQuote(
        bundle_id=bundle.id,
        name=bundle.name,
        original_total=original,
        bundle_price=bundle_price,
        savings=savings,
        savings_percentage=savings_pct,
        total_quantity=priced.total_quantity,
        tiers=tiers,
    )
