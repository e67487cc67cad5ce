"""
Bundle Schemas Package
Value types for bundle pricing and the host platform payloads they are read from.
"""

from .bundle_schemas import (
    # Discount rules
    PercentageDiscount,
    FixedAmountDiscount,
    BuyXGetYDiscount,
    TieredDiscount,
    DiscountTier,
    DiscountRule,
    DiscountRuleDict,

    # Bundle + cart values
    Bundle,
    BundleDict,
    BundleProduct,
    BundleProductDict,
    CartLineItem,
    CartLineItemDict,

    # Helper functions
    as_decimal,
    parse_discount_rule,
    normalize_bundle,
    validate_bundle,
)
from .payloads import CartPayload, OrderPayload
