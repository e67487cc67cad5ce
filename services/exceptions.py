"""
Pricing error taxonomy.

InvalidRuleError / InvalidBundleError are hard failures: a malformed
configuration must never silently mis-price an order.
UnknownBundleError is soft: the allocator records it and keeps pricing
the rest of the cart.
"""
from typing import List, Optional


class PricingError(Exception):
    """Base class for bundle pricing failures"""


class InvalidRuleError(PricingError, ValueError):
    """Discount rule is missing a field for its kind or has an out-of-range value"""

    def __init__(self, message: str, rule_type: Optional[str] = None):
        super().__init__(message)
        self.rule_type = rule_type


class InvalidBundleError(PricingError, ValueError):
    """Bundle definition is malformed (bad product line, missing ids)"""


class UnknownBundleError(PricingError, KeyError):
    """Cart line items reference a bundle that is not in the lookup"""

    def __init__(self, bundle_id: str, line_item_ids: Optional[List[str]] = None):
        super().__init__(bundle_id)
        self.bundle_id = bundle_id
        self.line_item_ids = list(line_item_ids or [])

    def __str__(self) -> str:
        return (
            f"Unknown bundle '{self.bundle_id}' "
            f"referenced by line items {self.line_item_ids}"
        )
