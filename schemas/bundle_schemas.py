"""
Bundle Pricing Schemas
======================

Canonical value types for bundle pricing. Everything that prices a bundle
(product-page quote, cart recalculation, order analytics) works on these
types so the arithmetic is identical wherever it runs.

DISCOUNT RULE KINDS:
--------------------
- percentage: ``value``% off the summed line total
- fixed:      bundle price is fixed at ``value`` (NOT capped by the original total)
- bxgy:       every ``minQuantity`` units pooled across the bundle earn
              ``freeQuantity`` free units, pro-rated across the total
- tiered:     highest ``tiers[].quantity`` <= total quantity wins, applied as
              ``tiers[].discount``% off

STORED JSON SHAPE:
------------------
{
    "id": "...", "name": "...", "description": "...",
    "products": [{"productId": "...", "variantId": "...", "quantity": 1, "price": "20.00"}],
    "discountRule": {"type": "bxgy", "minQuantity": 2, "freeQuantity": 1},
    "isActive": true, "validFrom": "2024-01-01T00:00:00Z", "validTo": null
}

Legacy documents carry ``discountRules`` (a list); the first entry is used.
"""

from typing import List, Dict, Any, Optional, Union, TypedDict, Mapping, Tuple, Type
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone
import logging

from services.exceptions import InvalidRuleError, InvalidBundleError

logger = logging.getLogger(__name__)

_MISSING = object()


# =============================================================================
# TYPE DEFINITIONS (TypedDict for JSON payloads)
# =============================================================================

class BundleProductDict(TypedDict, total=False):
    """Bundle product line as stored."""
    productId: str
    variantId: str
    quantity: int
    price: str            # Decimal rendered as string


class DiscountTierDict(TypedDict, total=False):
    quantity: int         # Threshold (total bundle quantity)
    discount: str         # Percent off once the threshold is reached


class DiscountRuleDict(TypedDict, total=False):
    """Discount rule as stored. Fields beyond ``type`` depend on the kind."""
    type: str             # "percentage" | "fixed" | "bxgy" | "tiered"
    value: str
    minQuantity: int
    freeQuantity: int
    tiers: List[DiscountTierDict]


class BundleDict(TypedDict, total=False):
    id: str
    shopId: Optional[str]
    name: str
    description: str
    products: List[BundleProductDict]
    discountRule: DiscountRuleDict
    isActive: bool
    validFrom: Optional[str]
    validTo: Optional[str]


class CartLineItemDict(TypedDict, total=False):
    id: str
    quantity: int
    unitPrice: str
    bundleId: Optional[str]
    variantId: Optional[str]
    key: Optional[str]


# =============================================================================
# COERCION HELPERS
# =============================================================================

def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-None value among ``keys`` or _MISSING."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return _MISSING


def _to_decimal(value: Any, name: str, error_cls: Type[Exception] = ValueError) -> Decimal:
    """Convert JSON-ish numbers to Decimal via str() so floats keep their printed value."""
    if value is _MISSING or value is None or isinstance(value, bool):
        raise error_cls(f"{name} must be a number, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise error_cls(f"{name} must be a number, got {value!r}")
    if not result.is_finite():
        raise error_cls(f"{name} must be finite, got {value!r}")
    return result


def _to_int(value: Any, name: str, error_cls: Type[Exception] = ValueError) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = _to_decimal(value, name, error_cls)
    if number != number.to_integral_value():
        raise error_cls(f"{name} must be a whole number, got {value!r}")
    return int(number)


def _to_datetime(value: Any, name: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise InvalidBundleError(f"{name} is not an ISO-8601 timestamp: {value!r}")


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps from storage are UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def as_decimal(value: Any, name: str = "value") -> Decimal:
    """Public Decimal coercion used by callers that hold raw JSON numbers."""
    return _to_decimal(value, name)


# =============================================================================
# DISCOUNT RULES (sum type)
# =============================================================================

@dataclass(frozen=True)
class PercentageDiscount:
    """``value``% off the summed line total (0 < value < 100)."""
    value: Decimal

    kind = "percentage"

    def __post_init__(self):
        value = _to_decimal(self.value, "percentage value", InvalidRuleError)
        if not Decimal("0") < value < Decimal("100"):
            raise InvalidRuleError(
                f"percentage value must be between 0 and 100 (exclusive), got {value}",
                rule_type=self.kind,
            )
        object.__setattr__(self, "value", value)

    def to_dict(self) -> DiscountRuleDict:
        return {"type": self.kind, "value": str(self.value)}


@dataclass(frozen=True)
class FixedAmountDiscount:
    """Bundle price is fixed at ``value`` regardless of the original total."""
    value: Decimal

    kind = "fixed"

    def __post_init__(self):
        value = _to_decimal(self.value, "fixed amount value", InvalidRuleError)
        if value < 0:
            raise InvalidRuleError(f"fixed amount must be >= 0, got {value}", rule_type=self.kind)
        object.__setattr__(self, "value", value)

    def to_dict(self) -> DiscountRuleDict:
        return {"type": self.kind, "value": str(self.value)}


@dataclass(frozen=True)
class BuyXGetYDiscount:
    """Every ``min_quantity`` pooled units earn ``free_quantity`` free units."""
    min_quantity: int
    free_quantity: int

    kind = "bxgy"

    def __post_init__(self):
        for name in ("min_quantity", "free_quantity"):
            raw = getattr(self, name)
            if raw is None:
                raise InvalidRuleError(f"bxgy rule missing {name}", rule_type=self.kind)
            value = _to_int(raw, name, InvalidRuleError)
            if value < 1:
                raise InvalidRuleError(f"bxgy {name} must be >= 1, got {value}", rule_type=self.kind)
            object.__setattr__(self, name, value)

    def to_dict(self) -> DiscountRuleDict:
        return {
            "type": self.kind,
            "minQuantity": self.min_quantity,
            "freeQuantity": self.free_quantity,
        }


@dataclass(frozen=True)
class DiscountTier:
    """Percent off applied once the bundle's total quantity reaches ``quantity``."""
    quantity: int
    discount: Decimal

    def __post_init__(self):
        quantity = _to_int(self.quantity, "tier quantity", InvalidRuleError)
        if quantity < 1:
            raise InvalidRuleError(f"tier quantity must be >= 1, got {quantity}", rule_type="tiered")
        discount = _to_decimal(self.discount, "tier discount", InvalidRuleError)
        if not Decimal("0") <= discount <= Decimal("100"):
            raise InvalidRuleError(f"tier discount must be within 0-100, got {discount}", rule_type="tiered")
        object.__setattr__(self, "quantity", quantity)
        object.__setattr__(self, "discount", discount)

    def to_dict(self) -> DiscountTierDict:
        return {"quantity": self.quantity, "discount": str(self.discount)}


@dataclass(frozen=True)
class TieredDiscount:
    """Quantity tiers. Order as given is kept; selection sorts by threshold."""
    tiers: Tuple[DiscountTier, ...]

    kind = "tiered"

    def __post_init__(self):
        if self.tiers is None:
            raise InvalidRuleError("tiered rule missing tiers", rule_type=self.kind)
        tiers = tuple(self.tiers)
        for tier in tiers:
            if not isinstance(tier, DiscountTier):
                raise InvalidRuleError(f"tiered rule has a non-tier entry: {tier!r}", rule_type=self.kind)
        object.__setattr__(self, "tiers", tiers)

    def to_dict(self) -> DiscountRuleDict:
        return {"type": self.kind, "tiers": [t.to_dict() for t in self.tiers]}


DiscountRule = Union[PercentageDiscount, FixedAmountDiscount, BuyXGetYDiscount, TieredDiscount]

DISCOUNT_RULE_TYPES: Tuple[type, ...] = (
    PercentageDiscount,
    FixedAmountDiscount,
    BuyXGetYDiscount,
    TieredDiscount,
)

# Stored "type" values (and aliases seen in older payloads) -> canonical kind
RULE_TYPE_ALIASES: Dict[str, str] = {
    "percentage": "percentage",
    "percent": "percentage",
    "fixed": "fixed",
    "fixed_amount": "fixed",
    "bxgy": "bxgy",
    "buy_x_get_y": "bxgy",
    "bogo": "bxgy",
    "tiered": "tiered",
    "volume": "tiered",
}


def parse_discount_rule(data: Any) -> DiscountRule:
    """
    Build a DiscountRule from its stored JSON form.

    Raises:
        InvalidRuleError: unknown kind, or a field required by the kind is absent/invalid
    """
    if isinstance(data, DISCOUNT_RULE_TYPES):
        return data
    if not isinstance(data, Mapping):
        raise InvalidRuleError(f"discount rule must be an object, got {type(data).__name__}")

    raw_type = _pick(data, "type", "discount_type", "kind")
    if raw_type is _MISSING:
        raise InvalidRuleError("discount rule missing type")
    kind = RULE_TYPE_ALIASES.get(str(raw_type).strip().lower())
    if kind is None:
        raise InvalidRuleError(f"unknown discount rule type: {raw_type!r}")

    def required(*keys: str) -> Any:
        value = _pick(data, *keys)
        if value is _MISSING:
            raise InvalidRuleError(f"{kind} rule missing '{keys[0]}'", rule_type=kind)
        return value

    if kind == "percentage":
        return PercentageDiscount(value=required("value", "discount_value"))
    if kind == "fixed":
        return FixedAmountDiscount(value=required("value", "discount_value"))
    if kind == "bxgy":
        return BuyXGetYDiscount(
            min_quantity=required("minQuantity", "min_quantity", "buy_qty"),
            free_quantity=required("freeQuantity", "free_quantity", "get_qty"),
        )

    raw_tiers = required("tiers", "volume_tiers")
    if not isinstance(raw_tiers, (list, tuple)):
        raise InvalidRuleError("tiered rule 'tiers' must be a list", rule_type=kind)
    tiers = []
    for i, raw in enumerate(raw_tiers):
        if isinstance(raw, DiscountTier):
            tiers.append(raw)
            continue
        if not isinstance(raw, Mapping):
            raise InvalidRuleError(f"tier {i} must be an object", rule_type=kind)
        quantity = _pick(raw, "quantity", "min_qty", "minQuantity")
        discount = _pick(raw, "discount", "discount_value", "value")
        if quantity is _MISSING or discount is _MISSING:
            raise InvalidRuleError(f"tier {i} needs both quantity and discount", rule_type=kind)
        tiers.append(DiscountTier(quantity=quantity, discount=discount))
    return TieredDiscount(tiers=tuple(tiers))


# =============================================================================
# BUNDLE + CART VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class BundleProduct:
    """One line of a bundle's composition."""
    product_id: str
    variant_id: str
    quantity: int
    unit_price: Decimal

    def __post_init__(self):
        if not self.product_id:
            raise InvalidBundleError("bundle product missing product_id")
        quantity = _to_int(self.quantity, f"quantity of {self.product_id}", InvalidBundleError)
        if quantity < 1:
            raise InvalidBundleError(f"quantity of {self.product_id} must be >= 1, got {quantity}")
        unit_price = _to_decimal(self.unit_price, f"price of {self.product_id}", InvalidBundleError)
        if unit_price < 0:
            raise InvalidBundleError(f"price of {self.product_id} must be >= 0, got {unit_price}")
        object.__setattr__(self, "product_id", str(self.product_id))
        object.__setattr__(self, "variant_id", str(self.variant_id or ""))
        object.__setattr__(self, "quantity", quantity)
        object.__setattr__(self, "unit_price", unit_price)

    def to_dict(self) -> BundleProductDict:
        return {
            "productId": self.product_id,
            "variantId": self.variant_id,
            "quantity": self.quantity,
            "price": str(self.unit_price),
        }


@dataclass(frozen=True)
class Bundle:
    """A named group of products priced under one discount rule."""
    id: str
    name: str
    products: Tuple[BundleProduct, ...]
    discount_rule: DiscountRule
    description: str = ""
    shop_id: Optional[str] = None
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None

    def __post_init__(self):
        products = tuple(self.products or ())
        if not products:
            raise InvalidBundleError(f"bundle {self.id} has no products")
        seen = set()
        for product in products:
            if product.product_id in seen:
                raise InvalidBundleError(f"bundle {self.id} lists product {product.product_id} twice")
            seen.add(product.product_id)
        if not isinstance(self.discount_rule, DISCOUNT_RULE_TYPES):
            raise InvalidRuleError(f"bundle {self.id} has an unsupported discount rule: {self.discount_rule!r}")
        object.__setattr__(self, "products", products)

    @property
    def default_quantities(self) -> Dict[str, int]:
        """The bundle's own composition as a product_id -> quantity map."""
        return {p.product_id: p.quantity for p in self.products}

    def is_live(self, at: Optional[datetime] = None) -> bool:
        """Active and inside its validity window (bounds inclusive)."""
        if not self.is_active:
            return False
        moment = _as_utc(at or datetime.now(timezone.utc))
        if self.valid_from is not None and moment < _as_utc(self.valid_from):
            return False
        if self.valid_to is not None and moment > _as_utc(self.valid_to):
            return False
        return True

    def to_dict(self) -> BundleDict:
        return {
            "id": self.id,
            "shopId": self.shop_id,
            "name": self.name,
            "description": self.description,
            "products": [p.to_dict() for p in self.products],
            "discountRule": self.discount_rule.to_dict(),
            "isActive": self.is_active,
            "validFrom": self.valid_from.isoformat() if self.valid_from else None,
            "validTo": self.valid_to.isoformat() if self.valid_to else None,
        }


@dataclass(frozen=True)
class CartLineItem:
    """One cart entry. Items without ``bundle_id`` are never repriced."""
    id: str
    quantity: int
    unit_price: Decimal
    bundle_id: Optional[str] = None
    variant_id: Optional[str] = None
    bundle_name: Optional[str] = None
    # Unique per line; the id alone repeats when one variant sits on two lines
    key: Optional[str] = None

    def __post_init__(self):
        if self.id is None or self.id == "":
            raise InvalidBundleError("cart line item missing id")
        quantity = _to_int(self.quantity, f"quantity of line {self.id}", InvalidBundleError)
        if quantity < 0:
            raise InvalidBundleError(f"quantity of line {self.id} must be >= 0, got {quantity}")
        unit_price = _to_decimal(self.unit_price, f"price of line {self.id}", InvalidBundleError)
        if unit_price < 0:
            raise InvalidBundleError(f"price of line {self.id} must be >= 0, got {unit_price}")
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "quantity", quantity)
        object.__setattr__(self, "unit_price", unit_price)
        object.__setattr__(self, "bundle_id", str(self.bundle_id) if self.bundle_id else None)
        object.__setattr__(self, "key", str(self.key) if self.key else None)

    @property
    def line_key(self) -> str:
        return self.key or self.id

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> CartLineItemDict:
        return {
            "id": self.id,
            "quantity": self.quantity,
            "unitPrice": str(self.unit_price),
            "bundleId": self.bundle_id,
            "variantId": self.variant_id,
            "key": self.key,
        }


# =============================================================================
# NORMALIZATION (stored documents -> value types)
# =============================================================================

def _normalize_product(
    raw: Any,
    index: int,
    prices: Optional[Mapping[str, Any]] = None,
) -> BundleProduct:
    if isinstance(raw, BundleProduct):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidBundleError(f"product {index} must be an object, got {type(raw).__name__}")

    product_id = _pick(raw, "productId", "product_id", "id")
    if product_id is _MISSING or not str(product_id).strip():
        raise InvalidBundleError(f"product {index} missing productId")
    variant_id = _pick(raw, "variantId", "variant_id")
    variant_id = "" if variant_id is _MISSING else str(variant_id)

    price = _pick(raw, "price", "unitPrice", "unit_price")
    if price is _MISSING and prices:
        # Stored bundles may omit prices; fill from the live catalog
        price = prices.get(variant_id) if variant_id else None
        if price is None:
            price = prices.get(str(product_id))
        if price is None:
            price = _MISSING
    if price is _MISSING:
        raise InvalidBundleError(f"product {index} ({product_id}) has no price")

    quantity = _pick(raw, "quantity")
    return BundleProduct(
        product_id=str(product_id),
        variant_id=variant_id,
        quantity=1 if quantity is _MISSING else quantity,
        unit_price=price,
    )


def _rule_source(doc: Mapping[str, Any]) -> Any:
    rule = _pick(doc, "discountRule", "discount_rule")
    if rule is not _MISSING:
        return rule
    rules = _pick(doc, "discountRules", "discount_rules")
    if rules is not _MISSING and isinstance(rules, (list, tuple)) and rules:
        if len(rules) > 1:
            logger.debug(f"Bundle {doc.get('id') or doc.get('_id')} has {len(rules)} rules; using the first")
        return rules[0]
    raise InvalidRuleError(f"bundle {doc.get('id') or doc.get('_id')} has no discount rule")


def normalize_bundle(
    doc: Mapping[str, Any],
    prices: Optional[Mapping[str, Any]] = None,
) -> Bundle:
    """
    Build a Bundle from a stored document.

    Args:
        doc: Bundle document (camelCase or snake_case keys, ``id`` or ``_id``)
        prices: Optional variant_id/product_id -> price map used when the
            document does not carry prices itself

    Raises:
        InvalidBundleError: products missing or malformed
        InvalidRuleError: discount rule missing or malformed
    """
    if isinstance(doc, Bundle):
        return doc
    if not isinstance(doc, Mapping):
        raise InvalidBundleError(f"bundle must be an object, got {type(doc).__name__}")

    bundle_id = _pick(doc, "id", "_id")
    if bundle_id is _MISSING or not str(bundle_id).strip():
        raise InvalidBundleError("bundle missing id")

    raw_products = doc.get("products")
    if isinstance(raw_products, Mapping):
        raw_products = raw_products.get("items")
    if not raw_products:
        raise InvalidBundleError(f"bundle {bundle_id} has no products")

    products = tuple(_normalize_product(p, i, prices) for i, p in enumerate(raw_products))
    rule = parse_discount_rule(_rule_source(doc))

    is_active = _pick(doc, "isActive", "is_active")
    shop_id = _pick(doc, "shopId", "shop_id")
    valid_from = _pick(doc, "validFrom", "valid_from")
    valid_to = _pick(doc, "validTo", "valid_to")

    return Bundle(
        id=str(bundle_id),
        name=str(doc.get("name") or ""),
        description=str(doc.get("description") or ""),
        products=products,
        discount_rule=rule,
        shop_id=None if shop_id is _MISSING else str(shop_id),
        is_active=True if is_active is _MISSING else bool(is_active),
        valid_from=None if valid_from is _MISSING else _to_datetime(valid_from, "validFrom"),
        valid_to=None if valid_to is _MISSING else _to_datetime(valid_to, "validTo"),
    )


def validate_bundle(doc: Mapping[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate a stored bundle document without raising.

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors: List[str] = []
    if not isinstance(doc, Mapping):
        return False, [f"bundle must be an object, got {type(doc).__name__}"]

    if _pick(doc, "id", "_id") is _MISSING:
        errors.append("Missing required field: id")
    if not doc.get("name"):
        errors.append("Missing required field: name")

    raw_products = doc.get("products")
    if isinstance(raw_products, Mapping):
        raw_products = raw_products.get("items")
    if not raw_products:
        errors.append("Missing required field: products")
    else:
        seen = set()
        for i, raw in enumerate(raw_products):
            try:
                product = _normalize_product(raw, i)
            except InvalidBundleError as e:
                errors.append(f"Product {i}: {e}")
                continue
            if product.product_id in seen:
                errors.append(f"Product {i}: duplicate productId {product.product_id}")
            seen.add(product.product_id)

    try:
        parse_discount_rule(_rule_source(doc))
    except InvalidRuleError as e:
        errors.append(f"Discount rule: {e}")

    for key in ("validFrom", "validTo"):
        try:
            _to_datetime(doc.get(key), key)
        except InvalidBundleError as e:
            errors.append(str(e))

    return (len(errors) == 0, errors)
