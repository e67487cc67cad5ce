"""
Host platform payloads (cart JSON, orders/create webhook body).

Only the fields the pricing core reads are modelled; everything else is ignored.
Line item ``properties`` arrive as a dict on carts and as a list of
``{"name", "value"}`` pairs on orders; both are normalized to a dict.
"""
from typing import Any, Dict, List, Optional, Union
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schemas.bundle_schemas import CartLineItem
from settings import DEFAULT_BUNDLE_PROPERTY, DEFAULT_BUNDLE_NAME_PROPERTY

CENTS = Decimal("100")


def _properties_to_dict(value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): "" if v is None else str(v) for k, v in value.items()}
    if isinstance(value, list):
        props: Dict[str, str] = {}
        for entry in value:
            if isinstance(entry, dict) and entry.get("name") is not None:
                raw = entry.get("value")
                props[str(entry["name"])] = "" if raw is None else str(raw)
        return props
    raise ValueError("properties must be an object or a list of {name, value}")


class CartItemPayload(BaseModel):
    id: Union[int, str]
    key: Optional[str] = None
    quantity: int = Field(..., ge=0)
    price: Decimal = Field(..., ge=0)
    variant_id: Optional[Union[int, str]] = None
    properties: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("properties", mode="before")
    @classmethod
    def _normalize_properties(cls, value: Any) -> Dict[str, str]:
        return _properties_to_dict(value)


class CartPayload(BaseModel):
    """Cart JSON as the storefront reads it (``/cart.js``)."""

    items: List[CartItemPayload] = Field(default_factory=list)
    currency: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    def to_line_items(
        self,
        bundle_property: str = DEFAULT_BUNDLE_PROPERTY,
        bundle_name_property: str = DEFAULT_BUNDLE_NAME_PROPERTY,
        prices_in_cents: bool = False,
    ) -> List[CartLineItem]:
        """
        Convert to pricing line items.

        ``prices_in_cents`` is for the storefront AJAX cart, which reports
        integer minor units. The cart's per-line ``key`` is kept when present;
        ``id`` is the variant id and repeats across lines of one variant.
        """
        lines = []
        for item in self.items:
            price = item.price / CENTS if prices_in_cents else item.price
            lines.append(
                CartLineItem(
                    id=str(item.id),
                    quantity=item.quantity,
                    unit_price=price,
                    bundle_id=item.properties.get(bundle_property) or None,
                    variant_id=None if item.variant_id is None else str(item.variant_id),
                    bundle_name=item.properties.get(bundle_name_property) or None,
                    key=item.key,
                )
            )
        return lines


class OrderLineItemPayload(BaseModel):
    id: Optional[Union[int, str]] = None
    variant_id: Optional[Union[int, str]] = None
    quantity: int = Field(..., ge=0)
    price: Decimal = Field(..., ge=0)
    properties: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    @field_validator("properties", mode="before")
    @classmethod
    def _normalize_properties(cls, value: Any) -> Dict[str, str]:
        return _properties_to_dict(value)


class OrderPayload(BaseModel):
    """``orders/create`` webhook body."""

    id: Union[int, str]
    line_items: List[OrderLineItemPayload] = Field(default_factory=list)
    total_price: Optional[Decimal] = None
    shop_id: Optional[str] = None
    currency: Optional[str] = None

    model_config = ConfigDict(extra="ignore")
