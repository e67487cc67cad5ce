"""
Order analytics: per-bundle revenue from an ``orders/create`` webhook body.

Produces the increments the storage layer applies to each bundle's analytics
(order count, revenue, line records). Writing them is not done here.
"""
from typing import Any, Dict, List, Mapping, Union
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal

from pydantic import ValidationError

from schemas.bundle_schemas import Bundle
from schemas.payloads import OrderLineItemPayload, OrderPayload
from services.exceptions import InvalidBundleError, UnknownBundleError
from services.pricing import ZERO, round_price
from settings import PricingSettings

logger = logging.getLogger(__name__)


@dataclass
class BundleOrderStats:
    bundle_id: str
    order_id: str
    total_orders: int = 1
    total_revenue: Decimal = ZERO
    items: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self, places: int = 2) -> Dict[str, Any]:
        return {
            "bundleId": self.bundle_id,
            "orderId": self.order_id,
            "totalOrders": self.total_orders,
            "totalRevenue": str(round_price(self.total_revenue, places)),
            "items": self.items,
        }


def parse_order(payload: Union[OrderPayload, Mapping[str, Any]]) -> OrderPayload:
    if isinstance(payload, OrderPayload):
        return payload
    try:
        return OrderPayload.model_validate(payload)
    except ValidationError as e:
        raise InvalidBundleError(f"Malformed order payload: {e}") from e


def summarize_order(
    payload: Union[OrderPayload, Mapping[str, Any]],
    bundle_lookup: Mapping[str, Bundle],
    settings: PricingSettings,
) -> List[BundleOrderStats]:
    """
    Group an order's bundle lines and total their revenue per bundle.

    Lines without the bundle property are ignored. Bundles missing from
    ``bundle_lookup`` are skipped and logged.
    """
    order = parse_order(payload)
    order_id = str(order.id)

    groups: "OrderedDict[str, List[OrderLineItemPayload]]" = OrderedDict()
    for line in order.line_items:
        bundle_id = line.properties.get(settings.bundle_property)
        if not bundle_id:
            continue
        groups.setdefault(bundle_id, []).append(line)

    if not groups:
        logger.debug(f"No bundles in order {order_id}", extra={"order_id": order_id})
        return []

    stats: List[BundleOrderStats] = []
    for bundle_id, lines in groups.items():
        if bundle_id not in bundle_lookup:
            error = UnknownBundleError(bundle_id, [str(line.id) for line in lines])
            logger.warning(f"Order {order_id}: {error}", extra={"order_id": order_id, "bundle_id": bundle_id})
            continue

        revenue = sum((line.price * line.quantity for line in lines), ZERO)
        stats.append(
            BundleOrderStats(
                bundle_id=bundle_id,
                order_id=order_id,
                total_revenue=revenue,
                items=[
                    {
                        "variantId": None if line.variant_id is None else str(line.variant_id),
                        "quantity": line.quantity,
                        "price": str(line.price),
                    }
                    for line in lines
                ],
            )
        )

    logger.info(f"Order {order_id}: recorded {len(stats)} bundle(s)", extra={"order_id": order_id})
    return stats
