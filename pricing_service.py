"""
Pricing Service
Composition root for the bundle pricing core. Takes the settings value
explicitly; build one per process with ``bootstrap()`` and hand it to whatever
needs to price (product widget endpoint, cart hook, order webhook).
"""
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
import logging
from datetime import datetime

from pydantic import ValidationError

from logging_config import configure_logging
from schemas.bundle_schemas import Bundle, CartLineItem, normalize_bundle
from schemas.payloads import CartPayload, OrderPayload
from services.bundle_catalog import build_bundle_lookup
from services.bundle_display import BundleQuote, quote_bundle
from services.cart_allocator import AllocationResult, allocate, build_cart_update
from services.exceptions import InvalidBundleError
from services.order_analytics import BundleOrderStats, summarize_order
from settings import PricingSettings, load_settings

logger = logging.getLogger(__name__)

BundleSource = Union[Bundle, Mapping[str, Any]]


class PricingService:
    """Bundle pricing entry points bound to one settings value"""

    def __init__(self, settings: PricingSettings):
        self.settings = settings

    def lookup(
        self,
        bundles: Iterable[BundleSource],
        at: Optional[datetime] = None,
        prices: Optional[Mapping[str, Any]] = None,
        live_only: bool = True,
    ) -> Dict[str, Bundle]:
        return build_bundle_lookup(bundles, at=at, prices=prices, live_only=live_only)

    def quote(
        self,
        bundle: BundleSource,
        quantities: Optional[Mapping[str, int]] = None,
        prices: Optional[Mapping[str, Any]] = None,
    ) -> BundleQuote:
        """Original vs bundle price for the product-page widget."""
        return quote_bundle(normalize_bundle(bundle, prices), self.settings, quantities)

    def parse_cart(
        self,
        cart: Union[CartPayload, Mapping[str, Any]],
        prices_in_cents: bool = False,
    ) -> List[CartLineItem]:
        if not isinstance(cart, CartPayload):
            try:
                cart = CartPayload.model_validate(cart)
            except ValidationError as e:
                raise InvalidBundleError(f"Malformed cart payload: {e}") from e
        return cart.to_line_items(
            bundle_property=self.settings.bundle_property,
            bundle_name_property=self.settings.bundle_name_property,
            prices_in_cents=prices_in_cents,
        )

    def price_cart(
        self,
        cart: Union[CartPayload, Mapping[str, Any]],
        bundle_lookup: Mapping[str, Bundle],
        prices_in_cents: bool = False,
    ) -> Tuple[AllocationResult, Dict[str, Dict[str, str]]]:
        """
        Allocate bundle discounts for a cart.

        Returns:
            (AllocationResult, cart update body) -- the body is what the host
            platform's cart update accepts; sending it is up to the caller.
        """
        line_items = self.parse_cart(cart, prices_in_cents=prices_in_cents)
        result = allocate(line_items, bundle_lookup)
        return result, build_cart_update(result, self.settings.price_places)

    def record_order(
        self,
        order: Union[OrderPayload, Mapping[str, Any]],
        bundle_lookup: Mapping[str, Bundle],
    ) -> List[BundleOrderStats]:
        return summarize_order(order, bundle_lookup, self.settings)


def bootstrap(env: Optional[Mapping[str, str]] = None) -> PricingService:
    """Load settings, configure logging, and build the process-wide service."""
    settings = load_settings(env)
    configure_logging(settings.log_level, settings.log_format)
    logger.info(
        f"Bundle pricing ready (currency={settings.currency}, places={settings.price_places})"
    )
    return PricingService(settings)
