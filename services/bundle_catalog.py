"""
Bundle lookup construction: stored bundle documents -> {bundle_id: Bundle}.
"""
from typing import Any, Dict, Iterable, Mapping, Optional, Union
import logging
from datetime import datetime

from schemas.bundle_schemas import Bundle, normalize_bundle
from services.exceptions import InvalidBundleError

logger = logging.getLogger(__name__)


def build_bundle_lookup(
    documents: Iterable[Union[Bundle, Mapping[str, Any]]],
    at: Optional[datetime] = None,
    prices: Optional[Mapping[str, Any]] = None,
    live_only: bool = True,
) -> Dict[str, Bundle]:
    """
    Normalize stored bundles into the allocator's lookup.

    Bundles that are inactive or outside their validity window at ``at``
    are left out (their cart lines then price at original value).
    Malformed documents raise: a corrupted rule must not mis-price an order.

    Raises:
        InvalidBundleError / InvalidRuleError: malformed document, duplicate id
    """
    lookup: Dict[str, Bundle] = {}
    seen = set()
    skipped = 0
    for doc in documents:
        bundle = normalize_bundle(doc, prices)
        if bundle.id in seen:
            raise InvalidBundleError(f"duplicate bundle id {bundle.id}")
        seen.add(bundle.id)
        if live_only and not bundle.is_live(at):
            logger.debug(f"Bundle {bundle.id} is not live; excluded", extra={"bundle_id": bundle.id})
            skipped += 1
            continue
        lookup[bundle.id] = bundle

    if skipped:
        logger.info(f"Bundle lookup built: {len(lookup)} live, {skipped} excluded")
    return lookup
