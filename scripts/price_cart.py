#!/usr/bin/env python3
"""Price a cart (or quote a bundle) from JSON files, offline.

Reads stored bundle documents and a cart JSON payload, runs the allocator and
prints the allocation plus the cart update body. Useful for reproducing a
storefront pricing report without the host platform.

Usage:
  python scripts/price_cart.py bundles.json cart.json
  python scripts/price_cart.py bundles.json cart.json --cents
  python scripts/price_cart.py bundles.json --quote <bundle_id>
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, List

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from pricing_service import bootstrap  # noqa: E402
from services.exceptions import PricingError  # noqa: E402


def _load_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as fh:
        return json.load(fh)


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("bundles_path", type=Path, help="JSON list of stored bundle documents")
    parser.add_argument("cart_path", nargs="?", type=Path, help="Cart JSON payload (items[].properties._bundle_id)")
    parser.add_argument("--cents", action="store_true", help="Cart prices are integer minor units")
    parser.add_argument("--quote", dest="quote_id", default=None, help="Quote this bundle instead of pricing a cart")
    parser.add_argument("--all", dest="include_inactive", action="store_true", help="Include inactive/expired bundles")
    return parser.parse_args(argv)


def main(argv: List[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    service = bootstrap()
    places = service.settings.price_places

    try:
        documents = _load_json(args.bundles_path)
        if isinstance(documents, dict):
            documents = documents.get("bundles", [documents])

        if args.quote_id:
            matches = [d for d in documents if str(d.get("id") or d.get("_id")) == args.quote_id]
            if not matches:
                print(f"✗ Bundle {args.quote_id} not found in {args.bundles_path}", file=sys.stderr)
                return 1
            quote = service.quote(matches[0])
            print(json.dumps({**quote.to_dict(), "display": quote.formatted(service.settings)}, indent=2))
            return 0

        if not args.cart_path:
            raise SystemExit("✗ cart_path is required unless --quote is given")

        lookup = service.lookup(documents, live_only=not args.include_inactive)
        result, update = service.price_cart(_load_json(args.cart_path), lookup, prices_in_cents=args.cents)
    except (OSError, json.JSONDecodeError, PricingError) as exc:
        print(f"✗ Failed to price cart: {exc}", file=sys.stderr)
        return 1

    print(json.dumps({"allocation": result.to_dict(places), "cart_update": update}, indent=2))
    if result.unresolved:
        print(f"⚠️  {len(result.unresolved)} bundle group(s) priced at original value", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
