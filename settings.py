"""
Centralized configuration for bundle pricing.

Built once at startup by ``load_settings()`` and passed explicitly to the
components that need it; nothing here is read implicitly at call time.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_CURRENCY: str = "USD"
DEFAULT_PRICE_PLACES: int = 2

# Cart line item property keys the storefront widget writes on add-to-cart.
DEFAULT_BUNDLE_PROPERTY: str = "_bundle_id"
DEFAULT_BUNDLE_NAME_PROPERTY: str = "_bundle_name"

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "CAD": "$",
    "AUD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
}

LOG_FORMATS: tuple[str, ...] = ("json", "text")


@dataclass(frozen=True)
class PricingSettings:
    currency: str = DEFAULT_CURRENCY
    price_places: int = DEFAULT_PRICE_PLACES
    bundle_property: str = DEFAULT_BUNDLE_PROPERTY
    bundle_name_property: str = DEFAULT_BUNDLE_NAME_PROPERTY
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def currency_symbol(self) -> str:
        return CURRENCY_SYMBOLS.get(self.currency, "")


def _read_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")
    if value < 0:
        raise ValueError(f"{key} must be >= 0, got {value}")
    return value


def _read_str(env: Mapping[str, str], key: str, default: str) -> str:
    raw = env.get(key)
    if raw is None:
        return default
    text = raw.strip()
    return text or default


def load_settings(env: Optional[Mapping[str, str]] = None) -> PricingSettings:
    """
    Build the process-wide settings value.

    Reads ``.env`` (when present) into the process environment first unless an
    explicit ``env`` mapping is given, which tests use to stay hermetic.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    log_format = _read_str(env, "LOG_FORMAT", "json").lower()
    if log_format not in LOG_FORMATS:
        raise ValueError(f"LOG_FORMAT must be one of {LOG_FORMATS}, got {log_format!r}")

    return PricingSettings(
        currency=_read_str(env, "BUNDLE_CURRENCY", DEFAULT_CURRENCY).upper(),
        price_places=_read_int(env, "BUNDLE_PRICE_PLACES", DEFAULT_PRICE_PLACES),
        bundle_property=_read_str(env, "BUNDLE_PROPERTY_KEY", DEFAULT_BUNDLE_PROPERTY),
        bundle_name_property=_read_str(env, "BUNDLE_NAME_PROPERTY_KEY", DEFAULT_BUNDLE_NAME_PROPERTY),
        log_level=_read_str(env, "LOG_LEVEL", "INFO").upper(),
        log_format=log_format,
    )
