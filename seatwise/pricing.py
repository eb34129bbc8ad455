"""Per-platform seat pricing and feature-usage thresholds.

Built-in tables carry list-price estimates per seat and month. A JSON file
(``PRICING_FILE`` or an explicit path) can override any platform:

    {
      "slack": {
        "currency": "USD",
        "tiers": {"free": 0, "pro": 8.75, "business-plus": 15},
        "default_tier": "pro",
        "downgrade": {"business-plus": "pro"},
        "feature_usage_threshold": 25
      }
    }

``load_pricing`` re-reads the file on every call so operators can change
prices between runs without a restart.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from seatwise.models import Platform

logger = logging.getLogger("seatwise.pricing")


@dataclass(frozen=True)
class PlatformPricing:
    platform: Platform
    tiers: Mapping[str, float]
    default_tier: str
    downgrade: Mapping[str, str] = field(default_factory=dict)
    feature_usage_threshold: float = 20.0
    currency: str = "USD"

    def resolve_tier(self, tier: Optional[str]) -> str:
        """Unknown or missing tiers are billed as the platform default."""
        if tier and tier in self.tiers:
            return tier
        return self.default_tier

    def monthly_cost(self, tier: Optional[str]) -> float:
        return float(self.tiers.get(self.resolve_tier(tier), 0.0))

    def downgrade_for(self, tier: Optional[str]) -> Optional[str]:
        """Cheaper tier to move an underutilized seat to, if there is one."""
        current = self.resolve_tier(tier)
        target = self.downgrade.get(current)
        if target is None or target not in self.tiers:
            return None
        if self.monthly_cost(target) >= self.monthly_cost(current):
            return None
        return target


DEFAULT_PRICING: dict[Platform, PlatformPricing] = {
    Platform.GOOGLE_WORKSPACE: PlatformPricing(
        platform=Platform.GOOGLE_WORKSPACE,
        tiers={"business-starter": 6.0, "business-standard": 12.0, "business-plus": 18.0},
        default_tier="business-standard",
        downgrade={
            "business-plus": "business-standard",
            "business-standard": "business-starter",
        },
    ),
    Platform.SLACK: PlatformPricing(
        platform=Platform.SLACK,
        tiers={"guest": 0.0, "pro": 8.0, "business-plus": 12.5},
        default_tier="pro",
        downgrade={"business-plus": "pro"},
    ),
    Platform.GITHUB: PlatformPricing(
        platform=Platform.GITHUB,
        tiers={"free": 0.0, "team": 4.0, "enterprise": 21.0},
        default_tier="team",
        downgrade={"enterprise": "team"},
    ),
    Platform.ZOOM: PlatformPricing(
        platform=Platform.ZOOM,
        tiers={"basic": 0.0, "pro": 15.0, "licensed": 20.0, "on-prem": 0.0},
        default_tier="licensed",
        downgrade={"licensed": "pro", "pro": "basic"},
    ),
    Platform.AWS: PlatformPricing(
        platform=Platform.AWS,
        tiers={"iam-user": 0.0},
        default_tier="iam-user",
    ),
}

_OVERRIDABLE = ("tiers", "default_tier", "downgrade", "feature_usage_threshold", "currency")


def _apply_override(base: PlatformPricing, override: Mapping[str, Any]) -> PlatformPricing:
    unknown = set(override) - set(_OVERRIDABLE)
    if unknown:
        raise ValueError(f"Unknown pricing keys for {base.platform.value}: {sorted(unknown)}")
    changes: dict[str, Any] = {}
    if "tiers" in override:
        changes["tiers"] = {str(k): float(v) for k, v in override["tiers"].items()}
    if "downgrade" in override:
        changes["downgrade"] = {str(k): str(v) for k, v in override["downgrade"].items()}
    if "default_tier" in override:
        changes["default_tier"] = str(override["default_tier"])
    if "feature_usage_threshold" in override:
        changes["feature_usage_threshold"] = float(override["feature_usage_threshold"])
    if "currency" in override:
        changes["currency"] = str(override["currency"])
    pricing = replace(base, **changes)
    if pricing.default_tier not in pricing.tiers:
        raise ValueError(
            f"default_tier {pricing.default_tier!r} missing from {base.platform.value} tiers"
        )
    return pricing


def load_pricing(path: Optional[str] = None) -> dict[Platform, PlatformPricing]:
    """Return pricing tables, overlaying the JSON file at ``path`` on the defaults."""
    path = path or os.environ.get("PRICING_FILE") or None
    pricing = dict(DEFAULT_PRICING)
    if not path:
        return pricing

    with open(path, encoding="utf-8") as fh:
        overrides = json.load(fh)
    if not isinstance(overrides, dict):
        raise ValueError(f"Pricing file {path} must contain a JSON object")

    for name, override in overrides.items():
        platform = Platform(name)
        pricing[platform] = _apply_override(pricing[platform], override)
    logger.info("Loaded pricing overrides from %s for %s", path, sorted(overrides))
    return pricing
