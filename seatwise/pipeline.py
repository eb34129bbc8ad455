"""Post-sync analytics for one tenant: resolve, then run every derivation pass.

All passes read the same resolved snapshot and the same ``now``. Each
derived block is written separately, so a failure in a later pass leaves
the earlier blocks current.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from seatwise.config import AnalyticsConfig
from seatwise.ghost_detector import detect_ghosts
from seatwise.identity_resolver import IdentityResolver
from seatwise.license_waste import calculate_waste, summarize_license_waste
from seatwise.models import PLATFORM_ORDER, utcnow
from seatwise.pricing import load_pricing
from seatwise.recommendations import RecommendationGenerator
from seatwise.risk_scorer import RiskScorer, summarize_risks
from seatwise.store import Store

logger = logging.getLogger("seatwise.pipeline")


class AnalyticsPipeline:
    def __init__(
        self,
        store: Store,
        config: Optional[AnalyticsConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        pricing_loader: Callable[[Optional[str]], dict] = load_pricing,
    ) -> None:
        self.store = store
        self.config = config or AnalyticsConfig()
        self.clock = clock
        self.pricing_loader = pricing_loader

    def run(self, tenant_id: str) -> dict[str, int]:
        started = time.monotonic()
        now = self.clock()
        results: dict[str, int] = {}

        identities = IdentityResolver(self.store, clock=lambda: now).resolve(tenant_id)
        results["identities"] = len(identities)

        ghosts = detect_ghosts(identities, now, self.config.ghost_threshold_days)
        self.store.update_derived(tenant_id, "ghost_status", ghosts)
        for email, status in ghosts.items():
            identities[email].ghost_status = status
        results["ghosts"] = sum(1 for s in ghosts.values() if s.is_ghost)

        findings = RiskScorer(self.store, self.config.excessive_admin_platforms).apply(
            tenant_id, identities, now
        )
        risks = summarize_risks(identities, findings, now)
        self.store.update_derived(tenant_id, "security_risks", risks)
        for email, summary in risks.items():
            identities[email].security_risks = summary
        results["open_findings"] = len(findings)

        # Pricing is re-read on every run
        pricing: dict = self.pricing_loader(self.config.pricing_file)
        reports = [
            calculate_waste(identities, platform, pricing[platform], now, tenant_id=tenant_id)
            for platform in PLATFORM_ORDER
            if platform in pricing
        ]
        waste = summarize_license_waste(identities, reports, pricing, now)
        self.store.update_derived(tenant_id, "license_waste", waste)
        for email, summary in waste.items():
            identities[email].license_waste = summary
        results["wasted_seats"] = sum(len(r.affected_users) for r in reports)

        recommendations = RecommendationGenerator(
            self.config.critical_savings_threshold, self.store
        ).apply(tenant_id, reports, now)
        results["recommendations"] = len(recommendations)

        logger.info(
            "Analytics complete: %s", results,
            extra={
                "tenant_id": tenant_id,
                "records": results["identities"],
                "duration_s": round(time.monotonic() - started, 3),
            },
        )
        return results
