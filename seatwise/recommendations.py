"""Optimization recommendations generated from license waste reports."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from seatwise.models import (
    LicenseWasteReport,
    Money,
    OptimizationRecommendation,
    OptimizationType,
    Priority,
)
from seatwise.store import Store

logger = logging.getLogger("seatwise.recommendations")

DEFAULT_CRITICAL_MONTHLY_THRESHOLD = 500.0

_PROSE = {
    OptimizationType.GHOST_USER_REMOVAL: {
        "title": "Remove {count} inactive {platform} seats",
        "description": (
            "{count} of {total} {platform} seats belong to users who never signed in or "
            "have been inactive past the ghost threshold. Reclaiming them saves "
            "{monthly:.2f} {currency} per month."
        ),
        "action_items": [
            "Confirm with managers that the listed users no longer need access",
            "Remove or suspend the listed accounts",
            "Reassign or cancel the freed licenses",
        ],
        "implementation": "Deprovision the listed users in the {platform} admin console.",
        "risk_level": "low",
        "time_to_implement": "1-2 days",
    },
    OptimizationType.LICENSE_DOWNGRADE: {
        "title": "Downgrade {count} underused {platform} seats",
        "description": (
            "{count} of {total} {platform} seats use few of their tier's features. "
            "Moving them to a cheaper tier saves {monthly:.2f} {currency} per month."
        ),
        "action_items": [
            "Review feature usage of the listed users",
            "Move the listed users to the recommended tier",
        ],
        "implementation": "Change the license tier of the listed users in the {platform} admin console.",
        "risk_level": "medium",
        "time_to_implement": "1 week",
    },
}


class RecommendationGenerator:
    def __init__(
        self,
        critical_monthly_threshold: float = DEFAULT_CRITICAL_MONTHLY_THRESHOLD,
        store: Optional[Store] = None,
    ) -> None:
        self.critical_monthly_threshold = critical_monthly_threshold
        self.store = store

    def priority_for(self, report: LicenseWasteReport) -> Priority:
        if report.potential_savings.monthly > self.critical_monthly_threshold:
            return Priority.CRITICAL
        waste = report.metrics.waste_percentage
        if waste >= 50:
            return Priority.HIGH
        if waste >= 20:
            return Priority.MEDIUM
        return Priority.LOW

    def generate(
        self, report: LicenseWasteReport, now: Optional[datetime] = None
    ) -> Optional[OptimizationRecommendation]:
        """Turn one candidate into a recommendation.

        None when nobody is affected or the seats cost nothing, as with AWS IAM users.
        """
        if not report.affected_users or report.potential_savings.monthly <= 0:
            return None
        prose = _PROSE.get(report.optimization_type, _PROSE[OptimizationType.GHOST_USER_REMOVAL])
        values = {
            "count": len(report.affected_users),
            "total": report.metrics.total_licenses,
            "platform": report.platform.value,
            "monthly": report.potential_savings.monthly,
            "currency": report.potential_savings.currency,
        }
        return OptimizationRecommendation(
            tenant_id=report.tenant_id,
            platform=report.platform,
            category=report.optimization_type,
            priority=self.priority_for(report),
            potential_savings=report.potential_savings,
            current_cost=report.current_cost,
            metrics=report.metrics,
            title=prose["title"].format(**values),
            description=prose["description"].format(**values),
            affected_users=list(report.affected_users),
            action_items=list(prose["action_items"]),
            implementation=prose["implementation"].format(**values),
            risk_level=prose["risk_level"],
            time_to_implement=prose["time_to_implement"],
            last_calculated=now or report.calculated_at,
        )

    def _require_store(self) -> Store:
        if self.store is None:
            raise RuntimeError("RecommendationGenerator has no store")
        return self.store

    def apply(
        self, tenant_id: str, reports: Iterable[LicenseWasteReport], now: datetime
    ) -> list[OptimizationRecommendation]:
        """Upsert current recommendations by (tenant, platform, category).

        Implemented recommendations are left alone, and a candidate whose
        users were all handled by implemented ones is skipped. Open ones
        without a current candidate are deactivated. Returns the active,
        generated set.
        """
        store = self._require_store()
        stored = store.list_recommendations(tenant_id)
        handled: dict[tuple, set[str]] = {}
        for r in stored:
            if r.is_implemented:
                handled.setdefault(r.key, set()).update(u.user_id for u in r.affected_users)
        open_by_key = {r.key: r for r in stored if not r.is_implemented}

        fresh: dict[tuple, OptimizationRecommendation] = {}
        for report in reports:
            if report.tenant_id != tenant_id:
                continue
            rec = self.generate(report, now)
            if rec is None:
                continue
            if {u.user_id for u in rec.affected_users} <= handled.get(rec.key, set()):
                continue
            existing = open_by_key.get(rec.key)
            if existing is not None:
                rec.id = existing.id
            fresh[rec.key] = rec

        to_save = list(fresh.values())
        retired = 0
        for key, rec in open_by_key.items():
            if key not in fresh and rec.is_active:
                rec.is_active = False
                rec.last_calculated = now
                to_save.append(rec)
                retired += 1

        store.save_recommendations(to_save)
        logger.info(
            "Recommendations: %d active, %d retired",
            len(fresh), retired,
            extra={"tenant_id": tenant_id, "records": len(fresh)},
        )
        return list(fresh.values())


def mark_implemented(
    store: Store, tenant_id: str, recommendation_id: str, implemented_by: str, now: datetime
) -> OptimizationRecommendation:
    rec = store.get_recommendation(tenant_id, recommendation_id)
    if rec is None:
        raise KeyError(f"No recommendation {recommendation_id} for tenant {tenant_id}")
    rec.is_implemented = True
    rec.implemented_at = now
    rec.implemented_by = implemented_by
    store.save_recommendations([rec])
    logger.info(
        "Recommendation %s implemented by %s", recommendation_id, implemented_by,
        extra={"tenant_id": tenant_id},
    )
    return rec


def record_actual_savings(
    store: Store, tenant_id: str, recommendation_id: str, monthly: float
) -> OptimizationRecommendation:
    """Record realized savings. Allowed at any time, including after implementation."""
    rec = store.get_recommendation(tenant_id, recommendation_id)
    if rec is None:
        raise KeyError(f"No recommendation {recommendation_id} for tenant {tenant_id}")
    rec.actual_savings = Money.from_monthly(monthly, rec.potential_savings.currency)
    store.save_recommendations([rec])
    return rec
