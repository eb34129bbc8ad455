"""License waste per platform: unused and underutilized paid seats."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from seatwise.models import (
    AffectedUser,
    LicenseMetrics,
    LicenseWasteReport,
    LicenseWasteSummary,
    Money,
    OptimizationType,
    Platform,
    split_valid,
)
from seatwise.pricing import PlatformPricing

logger = logging.getLogger("seatwise.license_waste")


def _pct(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0.0


def calculate_waste(
    identities: Any,
    platform: Platform,
    pricing: PlatformPricing,
    now: datetime,
    tenant_id: Optional[str] = None,
) -> LicenseWasteReport:
    """Build the optimization candidate for one platform.

    Tracked seats are active, non-suspended slots. A seat is unused when its
    platform is dormant in the identity's ghost status, and underutilized when
    it is in use but its feature usage is below the platform threshold and a
    cheaper tier exists.
    """
    valid, errors = split_valid(identities)
    for error in errors:
        logger.warning("Skipping identity: %s", error.message, extra={"error_kind": error.kind})
    if tenant_id is None:
        tenant_id = valid[0].tenant_id if valid else ""

    total = 0
    unused = 0
    underutilized = 0
    current_cost = 0.0
    unused_savings = 0.0
    downgrade_savings = 0.0
    affected: list[AffectedUser] = []

    for identity in valid:
        slot = identity.platforms.get(platform)
        if slot is None or not slot.is_active or slot.suspended:
            continue
        total += 1
        tier = pricing.resolve_tier(slot.license_tier)
        cost = pricing.monthly_cost(tier)
        current_cost += cost

        ghost_platforms = identity.ghost_status.ghost_platforms if identity.ghost_status else set()
        if platform.value in ghost_platforms:
            unused += 1
            unused_savings += cost
            affected.append(AffectedUser(
                user_id=slot.user_id,
                user_email=identity.primary_email,
                current_license=tier,
                recommended_action="remove",
                monthly_saving=round(cost, 2),
            ))
            continue

        target = pricing.downgrade_for(tier)
        if (
            target is not None
            and slot.feature_usage is not None
            and slot.feature_usage < pricing.feature_usage_threshold
        ):
            underutilized += 1
            saving = cost - pricing.monthly_cost(target)
            downgrade_savings += saving
            affected.append(AffectedUser(
                user_id=slot.user_id,
                user_email=identity.primary_email,
                current_license=tier,
                recommended_action=f"downgrade to {target}",
                monthly_saving=round(saving, 2),
            ))

    if unused_savings >= downgrade_savings:
        optimization_type = OptimizationType.GHOST_USER_REMOVAL
    else:
        optimization_type = OptimizationType.LICENSE_DOWNGRADE

    report = LicenseWasteReport(
        tenant_id=tenant_id,
        platform=platform,
        optimization_type=optimization_type,
        current_cost=Money.from_monthly(current_cost, pricing.currency),
        potential_savings=Money.from_monthly(unused_savings + downgrade_savings, pricing.currency),
        metrics=LicenseMetrics(
            total_licenses=total,
            unused_licenses=unused,
            underutilized_licenses=underutilized,
            utilization_rate=_pct(total - unused - underutilized, total),
            waste_percentage=_pct(unused + underutilized, total),
        ),
        affected_users=affected,
        calculated_at=now,
    )
    logger.info(
        "%s waste: %d of %d seats, %.2f %s/month",
        platform.value, unused + underutilized, total,
        report.potential_savings.monthly, pricing.currency,
        extra={"tenant_id": tenant_id, "platform": platform.value, "records": total},
    )
    return report


def summarize_license_waste(
    identities: Any,
    reports: Iterable[LicenseWasteReport],
    pricing: Mapping[Platform, PlatformPricing],
    now: datetime,
) -> dict[str, LicenseWasteSummary]:
    """Per-identity monthly cost, wasted cost and recommended actions."""
    valid, _ = split_valid(identities)
    actions: dict[str, list[tuple[Platform, AffectedUser]]] = {}
    for report in reports:
        for user in report.affected_users:
            actions.setdefault(user.user_email, []).append((report.platform, user))

    summaries: dict[str, LicenseWasteSummary] = {}
    for identity in valid:
        total = 0.0
        for platform, slot in identity.platforms.items():
            if platform in pricing and slot.is_active and not slot.suspended:
                total += pricing[platform].monthly_cost(slot.license_tier)
        own = actions.get(identity.primary_email, [])
        summaries[identity.primary_email] = LicenseWasteSummary(
            total_monthly_cost=round(total, 2),
            wasted_cost=round(sum(u.monthly_saving for _, u in own), 2),
            recommendations=[
                f"{u.recommended_action} {p.value} {u.current_license} seat"
                for p, u in own
            ],
            last_calculated=now,
        )
    return summaries
