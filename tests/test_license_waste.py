from __future__ import annotations

from typing import Optional

from seatwise.license_waste import calculate_waste, summarize_license_waste
from seatwise.models import (
    CrossPlatformIdentity,
    GhostStatus,
    OptimizationType,
    Platform,
    SlackSlot,
    ZoomSlot,
)
from seatwise.pricing import DEFAULT_PRICING
from tests.fakes import NOW, TENANT, days_ago

SLACK = DEFAULT_PRICING[Platform.SLACK]


def _slack_user(email: str, ghost: Optional[GhostStatus] = None, **slot) -> CrossPlatformIdentity:
    slot.setdefault("user_id", email.split("@")[0])
    return CrossPlatformIdentity(
        tenant_id=TENANT,
        primary_email=email,
        platforms={Platform.SLACK: SlackSlot(**slot)},
        ghost_status=ghost,
    )


def _workforce() -> list[CrossPlatformIdentity]:
    dormant = GhostStatus(is_ghost=True, stale_platforms=["slack"], inactive_days=120, last_calculated=NOW)
    return [
        _slack_user("ghost@x.com", dormant, license_tier="pro", last_activity=days_ago(120)),
        _slack_user("light@x.com", license_tier="business-plus", feature_usage=5.0, last_activity=days_ago(1)),
        _slack_user("pro@x.com", license_tier="pro", feature_usage=5.0, last_activity=days_ago(1)),
        _slack_user("gone@x.com", license_tier="pro", suspended=True),
    ]


def test_unused_and_underutilized_seats_are_priced() -> None:
    report = calculate_waste(_workforce(), Platform.SLACK, SLACK, NOW)

    assert report.tenant_id == TENANT
    assert report.metrics.total_licenses == 3
    assert report.metrics.unused_licenses == 1
    assert report.metrics.underutilized_licenses == 1
    assert report.metrics.utilization_rate == 33.33
    assert report.metrics.waste_percentage == 66.67
    assert report.current_cost.monthly == 28.5
    assert report.potential_savings.monthly == 12.5
    assert report.potential_savings.annual == 150.0
    assert report.optimization_type is OptimizationType.GHOST_USER_REMOVAL
    actions = {u.user_email: (u.recommended_action, u.monthly_saving) for u in report.affected_users}
    assert actions == {
        "ghost@x.com": ("remove", 8.0),
        "light@x.com": ("downgrade to pro", 4.5),
    }


def test_downgrade_dominated_report_is_license_downgrade() -> None:
    users = [
        _slack_user(f"u{i}@x.com", license_tier="business-plus", feature_usage=1.0, last_activity=days_ago(2))
        for i in range(3)
    ]

    report = calculate_waste(users, Platform.SLACK, SLACK, NOW)

    assert report.optimization_type is OptimizationType.LICENSE_DOWNGRADE
    assert report.metrics.unused_licenses == 0
    assert report.metrics.underutilized_licenses == 3


def test_no_tracked_licenses_gives_zero_report() -> None:
    report = calculate_waste(_workforce(), Platform.ZOOM, DEFAULT_PRICING[Platform.ZOOM], NOW, tenant_id=TENANT)

    assert report.metrics.total_licenses == 0
    assert report.metrics.utilization_rate == 0.0
    assert report.metrics.waste_percentage == 0.0
    assert report.potential_savings.monthly == 0.0
    assert report.affected_users == []


def test_unknown_tier_is_billed_as_default() -> None:
    user = CrossPlatformIdentity(
        tenant_id=TENANT,
        primary_email="a@x.com",
        platforms={Platform.ZOOM: ZoomSlot(user_id="z1", license_tier="mystery", last_activity=days_ago(1))},
    )

    report = calculate_waste([user], Platform.ZOOM, DEFAULT_PRICING[Platform.ZOOM], NOW)

    assert report.current_cost.monthly == 20.0


def test_percentages_stay_within_bounds() -> None:
    report = calculate_waste(_workforce(), Platform.SLACK, SLACK, NOW)

    assert 0.0 <= report.metrics.utilization_rate <= 100.0
    assert 0.0 <= report.metrics.waste_percentage <= 100.0


def test_identity_summary_totals_cost_and_waste() -> None:
    workforce = _workforce()
    report = calculate_waste(workforce, Platform.SLACK, SLACK, NOW)

    summaries = summarize_license_waste(workforce, [report], DEFAULT_PRICING, NOW)

    assert summaries["ghost@x.com"].total_monthly_cost == 8.0
    assert summaries["ghost@x.com"].wasted_cost == 8.0
    assert summaries["ghost@x.com"].recommendations == ["remove slack pro seat"]
    assert summaries["light@x.com"].wasted_cost == 4.5
    assert summaries["pro@x.com"].wasted_cost == 0.0
    assert summaries["gone@x.com"].total_monthly_cost == 0.0
