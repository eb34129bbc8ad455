"""Security risk rules, scoring and finding reconciliation.

Scores are ``SEVERITY_WEIGHTS[severity] * PLATFORM_SENSITIVITY[platform]``
clamped to 0-100. Missing strong authentication on an identity-provider
admin is critical, on any other platform high.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from seatwise.models import (
    CrossPlatformIdentity,
    Platform,
    PlatformSlot,
    RiskType,
    SecurityRiskFinding,
    SecurityRiskSummary,
    Severity,
    split_valid,
)
from seatwise.store import Store

logger = logging.getLogger("seatwise.risk_scorer")

SEVERITY_WEIGHTS: dict[Severity, float] = {
    Severity.CRITICAL: 100.0,
    Severity.HIGH: 75.0,
    Severity.MEDIUM: 50.0,
    Severity.LOW: 25.0,
}

PLATFORM_SENSITIVITY: dict[Platform, float] = {
    Platform.GOOGLE_WORKSPACE: 1.0,
    Platform.AWS: 1.0,
    Platform.GITHUB: 0.9,
    Platform.SLACK: 0.7,
    Platform.ZOOM: 0.5,
}

IDENTITY_PROVIDER_PLATFORMS = frozenset({Platform.GOOGLE_WORKSPACE})

DEFAULT_EXCESSIVE_ADMIN_PLATFORMS = 3


def risk_score(severity: Severity, platform: Platform) -> float:
    score = SEVERITY_WEIGHTS[severity] * PLATFORM_SENSITIVITY[platform]
    return round(min(max(score, 0.0), 100.0), 2)


def _finding(
    identity: CrossPlatformIdentity,
    platform: Platform,
    slot: PlatformSlot,
    risk_type: RiskType,
    severity: Severity,
    description: str,
    recommendations: list[str],
    now: datetime,
    metadata: Optional[dict[str, Any]] = None,
    affected_platforms: Optional[list[str]] = None,
) -> SecurityRiskFinding:
    return SecurityRiskFinding(
        tenant_id=identity.tenant_id,
        user_id=slot.user_id,
        user_email=identity.primary_email,
        platform=platform,
        risk_type=risk_type,
        severity=severity,
        risk_score=risk_score(severity, platform),
        description=description,
        recommendations=recommendations,
        affected_platforms=affected_platforms or [platform.value],
        metadata=metadata or {},
        detected_at=now,
        last_checked=now,
    )


def _identity_findings(
    identity: CrossPlatformIdentity, now: datetime, excessive_admin_platforms: int
) -> list[SecurityRiskFinding]:
    findings: list[SecurityRiskFinding] = []
    live = [
        (p, identity.platforms[p]) for p in identity.populated_platforms()
        if identity.platforms[p].is_active
    ]
    ghost_platforms = identity.ghost_status.ghost_platforms if identity.ghost_status else set()
    admin_platforms = [p.value for p, slot in live if slot.is_admin and not slot.suspended]

    for platform, slot in live:
        if slot.is_admin and slot.has_strong_auth is not True:
            severity = Severity.CRITICAL if platform in IDENTITY_PROVIDER_PLATFORMS else Severity.HIGH
            findings.append(_finding(
                identity, platform, slot, RiskType.ADMIN_WITHOUT_2FA, severity,
                f"Administrator on {platform.value} without two-factor authentication",
                [
                    f"Enforce two-factor authentication for {identity.primary_email} on {platform.value}",
                    "Review whether administrator rights are still required",
                ],
                now,
                metadata={"has_strong_auth": slot.has_strong_auth},
            ))

        if slot.suspended:
            findings.append(_finding(
                identity, platform, slot, RiskType.SUSPENDED_WITH_ACCESS, Severity.HIGH,
                f"Suspended account still present on {platform.value}",
                [
                    f"Remove the {platform.value} account of {identity.primary_email}",
                    "Revoke active sessions and API tokens",
                ],
                now,
                metadata={"is_admin": slot.is_admin},
            ))

        if slot.is_admin and platform.value in ghost_platforms:
            findings.append(_finding(
                identity, platform, slot, RiskType.INACTIVE_ADMIN, Severity.MEDIUM,
                f"Dormant administrator account on {platform.value}",
                [f"Remove administrator rights from {identity.primary_email} on {platform.value}"],
                now,
                metadata={
                    "last_activity": slot.last_activity.isoformat() if slot.last_activity else None,
                },
            ))

        if (
            slot.is_admin
            and not slot.suspended
            and len(admin_platforms) >= excessive_admin_platforms
        ):
            findings.append(_finding(
                identity, platform, slot, RiskType.EXCESSIVE_PERMISSIONS, Severity.MEDIUM,
                f"Administrator on {len(admin_platforms)} platforms",
                ["Apply least privilege: keep administrator rights only where needed"],
                now,
                metadata={"admin_platforms": admin_platforms},
                affected_platforms=admin_platforms,
            ))
    return findings


def score_risks(
    identities: Any,
    now: datetime,
    excessive_admin_platforms: int = DEFAULT_EXCESSIVE_ADMIN_PLATFORMS,
) -> list[SecurityRiskFinding]:
    """Evaluate every rule over every active slot. Pure; nothing is persisted."""
    valid, errors = split_valid(identities)
    for error in errors:
        logger.warning("Skipping identity: %s", error.message, extra={"error_kind": error.kind})

    findings: list[SecurityRiskFinding] = []
    for identity in valid:
        findings.extend(_identity_findings(identity, now, excessive_admin_platforms))
    return findings


def summarize_risks(
    identities: Any, findings: Iterable[SecurityRiskFinding], now: datetime
) -> dict[str, SecurityRiskSummary]:
    """Per-identity summary from the currently open findings."""
    valid, _ = split_valid(identities)
    by_email: dict[str, list[SecurityRiskFinding]] = {}
    for finding in findings:
        if not finding.is_resolved:
            by_email.setdefault(finding.user_email, []).append(finding)

    summaries: dict[str, SecurityRiskSummary] = {}
    for identity in valid:
        own = by_email.get(identity.primary_email, [])
        summaries[identity.primary_email] = SecurityRiskSummary(
            admin_without_2fa=sorted({
                f.platform.value for f in own if f.risk_type is RiskType.ADMIN_WITHOUT_2FA
            }),
            suspended_with_access=sorted({
                f.platform.value for f in own if f.risk_type is RiskType.SUSPENDED_WITH_ACCESS
            }),
            risk_score=max((f.risk_score for f in own), default=0.0),
            last_calculated=now,
        )
    return summaries


class RiskScorer:
    """Reconciles detected findings with the stored ones."""

    def __init__(
        self, store: Store, excessive_admin_platforms: int = DEFAULT_EXCESSIVE_ADMIN_PLATFORMS
    ) -> None:
        self.store = store
        self.excessive_admin_platforms = excessive_admin_platforms

    def apply(self, tenant_id: str, identities: Any, now: datetime) -> list[SecurityRiskFinding]:
        """Persist the current detections. Returns the open findings they map to.

        An open finding for the same (user, platform, risk type) only has its
        ``last_checked`` refreshed. Resolved findings are never touched; a
        re-detected condition opens a new finding instead.
        """
        detected = [
            f for f in score_risks(identities, now, self.excessive_admin_platforms)
            if f.tenant_id == tenant_id
        ]
        open_findings = {f.key: f for f in self.store.list_findings(tenant_id, open_only=True)}

        current: dict[tuple, SecurityRiskFinding] = {}
        opened = 0
        for finding in detected:
            if finding.key in current:
                continue
            existing = open_findings.get(finding.key)
            if existing is not None:
                existing.last_checked = now
                current[finding.key] = existing
            else:
                current[finding.key] = finding
                opened += 1

        self.store.save_findings(list(current.values()))
        logger.info(
            "Risk scoring: %d open findings, %d new",
            len(current), opened,
            extra={"tenant_id": tenant_id, "records": len(current)},
        )
        return list(current.values())


def resolve_finding(
    store: Store, tenant_id: str, finding_id: str, resolved_by: str, now: datetime
) -> SecurityRiskFinding:
    """Mark a finding resolved. Already-resolved findings are returned unchanged."""
    finding = store.get_finding(tenant_id, finding_id)
    if finding is None:
        raise KeyError(f"No finding {finding_id} for tenant {tenant_id}")
    if finding.is_resolved:
        return finding
    finding.is_resolved = True
    finding.resolved_at = now
    finding.resolved_by = resolved_by
    store.save_findings([finding])
    logger.info("Finding %s resolved by %s", finding_id, resolved_by, extra={"tenant_id": tenant_id})
    return finding
