from __future__ import annotations

from datetime import timedelta
from typing import Optional

import pytest

from seatwise.models import (
    AccountStatus,
    AwsSlot,
    CrossPlatformIdentity,
    GhostStatus,
    GitHubSlot,
    GoogleWorkspaceSlot,
    Platform,
    RiskType,
    Severity,
    SlackSlot,
    ZoomSlot,
)
from seatwise.risk_scorer import (
    PLATFORM_SENSITIVITY,
    SEVERITY_WEIGHTS,
    RiskScorer,
    resolve_finding,
    risk_score,
    score_risks,
    summarize_risks,
)
from tests.fakes import NOW, TENANT, days_ago


def _identity(slots: dict, email: str = "a@x.com", ghost: Optional[GhostStatus] = None) -> CrossPlatformIdentity:
    return CrossPlatformIdentity(
        tenant_id=TENANT, primary_email=email, platforms=dict(slots), ghost_status=ghost,
    )


def _by_type(findings, risk_type: RiskType):
    return [f for f in findings if f.risk_type is risk_type]


def test_admin_without_2fa_is_critical_on_identity_provider() -> None:
    identity = _identity({
        Platform.GOOGLE_WORKSPACE: GoogleWorkspaceSlot(user_id="g1", is_admin=True, has_strong_auth=False),
        Platform.SLACK: SlackSlot(user_id="U1", is_admin=True, has_strong_auth=None),
        Platform.GITHUB: GitHubSlot(user_id="n1", is_admin=True, has_strong_auth=True),
    })

    findings = _by_type(score_risks([identity], NOW), RiskType.ADMIN_WITHOUT_2FA)

    by_platform = {f.platform: f for f in findings}
    assert set(by_platform) == {Platform.GOOGLE_WORKSPACE, Platform.SLACK}
    assert by_platform[Platform.GOOGLE_WORKSPACE].severity is Severity.CRITICAL
    assert by_platform[Platform.GOOGLE_WORKSPACE].risk_score == 100.0
    assert by_platform[Platform.SLACK].severity is Severity.HIGH
    assert by_platform[Platform.SLACK].risk_score == 52.5
    assert by_platform[Platform.SLACK].user_id == "U1"
    assert by_platform[Platform.SLACK].detected_at == NOW


def test_suspended_slot_still_enumerated_is_flagged() -> None:
    identity = _identity({
        Platform.ZOOM: ZoomSlot(user_id="z1", suspended=True),
        Platform.SLACK: SlackSlot(user_id="U1", suspended=True, status=AccountStatus.INACTIVE),
    })

    findings = score_risks([identity], NOW)

    assert [(f.platform, f.risk_type, f.severity) for f in findings] == [
        (Platform.ZOOM, RiskType.SUSPENDED_WITH_ACCESS, Severity.HIGH),
    ]
    assert findings[0].risk_score == 37.5


def test_dormant_admin_is_inactive_admin() -> None:
    ghost = GhostStatus(is_ghost=False, stale_platforms=["github"], last_calculated=NOW)
    identity = _identity({
        Platform.GITHUB: GitHubSlot(user_id="n1", is_admin=True, has_strong_auth=True, last_activity=days_ago(120)),
    }, ghost=ghost)

    findings = score_risks([identity], NOW)

    assert [(f.risk_type, f.severity) for f in findings] == [(RiskType.INACTIVE_ADMIN, Severity.MEDIUM)]


def test_admin_on_many_platforms_is_excessive() -> None:
    identity = _identity({
        Platform.GOOGLE_WORKSPACE: GoogleWorkspaceSlot(user_id="g1", is_admin=True, has_strong_auth=True),
        Platform.GITHUB: GitHubSlot(user_id="n1", is_admin=True, has_strong_auth=True),
        Platform.AWS: AwsSlot(user_id="AID1", is_admin=True, has_strong_auth=True),
    })

    findings = score_risks([identity], NOW, excessive_admin_platforms=3)
    assert len(_by_type(findings, RiskType.EXCESSIVE_PERMISSIONS)) == 3

    findings = score_risks([identity], NOW, excessive_admin_platforms=4)
    assert findings == []


def test_scores_stay_within_bounds() -> None:
    for severity in SEVERITY_WEIGHTS:
        for platform in PLATFORM_SENSITIVITY:
            assert 0.0 <= risk_score(severity, platform) <= 100.0


def test_apply_refreshes_open_findings_instead_of_duplicating(store) -> None:
    identity = _identity({
        Platform.GOOGLE_WORKSPACE: GoogleWorkspaceSlot(user_id="g1", is_admin=True, has_strong_auth=False),
    })
    scorer = RiskScorer(store)

    first = scorer.apply(TENANT, [identity], NOW)
    later = NOW + timedelta(hours=6)
    second = scorer.apply(TENANT, [identity], later)

    assert len(first) == len(second) == 1
    assert second[0].id == first[0].id
    stored = store.list_findings(TENANT)
    assert len(stored) == 1
    assert stored[0].detected_at == NOW
    assert stored[0].last_checked == later


def test_resolved_finding_is_never_reopened(store) -> None:
    identity = _identity({
        Platform.GOOGLE_WORKSPACE: GoogleWorkspaceSlot(user_id="g1", is_admin=True, has_strong_auth=False),
    })
    scorer = RiskScorer(store)
    original = scorer.apply(TENANT, [identity], NOW)[0]
    resolve_finding(store, TENANT, original.id, "secops@x.com", NOW + timedelta(hours=1))

    # Condition cleared: nothing new, the resolved finding stays resolved
    identity.platforms[Platform.GOOGLE_WORKSPACE].has_strong_auth = True
    assert scorer.apply(TENANT, [identity], NOW + timedelta(days=1)) == []

    # Condition back: a new open finding with a fresh detection time
    identity.platforms[Platform.GOOGLE_WORKSPACE].has_strong_auth = False
    redetected = NOW + timedelta(days=2)
    reopened = scorer.apply(TENANT, [identity], redetected)

    assert len(reopened) == 1
    assert reopened[0].id != original.id
    assert reopened[0].detected_at == redetected
    resolved = store.get_finding(TENANT, original.id)
    assert resolved.is_resolved
    assert resolved.resolved_by == "secops@x.com"
    assert resolved.last_checked == NOW
    assert len(store.list_findings(TENANT, open_only=True)) == 1


def test_resolve_unknown_finding_raises(store) -> None:
    with pytest.raises(KeyError):
        resolve_finding(store, TENANT, "missing", "secops@x.com", NOW)


def test_summary_uses_max_open_score() -> None:
    identity = _identity({
        Platform.GOOGLE_WORKSPACE: GoogleWorkspaceSlot(user_id="g1", is_admin=True, has_strong_auth=False),
        Platform.ZOOM: ZoomSlot(user_id="z1", suspended=True),
    })
    quiet = _identity({Platform.SLACK: SlackSlot(user_id="U1")}, email="b@x.com")
    findings = score_risks([identity, quiet], NOW)

    summaries = summarize_risks([identity, quiet], findings, NOW)

    assert summaries["a@x.com"].admin_without_2fa == ["google-workspace"]
    assert summaries["a@x.com"].suspended_with_access == ["zoom"]
    assert summaries["a@x.com"].risk_score == 100.0
    assert summaries["b@x.com"].risk_score == 0.0
    assert summaries["b@x.com"].last_calculated == NOW
