from __future__ import annotations

from typing import Optional

from seatwise.ghost_detector import detect_ghosts
from seatwise.models import (
    AccountStatus,
    CrossPlatformIdentity,
    GitHubSlot,
    GoogleWorkspaceSlot,
    Platform,
    SlackSlot,
)
from tests.fakes import NOW, TENANT, days_ago


def _identity(email: str = "a@x.com", slots: Optional[dict] = None) -> CrossPlatformIdentity:
    return CrossPlatformIdentity(tenant_id=TENANT, primary_email=email, platforms=dict(slots or {}))


def test_never_logged_in_everywhere_is_ghost() -> None:
    identity = _identity("a@x.com", {
        Platform.GOOGLE_WORKSPACE: GoogleWorkspaceSlot(user_id="g1"),
        Platform.SLACK: SlackSlot(user_id="U1"),
    })

    status = detect_ghosts([identity], NOW)["a@x.com"]

    assert status.is_ghost
    assert status.never_logged_in_platforms == ["google-workspace", "slack"]
    assert status.stale_platforms == []
    assert status.inactive_days == 0
    assert status.last_calculated == NOW


def test_stale_means_strictly_older_than_threshold() -> None:
    stale = _identity("stale@x.com", {Platform.SLACK: SlackSlot(user_id="U1", last_activity=days_ago(91))})
    boundary = _identity("edge@x.com", {Platform.SLACK: SlackSlot(user_id="U2", last_activity=days_ago(90))})

    statuses = detect_ghosts([stale, boundary], NOW, threshold_days=90)

    assert statuses["stale@x.com"].is_ghost
    assert statuses["stale@x.com"].stale_platforms == ["slack"]
    assert statuses["stale@x.com"].inactive_days == 91
    assert not statuses["edge@x.com"].is_ghost


def test_recent_activity_on_one_platform_clears_ghost() -> None:
    identity = _identity("a@x.com", {
        Platform.GOOGLE_WORKSPACE: GoogleWorkspaceSlot(user_id="g1"),
        Platform.GITHUB: GitHubSlot(user_id="n1"),
    })
    assert detect_ghosts([identity], NOW)["a@x.com"].is_ghost

    identity.platforms[Platform.GITHUB].last_activity = days_ago(1)
    status = detect_ghosts([identity], NOW)["a@x.com"]

    assert not status.is_ghost
    assert status.never_logged_in_platforms == ["google-workspace"]
    assert status.inactive_days == 1


def test_inactive_days_is_minimum_across_active_slots() -> None:
    identity = _identity("a@x.com", {
        Platform.SLACK: SlackSlot(user_id="U1", last_activity=days_ago(200)),
        Platform.GITHUB: GitHubSlot(user_id="n1", last_activity=days_ago(100)),
    })

    status = detect_ghosts([identity], NOW)["a@x.com"]

    assert status.is_ghost
    assert status.inactive_days == 100


def test_suspended_and_inactive_slots_are_not_considered() -> None:
    identity = _identity("a@x.com", {
        Platform.SLACK: SlackSlot(user_id="U1", suspended=True),
        Platform.GITHUB: GitHubSlot(user_id="n1", status=AccountStatus.INACTIVE),
    })

    status = detect_ghosts([identity], NOW)["a@x.com"]

    assert not status.is_ghost
    assert status.never_logged_in_platforms == []


def test_malformed_identities_are_excluded() -> None:
    good = _identity("a@x.com", {Platform.SLACK: SlackSlot(user_id="U1")})
    not_normalized = _identity("Upper@X.com", {Platform.SLACK: SlackSlot(user_id="U2")})
    empty = _identity("empty@x.com")

    statuses = detect_ghosts({"a": good, "b": not_normalized, "c": empty}, NOW)

    assert list(statuses) == ["a@x.com"]
