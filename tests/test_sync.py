from __future__ import annotations

from datetime import timedelta

from seatwise.connector import Credential, CredentialConnector
from seatwise.errors import CredentialInvalid, CredentialNotConfigured, PlatformUnreachable
from seatwise.models import AccountStatus, Platform
from seatwise.sync import SyncOrchestrator
from tests.fakes import NOW, TENANT, FakeAdapter, FakeConnector, days_ago


def _orchestrator(store, adapters, connector=None) -> SyncOrchestrator:
    return SyncOrchestrator(
        store,
        connector or FakeConnector(),
        {a.PLATFORM: a for a in adapters},
        clock=lambda: NOW,
    )


def test_sync_upserts_accounts_and_records_run(store) -> None:
    adapter = FakeAdapter(Platform.SLACK, [
        {"id": "U1", "email": " A@X.com "},
        {"id": "U2", "email": "b@x.com"},
    ])
    result = _orchestrator(store, [adapter]).sync(TENANT, Platform.SLACK)

    assert result.ok
    assert result.as_tuple() == (2, None)
    accounts = store.list_accounts(TENANT, Platform.SLACK)
    assert [a.email for a in accounts] == ["a@x.com", "b@x.com"]
    assert all(a.status is AccountStatus.ACTIVE for a in accounts)
    assert all(a.last_synced_at == NOW for a in accounts)
    assert [r["status"] for r in store.runs.values()] == ["SUCCESS"]
    assert store.last_successful_sync(TENANT, Platform.SLACK) is not None


def test_accounts_missing_from_fetch_become_inactive(store) -> None:
    adapter = FakeAdapter(Platform.SLACK, [
        {"id": "U1", "email": "a@x.com"},
        {"id": "U2", "email": "b@x.com"},
    ])
    orchestrator = _orchestrator(store, [adapter])
    orchestrator.sync(TENANT, Platform.SLACK)

    adapter.records = [{"id": "U1", "email": "a@x.com"}]
    result = orchestrator.sync(TENANT, Platform.SLACK)

    assert result.accounts_deactivated == 1
    statuses = {a.native_id: a.status for a in store.list_accounts(TENANT, Platform.SLACK)}
    assert statuses == {"U1": AccountStatus.ACTIVE, "U2": AccountStatus.INACTIVE}

    # Already inactive rows are not counted again
    assert orchestrator.sync(TENANT, Platform.SLACK).accounts_deactivated == 0


def test_credential_unavailable_leaves_rows_untouched(store, make_account) -> None:
    stored = make_account(Platform.SLACK, "U1", "a@x.com", last_synced_at=days_ago(2))
    store.upsert_accounts([stored])
    adapter = FakeAdapter(Platform.SLACK, [])
    connector = FakeConnector({
        Platform.SLACK: CredentialNotConfigured("no token", platform="slack"),
    })

    result = _orchestrator(store, [adapter], connector).sync(TENANT, Platform.SLACK)

    assert result.error.kind == "credential-unavailable"
    assert isinstance(result.error, CredentialNotConfigured)
    assert adapter.fetches == 0
    assert store.list_accounts(TENANT)[0].to_dict() == stored.to_dict()
    run = next(iter(store.runs.values()))
    assert run["status"] == "FAILED"
    assert run["error_kind"] == "credential-unavailable"


def test_expired_credential_is_invalid(store) -> None:
    class ExpiredConnector(CredentialConnector):
        def get_credential(self, tenant_id, platform):
            return Credential(platform=platform, token="t", expires_at=NOW - timedelta(minutes=1))

    adapter = FakeAdapter(Platform.GITHUB, [{"id": "n1", "email": "a@x.com"}])
    result = _orchestrator(store, [adapter], ExpiredConnector()).sync(TENANT, Platform.GITHUB)

    assert isinstance(result.error, CredentialInvalid)
    assert adapter.fetches == 0


def test_fetch_failure_changes_no_rows(store, make_account) -> None:
    store.upsert_accounts([make_account(Platform.ZOOM, "z1", "a@x.com")])
    adapter = FakeAdapter(Platform.ZOOM, error=PlatformUnreachable("HTTP 503", platform="zoom"))

    result = _orchestrator(store, [adapter]).sync(TENANT, Platform.ZOOM)

    assert result.error.kind == "platform-unreachable"
    assert result.accounts_synced == 0
    assert store.list_accounts(TENANT)[0].status is AccountStatus.ACTIVE


def test_connector_timeout_is_platform_unreachable(store) -> None:
    adapter = FakeAdapter(Platform.SLACK, [])
    connector = FakeConnector({Platform.SLACK: TimeoutError("vault timed out")})

    result = _orchestrator(store, [adapter], connector).sync(TENANT, Platform.SLACK)

    assert isinstance(result.error, PlatformUnreachable)


def test_malformed_records_are_skipped_and_counted(store, make_account) -> None:
    store.upsert_accounts([make_account(Platform.SLACK, "U3", "c@x.com")])
    adapter = FakeAdapter(Platform.SLACK, [
        {"id": "U1", "email": "a@x.com"},
        {"id": "U3", "email": "c@x.com", "seen": "not-a-timestamp"},
        "garbage",
    ])

    result = _orchestrator(store, [adapter]).sync(TENANT, Platform.SLACK)

    assert result.ok
    assert result.accounts_synced == 1
    assert result.malformed_records == 2
    # The unparseable U3 record was still seen, so U3 is not deactivated
    statuses = {a.native_id: a.status for a in store.list_accounts(TENANT)}
    assert statuses == {"U1": AccountStatus.ACTIVE, "U3": AccountStatus.ACTIVE}


def test_duplicate_native_id_in_one_fetch_keeps_latest_activity(store) -> None:
    adapter = FakeAdapter(Platform.GITHUB, [
        {"id": "n1", "email": "new@x.com", "seen": days_ago(1)},
        {"id": "n1", "email": "old@x.com", "seen": days_ago(30)},
    ])

    result = _orchestrator(store, [adapter]).sync(TENANT, Platform.GITHUB)

    assert result.merge_conflicts == 1
    assert result.accounts_synced == 1
    assert store.list_accounts(TENANT)[0].email == "new@x.com"


def test_stored_email_change_is_a_merge_conflict(store, make_account) -> None:
    store.upsert_accounts([make_account(Platform.GITHUB, "n1", "old@x.com")])
    adapter = FakeAdapter(Platform.GITHUB, [{"id": "n1", "email": "new@x.com"}])

    result = _orchestrator(store, [adapter]).sync(TENANT, Platform.GITHUB)

    assert result.ok
    assert result.merge_conflicts == 1
    assert store.list_accounts(TENANT)[0].email == "new@x.com"


def test_sync_all_isolates_platform_failures(store) -> None:
    google = FakeAdapter(Platform.GOOGLE_WORKSPACE, [{"id": "g1", "email": "a@x.com"}])
    slack = FakeAdapter(Platform.SLACK, [{"id": "U1", "email": "a@x.com"}])
    connector = FakeConnector({
        Platform.GOOGLE_WORKSPACE: CredentialInvalid("revoked", platform="google-workspace"),
    })

    report = _orchestrator(store, [google, slack], connector).sync_all(TENANT)

    assert report.failed == [Platform.GOOGLE_WORKSPACE]
    assert report.succeeded == [Platform.SLACK]
    assert report.results[Platform.SLACK].accounts_synced == 1
    assert [a.platform for a in store.list_accounts(TENANT)] == [Platform.SLACK]


def test_sync_all_reports_unexpected_errors_as_unreachable(store) -> None:
    broken = FakeAdapter(Platform.ZOOM, error=RuntimeError("bug"))
    healthy = FakeAdapter(Platform.SLACK, [{"id": "U1", "email": "a@x.com"}])

    report = _orchestrator(store, [broken, healthy]).sync_all(TENANT)

    assert isinstance(report.results[Platform.ZOOM].error, PlatformUnreachable)
    assert report.results[Platform.SLACK].ok
    statuses = sorted(r["status"] for r in store.runs.values())
    assert statuses == ["FAILED", "SUCCESS"]


def test_sync_all_unconfigured_platform_is_not_configured(store) -> None:
    report = _orchestrator(store, []).sync_all(TENANT, [Platform.ZOOM])

    assert isinstance(report.results[Platform.ZOOM].error, CredentialNotConfigured)
    assert store.runs == {}
