from __future__ import annotations

from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from seatwise.config import SchedulerConfig, SeatwiseConfig
from seatwise.errors import CredentialInvalid, PlatformUnreachable
from seatwise.models import Platform, RiskType, Severity
from seatwise.pipeline import AnalyticsPipeline
from seatwise.pricing import DEFAULT_PRICING
from seatwise.scheduler import build_scheduler, run_tenant
from seatwise.sync import SyncOrchestrator
from tests.fakes import NOW, TENANT, FakeAdapter, FakeConnector, days_ago


def _pipeline(store, when=NOW) -> AnalyticsPipeline:
    return AnalyticsPipeline(store, clock=lambda: when, pricing_loader=lambda path: dict(DEFAULT_PRICING))


def _orchestrator(store, adapters, connector) -> SyncOrchestrator:
    return SyncOrchestrator(store, connector, {a.PLATFORM: a for a in adapters}, clock=lambda: NOW)


def test_admin_without_2fa_and_stale_chat_seat_end_to_end(store) -> None:
    google = FakeAdapter(Platform.GOOGLE_WORKSPACE, [
        {"id": "g1", "email": "a@x.com", "admin": True, "mfa": False},
    ])
    slack = FakeAdapter(Platform.SLACK, [
        {"id": "U1", "email": "A@X.com", "admin": False, "seen": days_ago(91)},
    ])
    _orchestrator(store, [google, slack], FakeConnector()).sync_all(TENANT)

    counts = _pipeline(store).run(TENANT)

    identities = store.list_identities(TENANT)
    assert [i.primary_email for i in identities] == ["a@x.com"]
    identity = identities[0]
    assert identity.populated_platforms() == [Platform.GOOGLE_WORKSPACE, Platform.SLACK]
    assert identity.ghost_status.is_ghost
    assert identity.ghost_status.never_logged_in_platforms == ["google-workspace"]
    assert identity.ghost_status.stale_platforms == ["slack"]

    no_2fa = [f for f in store.list_findings(TENANT) if f.risk_type is RiskType.ADMIN_WITHOUT_2FA]
    assert len(no_2fa) == 1
    assert no_2fa[0].platform is Platform.GOOGLE_WORKSPACE
    assert no_2fa[0].severity is Severity.CRITICAL
    assert identity.security_risks.admin_without_2fa == ["google-workspace"]
    assert identity.security_risks.risk_score == 100.0

    slack_recs = [r for r in store.list_recommendations(TENANT) if r.platform is Platform.SLACK]
    assert len(slack_recs) == 1
    assert [(u.user_email, u.recommended_action) for u in slack_recs[0].affected_users] == [
        ("a@x.com", "remove"),
    ]
    assert slack_recs[0].metrics.unused_licenses == 1
    assert identity.license_waste.wasted_cost > 0
    assert counts["identities"] == 1
    assert counts["ghosts"] == 1


def test_failed_platform_leaves_its_rows_and_slots_unchanged(store) -> None:
    google = FakeAdapter(Platform.GOOGLE_WORKSPACE, [{"id": "g1", "email": "a@x.com", "seen": days_ago(2)}])
    slack = FakeAdapter(Platform.SLACK, [{"id": "U1", "email": "a@x.com", "name": "Ann"}])
    connector = FakeConnector()
    orchestrator = _orchestrator(store, [google, slack], connector)
    orchestrator.sync_all(TENANT)
    _pipeline(store).run(TENANT)
    google_rows = [a.to_dict() for a in store.list_accounts(TENANT, Platform.GOOGLE_WORKSPACE)]
    google_slot = store.list_identities(TENANT)[0].platforms[Platform.GOOGLE_WORKSPACE]

    connector.failures[Platform.GOOGLE_WORKSPACE] = CredentialInvalid("revoked", platform="google-workspace")
    slack.records = [{"id": "U1", "email": "a@x.com", "name": "Ann Lee"}]
    report = orchestrator.sync_all(TENANT)
    _pipeline(store, NOW + timedelta(hours=1)).run(TENANT)

    assert report.failed == [Platform.GOOGLE_WORKSPACE]
    assert report.results[Platform.GOOGLE_WORKSPACE].error.kind == "credential-unavailable"
    assert [a.to_dict() for a in store.list_accounts(TENANT, Platform.GOOGLE_WORKSPACE)] == google_rows
    identity = store.list_identities(TENANT)[0]
    assert identity.platforms[Platform.GOOGLE_WORKSPACE] == google_slot
    assert identity.platforms[Platform.SLACK].display_name == "Ann Lee"


def test_emails_are_unique_and_scores_bounded(store) -> None:
    slack = FakeAdapter(Platform.SLACK, [
        {"id": f"U{i}", "email": f"User{i % 3}@X.com ", "admin": i % 2 == 0, "suspended": i == 4}
        for i in range(6)
    ])
    github = FakeAdapter(Platform.GITHUB, [
        {"id": f"n{i}", "email": f"user{i}@x.com", "admin": True, "tier": "enterprise", "usage": 3.0,
         "seen": days_ago(1)}
        for i in range(3)
    ])
    _orchestrator(store, [slack, github], FakeConnector()).sync_all(TENANT)

    _pipeline(store).run(TENANT)

    emails = [i.primary_email for i in store.list_identities(TENANT)]
    assert emails == sorted(set(emails))
    assert emails == ["user0@x.com", "user1@x.com", "user2@x.com"]
    assert all(0.0 <= f.risk_score <= 100.0 for f in store.list_findings(TENANT))
    for rec in store.list_recommendations(TENANT):
        assert 0.0 <= rec.metrics.utilization_rate <= 100.0
        assert 0.0 <= rec.metrics.waste_percentage <= 100.0


def test_rerunning_analytics_does_not_duplicate_findings(store) -> None:
    google = FakeAdapter(Platform.GOOGLE_WORKSPACE, [{"id": "g1", "email": "a@x.com", "admin": True}])
    _orchestrator(store, [google], FakeConnector()).sync_all(TENANT)

    _pipeline(store).run(TENANT)
    before = {f.key: f.id for f in store.list_findings(TENANT)}
    _pipeline(store, NOW + timedelta(days=1)).run(TENANT)
    after = {f.key: f.id for f in store.list_findings(TENANT)}

    assert before == after


class _FlakyAdapter(FakeAdapter):
    def __init__(self, platform, records, failures: int) -> None:
        super().__init__(platform, records)
        self.failures = failures

    def fetch_accounts(self, credential):
        self.fetches += 1
        if self.fetches <= self.failures:
            raise PlatformUnreachable("HTTP 503", platform=self.PLATFORM.value)
        return list(self.records)


def test_run_tenant_retries_unreachable_platforms_with_backoff(store) -> None:
    flaky = _FlakyAdapter(Platform.ZOOM, [{"id": "z1", "email": "a@x.com"}], failures=2)
    steady = FakeAdapter(Platform.SLACK, [{"id": "U1", "email": "a@x.com"}])
    orchestrator = _orchestrator(store, [flaky, steady], FakeConnector())
    delays: list[float] = []

    report = run_tenant(
        TENANT, orchestrator, _pipeline(store),
        SchedulerConfig(max_retries=3, retry_backoff_s=10), sleep=delays.append,
    )

    assert report.failed == []
    assert delays == [10, 20]
    assert flaky.fetches == 3
    assert steady.fetches == 1
    assert len(store.list_identities(TENANT)) == 1


def test_run_tenant_gives_up_after_max_retries(store) -> None:
    flaky = _FlakyAdapter(Platform.ZOOM, [{"id": "z1", "email": "a@x.com"}], failures=10)
    orchestrator = _orchestrator(store, [flaky], FakeConnector())
    delays: list[float] = []

    report = run_tenant(
        TENANT, orchestrator, _pipeline(store),
        SchedulerConfig(max_retries=2, retry_backoff_s=5), sleep=delays.append,
    )

    assert report.failed == [Platform.ZOOM]
    assert delays == [5, 10]
    assert flaky.fetches == 3


def test_credential_failures_are_not_retried(store) -> None:
    slack = FakeAdapter(Platform.SLACK, [])
    connector = FakeConnector({Platform.SLACK: CredentialInvalid("revoked", platform="slack")})
    delays: list[float] = []

    run_tenant(
        TENANT, _orchestrator(store, [slack], connector), _pipeline(store),
        SchedulerConfig(max_retries=3), sleep=delays.append,
    )

    assert delays == []
    assert len(connector.calls) == 1


def test_scheduler_has_one_serialized_job_per_tenant(store) -> None:
    config = SeatwiseConfig(tenant_ids=["acme", "globex"], scheduler=SchedulerConfig(tenant_interval_min=15))

    scheduler = build_scheduler(config, store, FakeConnector(), scheduler_cls=BackgroundScheduler)

    jobs = {job.id: job for job in scheduler.get_jobs()}
    assert set(jobs) == {"tenant:acme", "tenant:globex"}
    assert all(job.max_instances == 1 for job in jobs.values())
