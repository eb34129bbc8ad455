"""APScheduler-based interval scheduling: one sync + analytics job per tenant."""

from __future__ import annotations

import logging
import time
from typing import Callable

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from seatwise.config import SchedulerConfig, SeatwiseConfig, load_config
from seatwise.connector import CredentialConnector, EnvCredentialConnector
from seatwise.errors import PlatformUnreachable
from seatwise.logging_config import configure_logging
from seatwise.pipeline import AnalyticsPipeline
from seatwise.store import Store
from seatwise.sync import SyncOrchestrator, TenantSyncReport

logger = logging.getLogger("seatwise.scheduler")


def run_tenant(
    tenant_id: str,
    orchestrator: SyncOrchestrator,
    pipeline: AnalyticsPipeline,
    sched: SchedulerConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> TenantSyncReport:
    """Sync all platforms, retry unreachable ones with backoff, then run analytics."""
    report = orchestrator.sync_all(tenant_id)

    for attempt in range(sched.max_retries):
        retry = [
            p for p, r in report.results.items() if isinstance(r.error, PlatformUnreachable)
        ]
        if not retry:
            break
        delay = sched.retry_backoff_s * (2 ** attempt)
        logger.warning(
            "Retrying %s in %ds (attempt %d/%d)",
            [p.value for p in retry], delay, attempt + 1, sched.max_retries,
            extra={"tenant_id": tenant_id},
        )
        sleep(delay)
        report.results.update(orchestrator.sync_all(tenant_id, retry).results)

    for platform in report.failed:
        error = report.results[platform].error
        logger.error(
            "Sync %s failed: %s", platform.value, error.message,
            extra={"tenant_id": tenant_id, "platform": platform.value, "error_kind": error.kind},
        )

    try:
        pipeline.run(tenant_id)
    except Exception as exc:
        logger.exception("Analytics failed: %s", exc, extra={"tenant_id": tenant_id})
    return report


def _on_job_error(event) -> None:
    """Log job execution errors."""
    logger.error(
        "Job %s raised an exception: %s",
        event.job_id,
        event.exception,
    )


def build_scheduler(
    config: SeatwiseConfig,
    store: Store,
    connector: CredentialConnector,
    scheduler_cls=BlockingScheduler,
):
    """One interval job per tenant. max_instances=1 keeps a tenant's runs serialized."""
    scheduler = scheduler_cls()
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    sched = config.scheduler
    orchestrator = SyncOrchestrator.from_config(config, store, connector)
    pipeline = AnalyticsPipeline(store, config.analytics)

    for tenant_id in config.tenant_ids:
        scheduler.add_job(
            run_tenant,
            "interval",
            minutes=sched.tenant_interval_min,
            args=[tenant_id, orchestrator, pipeline, sched],
            id=f"tenant:{tenant_id}",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=sched.misfire_grace_time,
        )
    return scheduler


def start_scheduler(config: SeatwiseConfig, store: Store, connector: CredentialConnector) -> None:
    """Start the blocking scheduler."""
    scheduler = build_scheduler(config, store, connector)
    logger.info("Starting scheduler with jobs: %s", [j.id for j in scheduler.get_jobs()])
    scheduler.start()


def main() -> None:
    from seatwise.db import PostgresStore

    configure_logging()
    config = load_config()
    store = PostgresStore(config.database)
    try:
        store.create_schema()
        start_scheduler(config, store, EnvCredentialConnector())
    finally:
        store.close()


if __name__ == "__main__":
    main()
