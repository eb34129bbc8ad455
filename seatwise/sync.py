"""Per-tenant, per-platform account sync with run tracking.

A sync fetches everything first, then writes. Failures are reported per
platform on the result, never raised out of ``sync_all``. Retrying is the
caller's job (see ``seatwise.scheduler``).
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Mapping, Optional

from seatwise.config import SeatwiseConfig
from seatwise.connector import Credential, CredentialConnector
from seatwise.errors import (
    CredentialInvalid,
    CredentialNotConfigured,
    MalformedRecord,
    MergeConflict,
    PlatformUnreachable,
    SyncError,
)
from seatwise.models import PLATFORM_ORDER, AccountStatus, Platform, PlatformAccount, utcnow
from seatwise.providers import build_adapters
from seatwise.providers.base import BaseAdapter
from seatwise.store import Store

logger = logging.getLogger("seatwise.sync")


@dataclass
class SyncResult:
    platform: Platform
    accounts_synced: int = 0
    accounts_deactivated: int = 0
    malformed_records: int = 0
    merge_conflicts: int = 0
    error: Optional[SyncError] = None
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_tuple(self) -> tuple[int, Optional[SyncError]]:
        return (self.accounts_synced, self.error)


@dataclass
class TenantSyncReport:
    tenant_id: str
    results: dict[Platform, SyncResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[Platform]:
        return [p for p, r in self.results.items() if r.ok]

    @property
    def failed(self) -> list[Platform]:
        return [p for p, r in self.results.items() if not r.ok]


def _newer_than(a: Optional[datetime], b: Optional[datetime]) -> bool:
    """True when ``a`` is strictly later than ``b``; None is the earliest time."""
    if a is None:
        return False
    return b is None or a > b


class SyncOrchestrator:
    def __init__(
        self,
        store: Store,
        connector: CredentialConnector,
        adapters: Mapping[Platform, BaseAdapter],
        max_workers: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.connector = connector
        self.adapters = dict(adapters)
        self.max_workers = max(1, max_workers)
        self.clock = clock

    @classmethod
    def from_config(
        cls, config: SeatwiseConfig, store: Store, connector: CredentialConnector
    ) -> "SyncOrchestrator":
        return cls(
            store,
            connector,
            build_adapters(config),
            max_workers=config.sync_max_workers,
        )

    # ------------------------------------------------------------------
    # Single platform
    # ------------------------------------------------------------------

    def sync(self, tenant_id: str, platform: Platform) -> SyncResult:
        """Sync one platform for one tenant. Sync failures come back on the result."""
        adapter = self.adapters.get(platform)
        if adapter is None:
            error = CredentialNotConfigured(
                f"{platform.value} is not configured", platform=platform.value
            )
            logger.warning(
                "Skipping %s: not configured", platform.value,
                extra={"tenant_id": tenant_id, "platform": platform.value, "error_kind": error.kind},
            )
            return SyncResult(platform=platform, error=error, finished_at=self.clock())

        run_id = self.store.record_run_start(tenant_id, platform)
        started = time.monotonic()
        try:
            result = self._run(tenant_id, platform, adapter, run_id)
        except SyncError as exc:
            self.store.record_run_end(
                run_id=run_id,
                tenant_id=tenant_id,
                status="FAILED",
                error_kind=exc.kind,
                error_message=exc.message[:1000],
            )
            logger.error(
                "Sync failed: %s", exc.message,
                extra={
                    "tenant_id": tenant_id,
                    "platform": platform.value,
                    "run_id": run_id,
                    "error_kind": exc.kind,
                    "duration_s": round(time.monotonic() - started, 3),
                },
            )
            return SyncResult(platform=platform, error=exc, finished_at=self.clock())
        except Exception as exc:
            self.store.record_run_end(
                run_id=run_id,
                tenant_id=tenant_id,
                status="FAILED",
                error_kind="unexpected",
                error_message=str(exc)[:1000],
            )
            raise

        self.store.record_run_end(
            run_id=run_id,
            tenant_id=tenant_id,
            status="SUCCESS",
            records_upserted=result.accounts_synced,
            records_deactivated=result.accounts_deactivated,
        )
        logger.info(
            "Sync complete",
            extra={
                "tenant_id": tenant_id,
                "platform": platform.value,
                "records": result.accounts_synced,
                "run_id": run_id,
                "duration_s": round(time.monotonic() - started, 3),
            },
        )
        return result

    def _credential(self, tenant_id: str, platform: Platform) -> Credential:
        try:
            credential = self.connector.get_credential(tenant_id, platform)
        except TimeoutError as exc:
            raise PlatformUnreachable(
                f"Credential connector timed out for {platform.value}", platform=platform.value
            ) from exc
        if credential.is_expired(self.clock()):
            raise CredentialInvalid(
                f"{platform.value} credential expired at {credential.expires_at.isoformat()}",
                platform=platform.value,
            )
        return credential

    def _run(
        self, tenant_id: str, platform: Platform, adapter: BaseAdapter, run_id: str
    ) -> SyncResult:
        credential = self._credential(tenant_id, platform)
        synced_at = self.clock()

        # Materialize the whole fetch before touching any row
        try:
            raw_records = list(adapter.fetch_accounts(credential))
        except TimeoutError as exc:
            raise PlatformUnreachable(
                f"Timed out fetching {platform.value} accounts", platform=platform.value
            ) from exc

        accounts, seen_ids, malformed, conflicts = self._normalize_all(
            tenant_id, platform, adapter, raw_records, synced_at
        )
        conflicts += self._count_stored_conflicts(tenant_id, platform, accounts)

        synced = self.store.upsert_accounts(list(accounts.values()))
        deactivated = self.store.deactivate_missing(tenant_id, platform, seen_ids, synced_at)
        if malformed:
            logger.warning(
                "Skipped %d malformed %s records", malformed, platform.value,
                extra={
                    "tenant_id": tenant_id,
                    "platform": platform.value,
                    "run_id": run_id,
                    "error_kind": MalformedRecord.kind,
                    "records": malformed,
                },
            )
        return SyncResult(
            platform=platform,
            accounts_synced=synced,
            accounts_deactivated=deactivated,
            malformed_records=malformed,
            merge_conflicts=conflicts,
            finished_at=self.clock(),
        )

    def _normalize_all(
        self,
        tenant_id: str,
        platform: Platform,
        adapter: BaseAdapter,
        raw_records: Iterable,
        synced_at: datetime,
    ) -> tuple[dict[str, PlatformAccount], set[str], int, int]:
        accounts: dict[str, PlatformAccount] = {}
        # Includes ids of malformed records so a parse error never deactivates an account
        seen_ids: set[str] = set()
        malformed = 0
        conflicts = 0

        for raw in raw_records:
            native_id = adapter.native_id(raw)
            if native_id is not None:
                seen_ids.add(native_id)
            try:
                account = adapter.normalize(raw, tenant_id, synced_at)
            except (MalformedRecord, KeyError, TypeError, ValueError) as exc:
                malformed += 1
                logger.debug(
                    "Malformed %s record %s: %s", platform.value, native_id, exc,
                    extra={"tenant_id": tenant_id, "platform": platform.value},
                )
                continue

            account.status = AccountStatus.ACTIVE
            account.last_synced_at = synced_at
            seen_ids.add(account.native_id)

            previous = accounts.get(account.native_id)
            if previous is not None:
                if previous.email != account.email:
                    conflicts += 1
                    self._log_conflict(tenant_id, MergeConflict(
                        "Duplicate native id with different emails in one fetch",
                        platform=platform.value,
                        native_id=account.native_id,
                        previous_email=previous.email,
                        email=account.email,
                    ))
                # Later activity wins; on a tie the later record does
                if _newer_than(previous.last_activity, account.last_activity):
                    continue
            accounts[account.native_id] = account

        return accounts, seen_ids, malformed, conflicts

    def _count_stored_conflicts(
        self, tenant_id: str, platform: Platform, accounts: Mapping[str, PlatformAccount]
    ) -> int:
        """Log native ids whose stored email differs from the fetched one. The fetch wins."""
        stored = self.store.get_accounts(tenant_id, platform, list(accounts))
        conflicts = 0
        for native_id, previous in stored.items():
            current = accounts[native_id]
            if previous.email is not None and previous.email != current.email:
                conflicts += 1
                self._log_conflict(tenant_id, MergeConflict(
                    "Stored email differs from fetched email",
                    platform=platform.value,
                    native_id=native_id,
                    previous_email=previous.email,
                    email=current.email,
                ))
        return conflicts

    @staticmethod
    def _log_conflict(tenant_id: str, conflict: MergeConflict) -> None:
        logger.warning(
            "%s: %s %s -> %s", conflict.message, conflict.native_id,
            conflict.previous_email, conflict.email,
            extra={
                "tenant_id": tenant_id,
                "platform": conflict.platform,
                "error_kind": conflict.kind,
            },
        )

    # ------------------------------------------------------------------
    # All platforms
    # ------------------------------------------------------------------

    def sync_all(
        self, tenant_id: str, platforms: Optional[Iterable[Platform]] = None
    ) -> TenantSyncReport:
        """Sync every configured platform concurrently. Never fails fast."""
        if platforms is None:
            targets = [p for p in PLATFORM_ORDER if p in self.adapters]
        else:
            wanted = set(platforms)
            targets = [p for p in PLATFORM_ORDER if p in wanted]

        results: dict[Platform, SyncResult] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(self.sync, tenant_id, p): p for p in targets}
            for future in as_completed(futures):
                platform = futures[future]
                try:
                    results[platform] = future.result()
                except Exception as exc:
                    logger.exception(
                        "Unexpected error syncing %s", platform.value,
                        extra={"tenant_id": tenant_id, "platform": platform.value},
                    )
                    error = PlatformUnreachable(
                        f"Unexpected error syncing {platform.value}: {exc}",
                        platform=platform.value,
                    )
                    results[platform] = SyncResult(
                        platform=platform, error=error, finished_at=self.clock()
                    )

        report = TenantSyncReport(tenant_id, {p: results[p] for p in targets})
        logger.info(
            "Tenant sync finished: %d ok, %d failed",
            len(report.succeeded), len(report.failed),
            extra={"tenant_id": tenant_id},
        )
        return report
