"""Persistence interface and the in-memory implementation.

All writes are keyed upserts, so re-running a sync or a pass after a crash
converges on the same state. The PostgreSQL implementation lives in
``seatwise.db``.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence

from seatwise.models import (
    DERIVED_BLOCKS,
    AccountStatus,
    CrossPlatformIdentity,
    OptimizationRecommendation,
    Platform,
    PlatformAccount,
    SecurityRiskFinding,
    utcnow,
)

logger = logging.getLogger("seatwise.store")


class Store(ABC):
    # ------------------------------------------------------------------
    # Platform accounts
    # ------------------------------------------------------------------

    @abstractmethod
    def get_accounts(
        self, tenant_id: str, platform: Platform, native_ids: Iterable[str]
    ) -> dict[str, PlatformAccount]:
        """Stored accounts for the given native ids, keyed by native id."""

    @abstractmethod
    def list_accounts(
        self,
        tenant_id: str,
        platform: Optional[Platform] = None,
        status: Optional[AccountStatus] = None,
    ) -> list[PlatformAccount]:
        """Accounts of one tenant, optionally filtered by platform and status."""

    @abstractmethod
    def upsert_accounts(self, accounts: Sequence[PlatformAccount]) -> int:
        """Insert or replace by (tenant, platform, native id). Returns rows written."""

    @abstractmethod
    def deactivate_missing(
        self,
        tenant_id: str,
        platform: Platform,
        keep_native_ids: set[str],
        synced_at: datetime,
    ) -> int:
        """Flag active accounts absent from ``keep_native_ids`` as inactive."""

    # ------------------------------------------------------------------
    # Sync run tracking
    # ------------------------------------------------------------------

    @abstractmethod
    def record_run_start(self, tenant_id: str, platform: Platform) -> str:
        """Open a RUNNING sync run. Returns its id."""

    @abstractmethod
    def record_run_end(
        self,
        run_id: str,
        tenant_id: str,
        status: str,
        records_upserted: int = 0,
        records_deactivated: int = 0,
        error_kind: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Finalise a sync run."""

    @abstractmethod
    def last_successful_sync(self, tenant_id: str, platform: Platform) -> Optional[datetime]:
        """Finish time of the latest SUCCESS run, or None."""

    # ------------------------------------------------------------------
    # Cross-platform identities
    # ------------------------------------------------------------------

    @abstractmethod
    def list_identities(self, tenant_id: str) -> list[CrossPlatformIdentity]:
        """All identities of one tenant, ordered by email."""

    @abstractmethod
    def upsert_identities(self, identities: Sequence[CrossPlatformIdentity]) -> int:
        """Insert or replace by (tenant, email). Identities without slots are rejected."""

    @abstractmethod
    def delete_identity(self, tenant_id: str, primary_email: str) -> None:
        """Remove an identity that lost its last platform slot."""

    @abstractmethod
    def update_derived(self, tenant_id: str, block: str, values: Mapping[str, Any]) -> int:
        """Write one derived block (ghost_status, security_risks, license_waste) per email."""

    # ------------------------------------------------------------------
    # Security findings
    # ------------------------------------------------------------------

    @abstractmethod
    def list_findings(self, tenant_id: str, open_only: bool = False) -> list[SecurityRiskFinding]:
        """Findings of one tenant, oldest detection first."""

    @abstractmethod
    def save_findings(self, findings: Sequence[SecurityRiskFinding]) -> int:
        """Insert or replace by finding id."""

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    @abstractmethod
    def list_recommendations(self, tenant_id: str) -> list[OptimizationRecommendation]:
        """Recommendations of one tenant."""

    @abstractmethod
    def save_recommendations(self, recommendations: Sequence[OptimizationRecommendation]) -> int:
        """Insert or replace by recommendation id."""

    # ------------------------------------------------------------------
    # Convenience lookups shared by every implementation
    # ------------------------------------------------------------------

    def get_finding(self, tenant_id: str, finding_id: str) -> Optional[SecurityRiskFinding]:
        for finding in self.list_findings(tenant_id):
            if finding.id == finding_id:
                return finding
        return None

    def get_recommendation(
        self, tenant_id: str, recommendation_id: str
    ) -> Optional[OptimizationRecommendation]:
        for rec in self.list_recommendations(tenant_id):
            if rec.id == recommendation_id:
                return rec
        return None


def _check_block(block: str) -> type:
    try:
        return DERIVED_BLOCKS[block]
    except KeyError:
        raise ValueError(f"Unknown derived block {block!r}") from None


class MemoryStore(Store):
    """Process-local store. Copies on every read and write, like a real database would."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._accounts: dict[tuple[str, Platform, str], PlatformAccount] = {}
        self._identities: dict[tuple[str, str], CrossPlatformIdentity] = {}
        self._findings: dict[str, SecurityRiskFinding] = {}
        self._recommendations: dict[str, OptimizationRecommendation] = {}
        self.runs: dict[str, dict[str, Any]] = {}

    # Accounts

    def get_accounts(self, tenant_id, platform, native_ids):
        with self._lock:
            found = {}
            for native_id in native_ids:
                account = self._accounts.get((tenant_id, platform, native_id))
                if account is not None:
                    found[native_id] = copy.deepcopy(account)
            return found

    def list_accounts(self, tenant_id, platform=None, status=None):
        with self._lock:
            rows = [
                a for a in self._accounts.values()
                if a.tenant_id == tenant_id
                and (platform is None or a.platform is platform)
                and (status is None or a.status is status)
            ]
            rows.sort(key=lambda a: (a.platform.value, a.native_id))
            return copy.deepcopy(rows)

    def upsert_accounts(self, accounts):
        with self._lock:
            for account in accounts:
                self._accounts[account.key] = copy.deepcopy(account)
            return len(accounts)

    def deactivate_missing(self, tenant_id, platform, keep_native_ids, synced_at):
        with self._lock:
            count = 0
            for (tid, plat, native_id), account in self._accounts.items():
                if tid != tenant_id or plat is not platform or native_id in keep_native_ids:
                    continue
                if account.status is AccountStatus.ACTIVE:
                    account.status = AccountStatus.INACTIVE
                    account.last_synced_at = synced_at
                    count += 1
            return count

    # Runs

    def record_run_start(self, tenant_id, platform):
        run_id = str(uuid.uuid4())
        with self._lock:
            self.runs[run_id] = {
                "id": run_id,
                "tenant_id": tenant_id,
                "platform": platform.value,
                "status": "RUNNING",
                "started_at": utcnow(),
                "finished_at": None,
            }
        return run_id

    def record_run_end(
        self,
        run_id,
        tenant_id,
        status,
        records_upserted=0,
        records_deactivated=0,
        error_kind=None,
        error_message=None,
    ):
        with self._lock:
            run = self.runs[run_id]
            run.update(
                status=status,
                finished_at=utcnow(),
                records_upserted=records_upserted,
                records_deactivated=records_deactivated,
                error_kind=error_kind,
                error_message=error_message,
            )

    def last_successful_sync(self, tenant_id, platform):
        with self._lock:
            finished = [
                r["finished_at"] for r in self.runs.values()
                if r["tenant_id"] == tenant_id
                and r["platform"] == platform.value
                and r["status"] == "SUCCESS"
            ]
            return max(finished) if finished else None

    # Identities

    def list_identities(self, tenant_id):
        with self._lock:
            rows = [i for (tid, _), i in self._identities.items() if tid == tenant_id]
            rows.sort(key=lambda i: i.primary_email)
            return copy.deepcopy(rows)

    def upsert_identities(self, identities):
        with self._lock:
            for identity in identities:
                if not identity.platforms:
                    raise ValueError(
                        f"Refusing to persist identity {identity.primary_email} without platform slots"
                    )
                self._identities[identity.key] = copy.deepcopy(identity)
            return len(identities)

    def delete_identity(self, tenant_id, primary_email):
        with self._lock:
            self._identities.pop((tenant_id, primary_email), None)

    def update_derived(self, tenant_id, block, values):
        _check_block(block)
        with self._lock:
            count = 0
            for email, value in values.items():
                identity = self._identities.get((tenant_id, email))
                if identity is None:
                    logger.warning(
                        "Skipping %s update for unknown identity %s", block, email,
                        extra={"tenant_id": tenant_id},
                    )
                    continue
                setattr(identity, block, copy.deepcopy(value))
                count += 1
            return count

    # Findings

    def list_findings(self, tenant_id, open_only=False):
        with self._lock:
            rows = [
                f for f in self._findings.values()
                if f.tenant_id == tenant_id and not (open_only and f.is_resolved)
            ]
            rows.sort(key=lambda f: (f.detected_at is None, f.detected_at, f.id))
            return copy.deepcopy(rows)

    def save_findings(self, findings):
        with self._lock:
            for finding in findings:
                self._findings[finding.id] = copy.deepcopy(finding)
            return len(findings)

    # Recommendations

    def list_recommendations(self, tenant_id):
        with self._lock:
            rows = [r for r in self._recommendations.values() if r.tenant_id == tenant_id]
            rows.sort(key=lambda r: (r.platform.value, r.category.value, r.id))
            return copy.deepcopy(rows)

    def save_recommendations(self, recommendations):
        with self._lock:
            for rec in recommendations:
                self._recommendations[rec.id] = copy.deepcopy(rec)
            return len(recommendations)
