"""PostgreSQL store: connection pool, batched upserts, run tracking."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from importlib import resources
from typing import Any, Generator, Sequence

import psycopg2
import psycopg2.extras
import psycopg2.pool

from seatwise.config import DatabaseConfig
from seatwise.models import (
    AccountStatus,
    CrossPlatformIdentity,
    OptimizationRecommendation,
    PlatformAccount,
    SecurityRiskFinding,
)
from seatwise.store import Store, _check_block

logger = logging.getLogger("seatwise.db")

_ACCOUNT_COLUMNS = [
    "tenant_id", "platform", "native_id", "email", "display_name", "is_admin",
    "suspended", "has_strong_auth", "last_activity", "license_tier",
    "feature_usage", "attributes", "status", "last_synced_at",
]

_FINDING_COLUMNS = [
    "id", "tenant_id", "user_id", "user_email", "platform", "risk_type",
    "severity", "risk_score", "description", "recommendations",
    "affected_platforms", "metadata", "detected_at", "last_checked",
    "is_resolved", "resolved_at", "resolved_by",
]

_JSON_COLUMNS = {"attributes", "recommendations", "affected_platforms", "metadata"}


def _json(value: Any):
    return psycopg2.extras.Json(value) if value is not None else None


class PostgresStore(Store):
    """Store backed by a ThreadedConnectionPool, safe to share across sync workers."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=config.min_connections,
            maxconn=config.max_connections,
            dsn=config.url,
        )

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def connection(self) -> Generator:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self, dict_rows: bool = False) -> Generator:
        """Yield a cursor inside an auto-commit/rollback transaction."""
        factory = psycopg2.extras.RealDictCursor if dict_rows else None
        with self.connection() as conn:
            try:
                with conn.cursor(cursor_factory=factory) as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def create_schema(self) -> None:
        ddl = resources.files("seatwise").joinpath("sql/schema.sql").read_text(encoding="utf-8")
        with self.transaction() as cur:
            cur.execute(ddl)
        logger.info("Schema ensured")

    def upsert_batch(
        self,
        cur,
        table: str,
        columns: list[str],
        rows: Sequence[tuple],
        conflict_columns: list[str],
        update_columns: list[str],
    ) -> int:
        """Bulk upsert using execute_values with ON CONFLICT DO UPDATE."""
        if not rows:
            return 0
        set_clauses = ", ".join(f"{c} = EXCLUDED.{c}" for c in update_columns)
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES %s "
            f"ON CONFLICT ({', '.join(conflict_columns)}) "
            f"DO UPDATE SET {set_clauses}, updated_at = NOW()"
        )
        psycopg2.extras.execute_values(cur, sql, rows, page_size=500)
        return len(rows)

    # ------------------------------------------------------------------
    # Platform accounts
    # ------------------------------------------------------------------

    @staticmethod
    def _account_row(account: PlatformAccount) -> tuple:
        data = account.to_dict()
        return tuple(
            _json(data[c]) if c in _JSON_COLUMNS else data[c] for c in _ACCOUNT_COLUMNS
        )

    def get_accounts(self, tenant_id, platform, native_ids):
        ids = list(native_ids)
        if not ids:
            return {}
        with self.transaction(dict_rows=True) as cur:
            cur.execute(
                f"""SELECT {', '.join(_ACCOUNT_COLUMNS)} FROM platform_accounts
                    WHERE tenant_id = %s AND platform = %s AND native_id = ANY(%s)""",
                (tenant_id, platform.value, ids),
            )
            rows = cur.fetchall()
        return {r["native_id"]: PlatformAccount.from_dict(dict(r)) for r in rows}

    def list_accounts(self, tenant_id, platform=None, status=None):
        clauses = ["tenant_id = %s"]
        params: list[Any] = [tenant_id]
        if platform is not None:
            clauses.append("platform = %s")
            params.append(platform.value)
        if status is not None:
            clauses.append("status = %s")
            params.append(status.value)
        with self.transaction(dict_rows=True) as cur:
            cur.execute(
                f"""SELECT {', '.join(_ACCOUNT_COLUMNS)} FROM platform_accounts
                    WHERE {' AND '.join(clauses)}
                    ORDER BY platform, native_id""",
                params,
            )
            return [PlatformAccount.from_dict(dict(r)) for r in cur.fetchall()]

    def upsert_accounts(self, accounts):
        rows = [self._account_row(a) for a in accounts]
        update = [c for c in _ACCOUNT_COLUMNS if c not in ("tenant_id", "platform", "native_id")]
        with self.transaction() as cur:
            return self.upsert_batch(
                cur, "platform_accounts", _ACCOUNT_COLUMNS, rows,
                ["tenant_id", "platform", "native_id"], update,
            )

    def deactivate_missing(self, tenant_id, platform, keep_native_ids, synced_at):
        with self.transaction() as cur:
            cur.execute(
                """UPDATE platform_accounts
                   SET status = %s, last_synced_at = %s, updated_at = NOW()
                   WHERE tenant_id = %s AND platform = %s AND status = %s
                     AND NOT (native_id = ANY(%s))""",
                (
                    AccountStatus.INACTIVE.value,
                    synced_at,
                    tenant_id,
                    platform.value,
                    AccountStatus.ACTIVE.value,
                    list(keep_native_ids),
                ),
            )
            return cur.rowcount

    # ------------------------------------------------------------------
    # Sync run tracking
    # ------------------------------------------------------------------

    def record_run_start(self, tenant_id, platform):
        run_id = str(uuid.uuid4())
        with self.transaction() as cur:
            cur.execute(
                """INSERT INTO sync_runs (id, tenant_id, platform, status)
                   VALUES (%s, %s, %s, 'RUNNING')""",
                (run_id, tenant_id, platform.value),
            )
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
        with self.transaction() as cur:
            cur.execute(
                """UPDATE sync_runs
                   SET status = %s,
                       finished_at = NOW(),
                       records_upserted = %s,
                       records_deactivated = %s,
                       error_kind = %s,
                       error_message = %s
                   WHERE id = %s AND tenant_id = %s""",
                (
                    status,
                    records_upserted,
                    records_deactivated,
                    error_kind,
                    error_message,
                    run_id,
                    tenant_id,
                ),
            )

    def last_successful_sync(self, tenant_id, platform):
        with self.transaction() as cur:
            cur.execute(
                """SELECT MAX(finished_at) FROM sync_runs
                   WHERE tenant_id = %s AND platform = %s AND status = 'SUCCESS'""",
                (tenant_id, platform.value),
            )
            row = cur.fetchone()
        return row[0] if row else None

    # ------------------------------------------------------------------
    # Cross-platform identities
    # ------------------------------------------------------------------

    def list_identities(self, tenant_id):
        with self.transaction(dict_rows=True) as cur:
            cur.execute(
                """SELECT tenant_id, primary_email, platforms, ghost_status,
                          security_risks, license_waste, last_sync
                   FROM cross_platform_identities
                   WHERE tenant_id = %s ORDER BY primary_email""",
                (tenant_id,),
            )
            return [CrossPlatformIdentity.from_dict(dict(r)) for r in cur.fetchall()]

    def upsert_identities(self, identities):
        rows = []
        for identity in identities:
            if not identity.platforms:
                raise ValueError(
                    f"Refusing to persist identity {identity.primary_email} without platform slots"
                )
            data = identity.to_dict()
            rows.append((
                data["tenant_id"],
                data["primary_email"],
                _json(data["platforms"]),
                _json(data["ghost_status"]),
                _json(data["security_risks"]),
                _json(data["license_waste"]),
                identity.last_sync,
            ))
        columns = [
            "tenant_id", "primary_email", "platforms", "ghost_status",
            "security_risks", "license_waste", "last_sync",
        ]
        with self.transaction() as cur:
            return self.upsert_batch(
                cur, "cross_platform_identities", columns, rows,
                ["tenant_id", "primary_email"], columns[2:],
            )

    def delete_identity(self, tenant_id, primary_email):
        with self.transaction() as cur:
            cur.execute(
                "DELETE FROM cross_platform_identities WHERE tenant_id = %s AND primary_email = %s",
                (tenant_id, primary_email),
            )

    def update_derived(self, tenant_id, block, values):
        _check_block(block)
        count = 0
        with self.transaction() as cur:
            for email, value in values.items():
                cur.execute(
                    f"""UPDATE cross_platform_identities
                        SET {block} = %s, updated_at = NOW()
                        WHERE tenant_id = %s AND primary_email = %s""",
                    (_json(value.to_dict() if value is not None else None), tenant_id, email),
                )
                count += cur.rowcount
        return count

    # ------------------------------------------------------------------
    # Security findings
    # ------------------------------------------------------------------

    def list_findings(self, tenant_id, open_only=False):
        sql = f"SELECT {', '.join(_FINDING_COLUMNS)} FROM security_risk_findings WHERE tenant_id = %s"
        if open_only:
            sql += " AND NOT is_resolved"
        sql += " ORDER BY detected_at NULLS LAST, id"
        with self.transaction(dict_rows=True) as cur:
            cur.execute(sql, (tenant_id,))
            rows = cur.fetchall()
        findings = []
        for r in rows:
            data = dict(r)
            data["id"] = str(data["id"])
            findings.append(SecurityRiskFinding.from_dict(data))
        return findings

    def save_findings(self, findings):
        rows = []
        for finding in findings:
            data = finding.to_dict()
            rows.append(tuple(
                _json(data[c]) if c in _JSON_COLUMNS else data[c] for c in _FINDING_COLUMNS
            ))
        with self.transaction() as cur:
            return self.upsert_batch(
                cur, "security_risk_findings", _FINDING_COLUMNS, rows,
                ["id"], _FINDING_COLUMNS[1:],
            )

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def list_recommendations(self, tenant_id):
        with self.transaction() as cur:
            cur.execute(
                """SELECT document FROM optimization_recommendations
                   WHERE tenant_id = %s ORDER BY platform, category, id""",
                (tenant_id,),
            )
            return [OptimizationRecommendation.from_dict(r[0]) for r in cur.fetchall()]

    def save_recommendations(self, recommendations):
        rows = [
            (
                rec.id,
                rec.tenant_id,
                rec.platform.value,
                rec.category.value,
                rec.priority.value,
                rec.potential_savings.monthly,
                rec.is_implemented,
                rec.is_active,
                _json(rec.to_dict()),
            )
            for rec in recommendations
        ]
        columns = [
            "id", "tenant_id", "platform", "category", "priority",
            "monthly_savings", "is_implemented", "is_active", "document",
        ]
        with self.transaction() as cur:
            return self.upsert_batch(
                cur, "optimization_recommendations", columns, rows, ["id"], columns[1:],
            )
