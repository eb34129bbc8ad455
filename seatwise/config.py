"""Configuration via environment variables with cloud-native secret support.

Platform tokens are not part of this configuration; they are per tenant and
come from a CredentialConnector. This module only decides which platforms
are enabled and how their API clients and the analytics passes behave.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from seatwise.models import PLATFORM_ORDER, Platform
from seatwise.secrets import resolve_database_url


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    min_connections: int = 2
    max_connections: int = 10


@dataclass(frozen=True)
class GoogleWorkspaceConfig:
    customer_id: str = "my_customer"


@dataclass(frozen=True)
class SlackConfig:
    api_base_url: str = "https://slack.com/api"


@dataclass(frozen=True)
class GitHubConfig:
    org_logins: list[str] = field(default_factory=list)
    api_base_url: str = "https://api.github.com"


@dataclass(frozen=True)
class ZoomConfig:
    api_base_url: str = "https://api.zoom.us/v2"


@dataclass(frozen=True)
class AwsConfig:
    region: str = "us-east-1"


@dataclass(frozen=True)
class AnalyticsConfig:
    ghost_threshold_days: int = 90
    critical_savings_threshold: float = 500.0
    excessive_admin_platforms: int = 3
    pricing_file: Optional[str] = None


@dataclass(frozen=True)
class SchedulerConfig:
    tenant_interval_min: int = 60
    misfire_grace_time: int = 300
    max_retries: int = 3
    retry_backoff_s: int = 30


@dataclass(frozen=True)
class SeatwiseConfig:
    tenant_ids: list[str] = field(default_factory=list)
    database: Optional[DatabaseConfig] = None
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    google_workspace: Optional[GoogleWorkspaceConfig] = None
    slack: Optional[SlackConfig] = None
    github: Optional[GitHubConfig] = None
    zoom: Optional[ZoomConfig] = None
    aws: Optional[AwsConfig] = None
    sync_max_workers: int = 3
    request_timeout_s: float = 30.0

    def platform_config(self, platform: Platform):
        return {
            Platform.GOOGLE_WORKSPACE: self.google_workspace,
            Platform.SLACK: self.slack,
            Platform.GITHUB: self.github,
            Platform.ZOOM: self.zoom,
            Platform.AWS: self.aws,
        }[platform]

    def configured_platforms(self) -> list[Platform]:
        return [p for p in PLATFORM_ORDER if self.platform_config(p) is not None]


def _enabled(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


def _split(value: str) -> list[str]:
    return [s.strip() for s in value.split(",") if s.strip()]


def load_config() -> SeatwiseConfig:
    """Load configuration from environment variables. Unconfigured platforms are skipped."""
    load_dotenv()

    tenant_ids = _split(os.environ.get("TENANT_IDS", ""))
    if not tenant_ids:
        raise ValueError("TENANT_IDS environment variable is required")

    database = DatabaseConfig(
        url=resolve_database_url(),
        min_connections=int(os.environ.get("DB_MIN_CONNECTIONS", "2")),
        max_connections=int(os.environ.get("DB_MAX_CONNECTIONS", "10")),
    )

    google_workspace = None
    if os.environ.get("GOOGLE_CUSTOMER_ID") or _enabled("GOOGLE_WORKSPACE_ENABLED"):
        google_workspace = GoogleWorkspaceConfig(
            customer_id=os.environ.get("GOOGLE_CUSTOMER_ID", "my_customer"),
        )

    slack = None
    if _enabled("SLACK_ENABLED"):
        slack = SlackConfig(
            api_base_url=os.environ.get("SLACK_API_BASE_URL", "https://slack.com/api"),
        )

    github = None
    org_logins = _split(os.environ.get("GITHUB_ORG_LOGINS", ""))
    if org_logins:
        github = GitHubConfig(
            org_logins=org_logins,
            api_base_url=os.environ.get("GITHUB_API_BASE_URL", "https://api.github.com"),
        )

    zoom = None
    if _enabled("ZOOM_ENABLED"):
        zoom = ZoomConfig(
            api_base_url=os.environ.get("ZOOM_API_BASE_URL", "https://api.zoom.us/v2"),
        )

    aws = None
    if _enabled("AWS_IAM_ENABLED"):
        aws = AwsConfig(region=os.environ.get("AWS_REGION", "us-east-1"))

    analytics = AnalyticsConfig(
        ghost_threshold_days=int(os.environ.get("GHOST_THRESHOLD_DAYS", "90")),
        critical_savings_threshold=float(
            os.environ.get("CRITICAL_SAVINGS_THRESHOLD", "500")
        ),
        excessive_admin_platforms=int(os.environ.get("EXCESSIVE_ADMIN_PLATFORMS", "3")),
        pricing_file=os.environ.get("PRICING_FILE") or None,
    )

    scheduler = SchedulerConfig(
        tenant_interval_min=int(os.environ.get("TENANT_INTERVAL_MIN", "60")),
        misfire_grace_time=int(os.environ.get("MISFIRE_GRACE_TIME", "300")),
        max_retries=int(os.environ.get("SYNC_MAX_RETRIES", "3")),
        retry_backoff_s=int(os.environ.get("SYNC_RETRY_BACKOFF_S", "30")),
    )

    return SeatwiseConfig(
        tenant_ids=tenant_ids,
        database=database,
        scheduler=scheduler,
        analytics=analytics,
        google_workspace=google_workspace,
        slack=slack,
        github=github,
        zoom=zoom,
        aws=aws,
        sync_max_workers=int(os.environ.get("SYNC_MAX_WORKERS", "3")),
        request_timeout_s=float(os.environ.get("REQUEST_TIMEOUT_S", "30")),
    )
