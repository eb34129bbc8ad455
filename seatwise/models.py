"""Domain records shared by sync, resolution and the derivation passes.

Every stored record serializes to a plain JSON-compatible dict (``to_dict``) and
back (``from_dict``). Datetimes are timezone-aware UTC and stored as
ISO-8601 strings.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional

from seatwise.errors import MalformedRecord


class Platform(str, Enum):
    GOOGLE_WORKSPACE = "google-workspace"
    SLACK = "slack"
    GITHUB = "github"
    ZOOM = "zoom"
    AWS = "aws"


PLATFORM_ORDER: tuple[Platform, ...] = tuple(Platform)


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskType(str, Enum):
    ADMIN_WITHOUT_2FA = "admin_without_2fa"
    SUSPENDED_WITH_ACCESS = "suspended_with_access"
    EXCESSIVE_PERMISSIONS = "excessive_permissions"
    INACTIVE_ADMIN = "inactive_admin"
    SHARED_ACCOUNT = "shared_account"


class OptimizationType(str, Enum):
    GHOST_USER_REMOVAL = "ghost_user_removal"
    LICENSE_DOWNGRADE = "license_downgrade"
    UNUSED_FEATURE_REMOVAL = "unused_feature_removal"
    BULK_DISCOUNT = "bulk_discount"
    RENEWAL_TIMING = "renewal_timing"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(value: Any) -> Optional[str]:
    """Join key: stripped and lower-cased. Empty or non-string values give None."""
    if not isinstance(value, str):
        return None
    email = value.strip().lower()
    return email or None


# ----------------------------------------------------------------------
# Serialization helpers
# ----------------------------------------------------------------------

def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {_encode(k): _encode(v) for k, v in value.items()}
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _record_dict(record: Any) -> dict[str, Any]:
    return {f.name: _encode(getattr(record, f.name)) for f in fields(record)}


# ----------------------------------------------------------------------
# Platform accounts
# ----------------------------------------------------------------------

@dataclass
class PlatformAccount:
    """One platform-native account, normalized. Upsert key: (tenant, platform, native id)."""

    tenant_id: str
    platform: Platform
    native_id: str
    email: Optional[str]
    display_name: Optional[str] = None
    is_admin: bool = False
    suspended: bool = False
    has_strong_auth: Optional[bool] = None
    last_activity: Optional[datetime] = None
    license_tier: Optional[str] = None
    feature_usage: Optional[float] = None
    attributes: dict[str, Any] = field(default_factory=dict)
    status: AccountStatus = AccountStatus.ACTIVE
    last_synced_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.platform = Platform(self.platform)
        self.status = AccountStatus(self.status)
        self.native_id = str(self.native_id)
        self.email = normalize_email(self.email)

    @property
    def key(self) -> tuple[str, Platform, str]:
        return (self.tenant_id, self.platform, self.native_id)

    @property
    def is_active(self) -> bool:
        return self.status is AccountStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return _record_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlatformAccount":
        values = dict(data)
        values["last_activity"] = _parse_dt(values.get("last_activity"))
        values["last_synced_at"] = _parse_dt(values.get("last_synced_at"))
        values["attributes"] = dict(values.get("attributes") or {})
        return cls(**values)


@dataclass
class PlatformSlot:
    """Snapshot of one platform account embedded in a cross-platform identity."""

    # Platform-specific attribute names copied from PlatformAccount.attributes
    ATTRIBUTES: ClassVar[tuple[str, ...]] = ()

    user_id: str
    display_name: Optional[str] = None
    is_admin: bool = False
    has_strong_auth: Optional[bool] = None
    suspended: bool = False
    last_activity: Optional[datetime] = None
    license_tier: Optional[str] = None
    feature_usage: Optional[float] = None
    status: AccountStatus = AccountStatus.ACTIVE
    last_synced_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.status = AccountStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status is AccountStatus.ACTIVE

    @classmethod
    def from_account(cls, account: PlatformAccount) -> "PlatformSlot":
        extras = {name: account.attributes.get(name) for name in cls.ATTRIBUTES}
        return cls(
            user_id=account.native_id,
            display_name=account.display_name,
            is_admin=account.is_admin,
            has_strong_auth=account.has_strong_auth,
            suspended=account.suspended,
            last_activity=account.last_activity,
            license_tier=account.license_tier,
            feature_usage=account.feature_usage,
            status=account.status,
            last_synced_at=account.last_synced_at,
            **extras,
        )

    def to_dict(self) -> dict[str, Any]:
        return _record_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlatformSlot":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["last_activity"] = _parse_dt(values.get("last_activity"))
        values["last_synced_at"] = _parse_dt(values.get("last_synced_at"))
        return cls(**values)


@dataclass
class GoogleWorkspaceSlot(PlatformSlot):
    ATTRIBUTES = ("org_unit_path",)

    org_unit_path: Optional[str] = None


@dataclass
class SlackSlot(PlatformSlot):
    ATTRIBUTES = ("workspace_id",)

    workspace_id: Optional[str] = None


@dataclass
class GitHubSlot(PlatformSlot):
    ATTRIBUTES = ("login",)

    login: Optional[str] = None


@dataclass
class ZoomSlot(PlatformSlot):
    ATTRIBUTES = ("account_id",)

    account_id: Optional[str] = None


@dataclass
class AwsSlot(PlatformSlot):
    ATTRIBUTES = ("account_id",)

    account_id: Optional[str] = None


SLOT_TYPES: dict[Platform, type[PlatformSlot]] = {
    Platform.GOOGLE_WORKSPACE: GoogleWorkspaceSlot,
    Platform.SLACK: SlackSlot,
    Platform.GITHUB: GitHubSlot,
    Platform.ZOOM: ZoomSlot,
    Platform.AWS: AwsSlot,
}


def slot_from_account(account: PlatformAccount) -> PlatformSlot:
    return SLOT_TYPES[account.platform].from_account(account)


# ----------------------------------------------------------------------
# Cross-platform identity and its derived blocks
# ----------------------------------------------------------------------

@dataclass
class GhostStatus:
    is_ghost: bool
    never_logged_in_platforms: list[str] = field(default_factory=list)
    stale_platforms: list[str] = field(default_factory=list)
    inactive_days: int = 0
    last_calculated: Optional[datetime] = None

    @property
    def ghost_platforms(self) -> set[str]:
        return set(self.never_logged_in_platforms) | set(self.stale_platforms)

    def to_dict(self) -> dict[str, Any]:
        return _record_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GhostStatus":
        values = dict(data)
        values["last_calculated"] = _parse_dt(values.get("last_calculated"))
        return cls(**values)


@dataclass
class SecurityRiskSummary:
    admin_without_2fa: list[str] = field(default_factory=list)
    suspended_with_access: list[str] = field(default_factory=list)
    risk_score: float = 0.0
    last_calculated: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return _record_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecurityRiskSummary":
        values = dict(data)
        values["last_calculated"] = _parse_dt(values.get("last_calculated"))
        return cls(**values)


@dataclass
class LicenseWasteSummary:
    total_monthly_cost: float = 0.0
    wasted_cost: float = 0.0
    recommendations: list[str] = field(default_factory=list)
    last_calculated: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return _record_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LicenseWasteSummary":
        values = dict(data)
        values["last_calculated"] = _parse_dt(values.get("last_calculated"))
        return cls(**values)


DERIVED_BLOCKS: dict[str, type] = {
    "ghost_status": GhostStatus,
    "security_risks": SecurityRiskSummary,
    "license_waste": LicenseWasteSummary,
}


@dataclass
class CrossPlatformIdentity:
    """One human within one tenant, keyed by normalized primary email."""

    tenant_id: str
    primary_email: str
    platforms: dict[Platform, PlatformSlot] = field(default_factory=dict)
    ghost_status: Optional[GhostStatus] = None
    security_risks: Optional[SecurityRiskSummary] = None
    license_waste: Optional[LicenseWasteSummary] = None
    last_sync: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.tenant_id, self.primary_email)

    def populated_platforms(self) -> list[Platform]:
        return [p for p in PLATFORM_ORDER if p in self.platforms]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "primary_email": self.primary_email,
            "platforms": {
                p.value: self.platforms[p].to_dict() for p in self.populated_platforms()
            },
            "ghost_status": self.ghost_status.to_dict() if self.ghost_status else None,
            "security_risks": self.security_risks.to_dict() if self.security_risks else None,
            "license_waste": self.license_waste.to_dict() if self.license_waste else None,
            "last_sync": _encode(self.last_sync),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CrossPlatformIdentity":
        platforms: dict[Platform, PlatformSlot] = {}
        for name, slot in (data.get("platforms") or {}).items():
            platform = Platform(name)
            platforms[platform] = SLOT_TYPES[platform].from_dict(slot)
        blocks = {
            name: block_cls.from_dict(data[name]) if data.get(name) else None
            for name, block_cls in DERIVED_BLOCKS.items()
        }
        return cls(
            tenant_id=data["tenant_id"],
            primary_email=data["primary_email"],
            platforms=platforms,
            last_sync=_parse_dt(data.get("last_sync")),
            **blocks,
        )


def validate_identity(identity: Any) -> CrossPlatformIdentity:
    """Raise MalformedRecord unless ``identity`` is structurally usable by a pass."""
    if not isinstance(identity, CrossPlatformIdentity):
        raise MalformedRecord(f"not an identity record: {type(identity).__name__}")
    email = identity.primary_email
    if not email or normalize_email(email) != email:
        raise MalformedRecord(f"identity email is not normalized: {email!r}")
    if not identity.platforms:
        raise MalformedRecord(f"identity {email} has no platform slots")
    for platform, slot in identity.platforms.items():
        if not isinstance(platform, Platform):
            raise MalformedRecord(f"identity {email} has unknown platform key {platform!r}")
        if not isinstance(slot, SLOT_TYPES[platform]):
            raise MalformedRecord(
                f"identity {email} slot for {platform.value} has wrong type",
                platform=platform.value,
            )
        if not slot.user_id:
            raise MalformedRecord(
                f"identity {email} slot for {platform.value} has no user id",
                platform=platform.value,
            )
        if slot.last_activity is not None and slot.last_activity.tzinfo is None:
            raise MalformedRecord(
                f"identity {email} slot for {platform.value} has a naive timestamp",
                platform=platform.value,
            )
    return identity


def split_valid(identities: Any) -> tuple[list[CrossPlatformIdentity], list[MalformedRecord]]:
    """Validate every identity (a mapping or an iterable). Returns (valid, errors)."""
    items = identities.values() if isinstance(identities, dict) else identities
    valid: list[CrossPlatformIdentity] = []
    errors: list[MalformedRecord] = []
    for identity in items:
        try:
            valid.append(validate_identity(identity))
        except MalformedRecord as exc:
            errors.append(exc)
    return valid, errors


# ----------------------------------------------------------------------
# Security findings
# ----------------------------------------------------------------------

@dataclass
class SecurityRiskFinding:
    tenant_id: str
    user_id: str
    user_email: str
    platform: Platform
    risk_type: RiskType
    severity: Severity
    risk_score: float
    description: str = ""
    recommendations: list[str] = field(default_factory=list)
    affected_platforms: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    detected_at: Optional[datetime] = None
    last_checked: Optional[datetime] = None
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        self.platform = Platform(self.platform)
        self.risk_type = RiskType(self.risk_type)
        self.severity = Severity(self.severity)

    @property
    def key(self) -> tuple[str, str, Platform, RiskType]:
        return (self.tenant_id, self.user_id, self.platform, self.risk_type)

    def to_dict(self) -> dict[str, Any]:
        return _record_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecurityRiskFinding":
        values = dict(data)
        for name in ("detected_at", "last_checked", "resolved_at"):
            values[name] = _parse_dt(values.get(name))
        return cls(**values)


# ----------------------------------------------------------------------
# License waste and recommendations
# ----------------------------------------------------------------------

@dataclass
class Money:
    monthly: float = 0.0
    annual: float = 0.0
    currency: str = "USD"

    @classmethod
    def from_monthly(cls, monthly: float, currency: str = "USD") -> "Money":
        return cls(monthly=round(monthly, 2), annual=round(monthly * 12, 2), currency=currency)

    def to_dict(self) -> dict[str, Any]:
        return _record_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Money":
        return cls(**data)


@dataclass
class AffectedUser:
    user_id: str
    user_email: str
    current_license: str
    recommended_action: str
    monthly_saving: float

    def to_dict(self) -> dict[str, Any]:
        return _record_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AffectedUser":
        return cls(**data)


@dataclass
class LicenseMetrics:
    total_licenses: int = 0
    unused_licenses: int = 0
    underutilized_licenses: int = 0
    utilization_rate: float = 0.0
    waste_percentage: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return _record_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LicenseMetrics":
        return cls(**data)


@dataclass
class LicenseWasteReport:
    """Per-platform optimization candidate produced by the waste calculator."""

    tenant_id: str
    platform: Platform
    optimization_type: OptimizationType
    current_cost: Money
    potential_savings: Money
    metrics: LicenseMetrics
    affected_users: list[AffectedUser] = field(default_factory=list)
    calculated_at: Optional[datetime] = None


@dataclass
class OptimizationRecommendation:
    tenant_id: str
    platform: Platform
    category: OptimizationType
    priority: Priority
    potential_savings: Money
    current_cost: Money
    metrics: LicenseMetrics
    title: str
    description: str
    affected_users: list[AffectedUser] = field(default_factory=list)
    action_items: list[str] = field(default_factory=list)
    implementation: str = ""
    risk_level: str = "low"
    time_to_implement: str = ""
    is_implemented: bool = False
    implemented_at: Optional[datetime] = None
    implemented_by: Optional[str] = None
    actual_savings: Optional[Money] = None
    is_active: bool = True
    last_calculated: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        self.platform = Platform(self.platform)
        self.category = OptimizationType(self.category)
        self.priority = Priority(self.priority)

    @property
    def key(self) -> tuple[str, Platform, OptimizationType]:
        return (self.tenant_id, self.platform, self.category)

    def to_dict(self) -> dict[str, Any]:
        return _record_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OptimizationRecommendation":
        values = dict(data)
        values["potential_savings"] = Money.from_dict(values["potential_savings"])
        values["current_cost"] = Money.from_dict(values["current_cost"])
        values["metrics"] = LicenseMetrics.from_dict(values["metrics"])
        values["affected_users"] = [
            AffectedUser.from_dict(u) for u in values.get("affected_users") or []
        ]
        if values.get("actual_savings"):
            values["actual_savings"] = Money.from_dict(values["actual_savings"])
        for name in ("implemented_at", "last_calculated"):
            values[name] = _parse_dt(values.get(name))
        return cls(**values)
