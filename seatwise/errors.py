"""Error kinds surfaced by sync and derivation passes."""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base for per-platform failures. ``kind`` is the stable, loggable tag."""

    kind: str = "sync-error"

    def __init__(self, message: str, platform: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.platform = platform


class CredentialUnavailable(SyncError):
    """No usable credential. User-actionable, never retried automatically."""

    kind = "credential-unavailable"


class CredentialNotConfigured(CredentialUnavailable):
    """No credential has been stored for the platform."""


class CredentialInvalid(CredentialUnavailable):
    """Credential exists but is expired, revoked or rejected by the platform."""


class PlatformUnreachable(SyncError):
    """Transient network, timeout or rate-limit failure. The caller may retry."""

    kind = "platform-unreachable"


class MalformedRecord(SyncError):
    """A single record failed normalization or validation."""

    kind = "malformed-record"


class MergeConflict(SyncError):
    """One native account id observed under two different emails."""

    kind = "merge-conflict"

    def __init__(
        self,
        message: str,
        platform: Optional[str] = None,
        native_id: Optional[str] = None,
        previous_email: Optional[str] = None,
        email: Optional[str] = None,
    ) -> None:
        super().__init__(message, platform=platform)
        self.native_id = native_id
        self.previous_email = previous_email
        self.email = email
