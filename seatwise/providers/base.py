"""Abstract base class for all platform adapters."""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, Optional

import requests

from seatwise.config import SeatwiseConfig
from seatwise.connector import Credential
from seatwise.errors import CredentialInvalid, PlatformUnreachable
from seatwise.models import Platform, PlatformAccount

logger = logging.getLogger("seatwise.provider")

# Bounded in-client waits on HTTP 429. Anything beyond is surfaced as platform-unreachable.
MAX_RATE_LIMIT_WAITS = 3
MAX_RATE_LIMIT_SLEEP_S = 60.0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings or epoch seconds. Epoch zero and earlier mean "never"."""
    if value in (None, "", 0, "0"):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    if dt.timestamp() <= 0:
        return None
    return dt


def retry_after_seconds(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header, given as delta-seconds or an HTTP-date.

    None when the header is missing or unparseable, so the caller backs off instead.
    """
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return seconds if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return (when - datetime.now(timezone.utc)).total_seconds()


class BaseAdapter(ABC):
    """Each adapter declares PLATFORM and ID_FIELD and overrides fetch_accounts/normalize."""

    PLATFORM: Platform
    ID_FIELD: str = "id"

    def __init__(self, config: SeatwiseConfig) -> None:
        self.config = config
        self.timeout = config.request_timeout_s

    @abstractmethod
    def fetch_accounts(self, credential: Credential) -> Iterable[dict[str, Any]]:
        """Return every raw account record. Raises CredentialInvalid or PlatformUnreachable."""

    @abstractmethod
    def normalize(self, raw: dict[str, Any], tenant_id: str, synced_at: datetime) -> PlatformAccount:
        """Map one raw record to a PlatformAccount. Raises on malformed input."""

    def native_id(self, raw: Any) -> Optional[str]:
        """Best-effort id of a raw record, also used for records that fail normalization."""
        if isinstance(raw, dict) and raw.get(self.ID_FIELD) not in (None, ""):
            return str(raw[self.ID_FIELD])
        return None

    # ------------------------------------------------------------------
    # Rate-limiting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _rate_limit_sleep(attempt: int, base_seconds: float = 1.0, retry_after: Optional[float] = None) -> None:
        """Exponential backoff sleep, or the server's Retry-After when given."""
        delay = retry_after if retry_after is not None else base_seconds * (2 ** attempt)
        delay = min(max(delay, 0.0), MAX_RATE_LIMIT_SLEEP_S)
        logger.warning("Rate limited, sleeping %.1fs (attempt %d)", delay, attempt)
        time.sleep(delay)

    def _unreachable(self, message: str) -> PlatformUnreachable:
        return PlatformUnreachable(message, platform=self.PLATFORM.value)

    def _invalid_credential(self, message: str) -> CredentialInvalid:
        return CredentialInvalid(message, platform=self.PLATFORM.value)


class HttpAdapter(BaseAdapter):
    """Adapter for bearer-token REST APIs reached through a requests.Session."""

    def _session(self, credential: Credential) -> requests.Session:
        session = requests.Session()
        session.headers.update({
            "Authorization": f"Bearer {credential.token}",
            "Accept": "application/json",
        })
        return session

    def _is_rate_limited(self, resp: requests.Response) -> bool:
        return resp.status_code == 429

    def _get(self, session: requests.Session, url: str, params: Optional[dict] = None) -> requests.Response:
        """GET with bounded 429 waits; maps transport and HTTP failures to sync errors."""
        attempt = 0
        while True:
            try:
                resp = session.get(url, params=params, timeout=self.timeout)
            except requests.Timeout as exc:
                raise self._unreachable(f"Timed out calling {url}") from exc
            except requests.RequestException as exc:
                raise self._unreachable(f"Could not reach {url}: {exc}") from exc

            if self._is_rate_limited(resp):
                if attempt >= MAX_RATE_LIMIT_WAITS:
                    raise self._unreachable(f"Rate limit persisted after {attempt} waits: {url}")
                self._rate_limit_sleep(
                    attempt, retry_after=retry_after_seconds(resp.headers.get("Retry-After"))
                )
                attempt += 1
                continue
            if resp.status_code in (401, 403):
                raise self._invalid_credential(
                    f"{self.PLATFORM.value} rejected the credential (HTTP {resp.status_code})"
                )
            if resp.status_code >= 400:
                raise self._unreachable(f"HTTP {resp.status_code} from {url}")
            return resp
