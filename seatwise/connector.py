"""Credential connectors: tenant + platform -> bearer credential, or a typed failure."""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional

from seatwise.errors import CredentialInvalid, CredentialNotConfigured
from seatwise.models import Platform
from seatwise.secrets import is_secret_reference, resolve_secret

logger = logging.getLogger("seatwise.connector")


@dataclass(frozen=True)
class Credential:
    platform: Platform
    token: str
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def __repr__(self) -> str:
        return f"Credential(platform={self.platform.value!r}, token=<redacted>)"


class CredentialConnector(ABC):
    """Owns the token vault. Must distinguish "not configured" from "invalid"."""

    @abstractmethod
    def get_credential(self, tenant_id: str, platform: Platform) -> Credential:
        """Return a usable credential or raise CredentialNotConfigured / CredentialInvalid."""


class EnvCredentialConnector(CredentialConnector):
    """Reads ``<PLATFORM>_TOKEN__<TENANT>`` variables, e.g. ``SLACK_TOKEN__ACME_CORP``.

    Values may be secret references (``aws-secret://``, ``gcp-secret://``).
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = os.environ if environ is None else environ

    @staticmethod
    def variable_name(tenant_id: str, platform: Platform) -> str:
        tenant = re.sub(r"[^A-Za-z0-9]", "_", tenant_id).upper()
        return f"{platform.name}_TOKEN__{tenant}"

    def get_credential(self, tenant_id: str, platform: Platform) -> Credential:
        name = self.variable_name(tenant_id, platform)
        raw = self._environ.get(name, "").strip()
        if not raw:
            raise CredentialNotConfigured(
                f"No {platform.value} credential configured ({name} is unset)",
                platform=platform.value,
            )

        if is_secret_reference(raw):
            try:
                token = resolve_secret(raw)
            except Exception as exc:
                raise CredentialInvalid(
                    f"Secret reference in {name} could not be resolved: {exc}",
                    platform=platform.value,
                ) from exc
        else:
            token = raw

        if not token.strip():
            raise CredentialInvalid(
                f"{platform.value} credential in {name} resolved to an empty value",
                platform=platform.value,
            )
        return Credential(platform=platform, token=token.strip())
