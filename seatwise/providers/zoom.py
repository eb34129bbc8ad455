"""Zoom adapter: account users via the REST API (server-to-server OAuth token)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from seatwise.config import SeatwiseConfig
from seatwise.connector import Credential
from seatwise.models import Platform, PlatformAccount
from seatwise.providers.base import HttpAdapter, parse_timestamp

logger = logging.getLogger("seatwise.zoom")

# Zoom user types
_USER_TYPE_TIERS = {1: "basic", 2: "licensed", 3: "on-prem"}
# role_id 0 is the owner, 1 the account admin
_ADMIN_ROLE_IDS = {"0", "1"}


class ZoomAdapter(HttpAdapter):
    PLATFORM = Platform.ZOOM
    ID_FIELD = "id"

    def __init__(self, config: SeatwiseConfig) -> None:
        super().__init__(config)
        zoom = config.zoom
        if not zoom:
            raise ValueError("Zoom config not set")
        self._base = zoom.api_base_url.rstrip("/")

    def fetch_accounts(self, credential: Credential) -> list[dict[str, Any]]:
        session = self._session(credential)
        users: list[dict[str, Any]] = []
        # The default listing only returns active users
        for status in ("active", "inactive"):
            logger.info("Fetching %s Zoom users", status)
            token = ""
            while True:
                params = {"status": status, "page_size": "300"}
                if token:
                    params["next_page_token"] = token
                data = self._get(session, f"{self._base}/users", params=params).json()
                users.extend(data.get("users", []))
                token = data.get("next_page_token", "")
                if not token:
                    break
        logger.info("Fetched %d Zoom users", len(users))
        return users

    def normalize(self, raw: dict[str, Any], tenant_id: str, synced_at: datetime) -> PlatformAccount:
        name = " ".join(p for p in (raw.get("first_name"), raw.get("last_name")) if p)
        return PlatformAccount(
            tenant_id=tenant_id,
            platform=self.PLATFORM,
            native_id=raw["id"],
            email=raw.get("email"),
            display_name=raw.get("display_name") or name or None,
            is_admin=str(raw.get("role_id", "")) in _ADMIN_ROLE_IDS,
            suspended=raw.get("status", "active") != "active",
            # The users listing does not expose per-user 2FA enrolment
            has_strong_auth=None,
            last_activity=parse_timestamp(raw.get("last_login_time")),
            license_tier=_USER_TYPE_TIERS.get(raw.get("type")),
            feature_usage=raw.get("feature_usage"),
            attributes={"account_id": raw.get("account_id")},
            last_synced_at=synced_at,
        )
