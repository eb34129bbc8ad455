"""Slack adapter: workspace members via users.list."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from seatwise.config import SeatwiseConfig
from seatwise.connector import Credential
from seatwise.models import Platform, PlatformAccount
from seatwise.providers.base import HttpAdapter, parse_timestamp

logger = logging.getLogger("seatwise.slack")

# users.list answers HTTP 200 with ok=false; these errors mean the token is unusable
_AUTH_ERRORS = {
    "not_authed",
    "invalid_auth",
    "account_inactive",
    "token_revoked",
    "token_expired",
    "missing_scope",
}


class SlackAdapter(HttpAdapter):
    """Workspace members from users.list.

    Slack exposes no sign-in time, so last_activity is the profile update time
    and ghost results for this platform are approximate.
    """

    PLATFORM = Platform.SLACK
    ID_FIELD = "id"

    def __init__(self, config: SeatwiseConfig) -> None:
        super().__init__(config)
        slack = config.slack
        if not slack:
            raise ValueError("Slack config not set")
        self._base = slack.api_base_url.rstrip("/")

    def fetch_accounts(self, credential: Credential) -> list[dict[str, Any]]:
        logger.info("Fetching Slack members")
        session = self._session(credential)
        members: list[dict[str, Any]] = []
        cursor = ""
        while True:
            params = {"limit": "200"}
            if cursor:
                params["cursor"] = cursor
            data = self._get(session, f"{self._base}/users.list", params=params).json()
            if not data.get("ok"):
                error = data.get("error", "unknown_error")
                if error in _AUTH_ERRORS:
                    raise self._invalid_credential(f"Slack rejected the credential: {error}")
                raise self._unreachable(f"Slack users.list failed: {error}")

            for member in data.get("members", []):
                if member.get("is_bot") or member.get("id") == "USLACKBOT":
                    continue
                members.append(member)

            cursor = (data.get("response_metadata") or {}).get("next_cursor", "")
            if not cursor:
                break
        logger.info("Fetched %d Slack members", len(members))
        return members

    def normalize(self, raw: dict[str, Any], tenant_id: str, synced_at: datetime) -> PlatformAccount:
        profile = raw.get("profile") or {}
        if raw.get("is_ultra_restricted"):
            tier = "guest"
        else:
            tier = raw.get("plan_tier")
        return PlatformAccount(
            tenant_id=tenant_id,
            platform=self.PLATFORM,
            native_id=raw["id"],
            email=profile.get("email"),
            display_name=profile.get("real_name") or raw.get("real_name") or raw.get("name"),
            is_admin=bool(raw.get("is_admin") or raw.get("is_owner")),
            suspended=bool(raw.get("deleted")),
            # has_2fa is only visible to admin tokens
            has_strong_auth=raw.get("has_2fa"),
            # users.list exposes no sign-in time; the profile update time is the closest signal
            last_activity=parse_timestamp(raw.get("updated")),
            license_tier=tier,
            feature_usage=raw.get("feature_usage"),
            attributes={"workspace_id": raw.get("team_id")},
            last_synced_at=synced_at,
        )
