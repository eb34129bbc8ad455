"""GitHub organisation adapter: org members with role, 2FA state and profile email."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Optional

import requests

from seatwise.config import SeatwiseConfig
from seatwise.connector import Credential
from seatwise.errors import CredentialInvalid
from seatwise.models import Platform, PlatformAccount
from seatwise.providers.base import HttpAdapter, parse_timestamp

logger = logging.getLogger("seatwise.github")


class GitHubOrgAdapter(HttpAdapter):
    """Organisation members with their admin role.

    GitHub exposes no sign-in time, so last_activity is the profile update time
    and ghost results for this platform are approximate.
    """

    PLATFORM = Platform.GITHUB
    ID_FIELD = "node_id"

    def __init__(self, config: SeatwiseConfig) -> None:
        super().__init__(config)
        gh = config.github
        if not gh:
            raise ValueError("GitHub config not set")
        self._org_logins = gh.org_logins
        self._base = gh.api_base_url.rstrip("/")

    def _session(self, credential: Credential) -> requests.Session:
        session = super()._session(credential)
        session.headers.update({
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })
        return session

    def _is_rate_limited(self, resp: requests.Response) -> bool:
        if resp.status_code == 429:
            return True
        if resp.status_code == 403 and resp.headers.get("X-RateLimit-Remaining") == "0":
            # Wait for the window to reset; _rate_limit_sleep caps the delay
            reset = int(resp.headers.get("X-RateLimit-Reset", "0"))
            resp.headers["Retry-After"] = str(max(reset - int(time.time()), 1))
            return True
        return False

    def _get_paginated(
        self, session: requests.Session, url: str, params: Optional[dict] = None
    ) -> list[dict]:
        """Fetch all pages of a list endpoint by following the Link header."""
        results: list[dict] = []
        params = dict(params or {})
        params.setdefault("per_page", "100")
        while url:
            resp = self._get(session, url, params=params)
            data = resp.json()
            if isinstance(data, list):
                results.extend(data)
            else:
                results.append(data)
            url = resp.links.get("next", {}).get("url", "")
            params = {}
        return results

    def _two_factor_disabled(self, session: requests.Session, org_login: str) -> Optional[set[str]]:
        """Logins without 2FA. None when the token is not an org owner and cannot see it."""
        try:
            members = self._get_paginated(
                session,
                f"{self._base}/orgs/{org_login}/members",
                params={"filter": "2fa_disabled"},
            )
        except CredentialInvalid:
            logger.warning("2FA state of %s is not visible to this token", org_login)
            return None
        return {m["login"] for m in members}

    def fetch_accounts(self, credential: Credential) -> list[dict[str, Any]]:
        session = self._session(credential)
        by_node: dict[str, dict[str, Any]] = {}

        for org_login in self._org_logins:
            logger.info("Fetching GitHub members of %s", org_login)
            members = self._get_paginated(session, f"{self._base}/orgs/{org_login}/members")
            admins = {
                m["login"] for m in self._get_paginated(
                    session, f"{self._base}/orgs/{org_login}/members", params={"role": "admin"}
                )
            }
            no_2fa = self._two_factor_disabled(session, org_login)

            for member in members:
                node_id = member.get("node_id")
                record = by_node.get(node_id)
                if record is None:
                    # Member listings omit name and email; the user resource has them
                    profile = self._get(session, f"{self._base}/users/{member['login']}").json()
                    record = {**member, **profile, "_orgs": [], "_is_org_admin": False}
                    record["_two_factor_enabled"] = None
                    by_node[node_id] = record
                record["_orgs"].append(org_login)
                record["_is_org_admin"] = record["_is_org_admin"] or member["login"] in admins
                if no_2fa is not None:
                    enabled = member["login"] not in no_2fa
                    previous = record["_two_factor_enabled"]
                    record["_two_factor_enabled"] = enabled if previous is None else (previous and enabled)

        logger.info("Fetched %d GitHub members", len(by_node))
        return list(by_node.values())

    def normalize(self, raw: dict[str, Any], tenant_id: str, synced_at: datetime) -> PlatformAccount:
        email = raw.get("email")
        if email and email.lower().endswith("@users.noreply.github.com"):
            email = None
        return PlatformAccount(
            tenant_id=tenant_id,
            platform=self.PLATFORM,
            native_id=raw["node_id"],
            email=email,
            display_name=raw.get("name") or raw.get("login"),
            is_admin=bool(raw.get("_is_org_admin") or raw.get("site_admin")),
            suspended=bool(raw.get("suspended_at")),
            has_strong_auth=raw.get("_two_factor_enabled"),
            # Profile update time, see the class docstring
            last_activity=parse_timestamp(raw.get("updated_at")),
            license_tier=raw.get("plan_tier"),
            feature_usage=raw.get("feature_usage"),
            attributes={"login": raw.get("login"), "orgs": list(raw.get("_orgs") or [])},
            last_synced_at=synced_at,
        )
