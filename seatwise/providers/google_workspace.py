"""Google Workspace adapter: directory users via the Admin SDK."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httplib2
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from seatwise.config import SeatwiseConfig
from seatwise.connector import Credential
from seatwise.models import Platform, PlatformAccount
from seatwise.providers.base import MAX_RATE_LIMIT_WAITS, BaseAdapter, parse_timestamp

logger = logging.getLogger("seatwise.google_workspace")


class GoogleWorkspaceAdapter(BaseAdapter):
    PLATFORM = Platform.GOOGLE_WORKSPACE
    ID_FIELD = "id"

    def __init__(self, config: SeatwiseConfig) -> None:
        super().__init__(config)
        gw = config.google_workspace
        if not gw:
            raise ValueError("Google Workspace config not set")
        self._customer_id = gw.customer_id

    def _service(self, credential: Credential):
        creds = Credentials(token=credential.token)
        return build("admin", "directory_v1", credentials=creds, cache_discovery=False)

    def fetch_accounts(self, credential: Credential) -> list[dict[str, Any]]:
        logger.info("Fetching Google Workspace users")
        try:
            service = self._service(credential)
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise self._unreachable(f"Could not load the Admin SDK discovery document: {exc}") from exc

        users: list[dict[str, Any]] = []
        request = service.users().list(
            customer=self._customer_id,
            maxResults=500,
            orderBy="email",
            projection="full",
        )
        attempt = 0
        while request is not None:
            try:
                response = request.execute()
            except HttpError as e:
                status = e.resp.status
                if status == 429 and attempt < MAX_RATE_LIMIT_WAITS:
                    self._rate_limit_sleep(attempt)
                    attempt += 1
                    continue
                if status in (401, 403):
                    raise self._invalid_credential(
                        f"Admin SDK rejected the credential (HTTP {status})"
                    ) from e
                raise self._unreachable(f"Admin SDK users.list failed (HTTP {status})") from e
            except (httplib2.HttpLib2Error, OSError) as exc:
                raise self._unreachable(f"Admin SDK unreachable: {exc}") from exc
            attempt = 0
            users.extend(response.get("users", []))
            request = service.users().list_next(request, response)
        logger.info("Fetched %d Google Workspace users", len(users))
        return users

    def normalize(self, raw: dict[str, Any], tenant_id: str, synced_at: datetime) -> PlatformAccount:
        name = raw.get("name") or {}
        return PlatformAccount(
            tenant_id=tenant_id,
            platform=self.PLATFORM,
            native_id=raw["id"],
            email=raw.get("primaryEmail"),
            display_name=name.get("fullName"),
            is_admin=bool(raw.get("isAdmin") or raw.get("isDelegatedAdmin")),
            suspended=bool(raw.get("suspended") or raw.get("archived")),
            has_strong_auth=bool(raw.get("isEnrolledIn2Sv", False)),
            # The API reports 1970-01-01 for users who never signed in
            last_activity=parse_timestamp(raw.get("lastLoginTime")),
            attributes={"org_unit_path": raw.get("orgUnitPath")},
            last_synced_at=synced_at,
        )
