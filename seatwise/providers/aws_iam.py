"""AWS IAM adapter: IAM users with MFA devices, admin policies and last use."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from seatwise.config import SeatwiseConfig
from seatwise.connector import Credential
from seatwise.models import Platform, PlatformAccount
from seatwise.providers.base import BaseAdapter, parse_timestamp

logger = logging.getLogger("seatwise.aws_iam")

_AUTH_ERROR_CODES = {
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "AccessDenied",
    "AccessDeniedException",
    "ExpiredToken",
    "UnrecognizedClientException",
}
_INACTIVE_TAG_VALUES = {"suspended", "disabled", "inactive"}
_ADMIN_POLICY_MARKERS = ("Admin", "PowerUser")


class AwsIamAdapter(BaseAdapter):
    """The credential token is a JSON object of boto3 session arguments
    (aws_access_key_id, aws_secret_access_key, aws_session_token, region_name).
    """

    PLATFORM = Platform.AWS
    ID_FIELD = "UserId"

    def __init__(self, config: SeatwiseConfig) -> None:
        super().__init__(config)
        aws = config.aws
        if not aws:
            raise ValueError("AWS IAM config not set")
        self._region = aws.region

    def _client(self, credential: Credential):
        try:
            kwargs = json.loads(credential.token)
        except json.JSONDecodeError as exc:
            raise self._invalid_credential("AWS credential is not a JSON object") from exc
        if not isinstance(kwargs, dict):
            raise self._invalid_credential("AWS credential is not a JSON object")
        kwargs.setdefault("region_name", self._region)
        session = boto3.session.Session(**kwargs)
        try:
            account_id = session.client("sts").get_caller_identity().get("Account")
        except ClientError as exc:
            raise self._map_client_error(exc, "sts:GetCallerIdentity") from exc
        except BotoCoreError as exc:
            raise self._unreachable(f"AWS STS unreachable: {exc}") from exc
        return session.client("iam"), account_id

    def _map_client_error(self, exc: ClientError, operation: str):
        code = exc.response.get("Error", {}).get("Code", "")
        if code in _AUTH_ERROR_CODES:
            return self._invalid_credential(f"AWS rejected the credential on {operation}: {code}")
        return self._unreachable(f"AWS {operation} failed: {code or exc}")

    def _paginate(self, client, method: str, key: str, **kwargs) -> list[dict]:
        """Generic paginator for boto3 APIs."""
        items: list[dict] = []
        paginator = client.get_paginator(method)
        for page in paginator.paginate(**kwargs):
            items.extend(page.get(key, []))
        return items

    def _is_admin(self, iam, user_name: str) -> bool:
        policies = self._paginate(iam, "list_attached_user_policies", "AttachedPolicies", UserName=user_name)
        names = [p.get("PolicyName", "") for p in policies]
        for group in self._paginate(iam, "list_groups_for_user", "Groups", UserName=user_name):
            attached = self._paginate(
                iam, "list_attached_group_policies", "AttachedPolicies", GroupName=group["GroupName"]
            )
            names.extend(p.get("PolicyName", "") for p in attached)
        return any(marker in name for name in names for marker in _ADMIN_POLICY_MARKERS)

    def _key_last_used(self, iam, user_name: str) -> Optional[datetime]:
        latest = None
        for key in self._paginate(iam, "list_access_keys", "AccessKeyMetadata", UserName=user_name):
            used = iam.get_access_key_last_used(AccessKeyId=key["AccessKeyId"])
            when = parse_timestamp((used.get("AccessKeyLastUsed") or {}).get("LastUsedDate"))
            if when and (latest is None or when > latest):
                latest = when
        return latest

    def fetch_accounts(self, credential: Credential) -> list[dict[str, Any]]:
        iam, account_id = self._client(credential)
        logger.info("Fetching AWS IAM users for account %s", account_id)
        try:
            users = self._paginate(iam, "list_users", "Users")
            for user in users:
                name = user["UserName"]
                user["Tags"] = self._paginate(iam, "list_user_tags", "Tags", UserName=name)
                user["_mfa_enabled"] = bool(
                    self._paginate(iam, "list_mfa_devices", "MFADevices", UserName=name)
                )
                user["_is_admin"] = self._is_admin(iam, name)
                user["_key_last_used"] = self._key_last_used(iam, name)
                user["_account_id"] = account_id
        except ClientError as exc:
            raise self._map_client_error(exc, "iam:ListUsers") from exc
        except BotoCoreError as exc:
            raise self._unreachable(f"AWS IAM unreachable: {exc}") from exc
        logger.info("Fetched %d AWS IAM users", len(users))
        return users

    def normalize(self, raw: dict[str, Any], tenant_id: str, synced_at: datetime) -> PlatformAccount:
        tags = {t["Key"]: t.get("Value", "") for t in raw.get("Tags") or []}
        user_name = raw["UserName"]
        email = tags.get("email") or tags.get("Email")
        if not email and "@" in user_name:
            email = user_name

        activity = [
            t for t in (parse_timestamp(raw.get("PasswordLastUsed")), parse_timestamp(raw.get("_key_last_used")))
            if t is not None
        ]
        return PlatformAccount(
            tenant_id=tenant_id,
            platform=self.PLATFORM,
            native_id=raw["UserId"],
            email=email,
            display_name=tags.get("Name") or user_name,
            is_admin=bool(raw.get("_is_admin")),
            suspended=tags.get("Status", "").lower() in _INACTIVE_TAG_VALUES,
            has_strong_auth=bool(raw.get("_mfa_enabled")),
            last_activity=max(activity) if activity else None,
            license_tier="iam-user",
            attributes={"account_id": raw.get("_account_id")},
            last_synced_at=synced_at,
        )
