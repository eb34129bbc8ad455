"""Cross-platform identity resolution.

Joins platform accounts of one tenant into CrossPlatformIdentity records by
normalized email. Only slots for platforms present in the account table are
written, derived blocks are carried over, and a stored slot is replaced only
by an account synced at the same time or later.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from seatwise.errors import MergeConflict
from seatwise.models import (
    PLATFORM_ORDER,
    CrossPlatformIdentity,
    Platform,
    PlatformAccount,
    normalize_email,
    slot_from_account,
    utcnow,
)
from seatwise.store import Store

logger = logging.getLogger("seatwise.identity_resolver")


def _ts(value: Optional[datetime]) -> float:
    return value.timestamp() if value is not None else float("-inf")


def _preferred(candidates: list[PlatformAccount]) -> PlatformAccount:
    """Latest sync, then latest activity, then smallest native id."""
    return min(
        candidates,
        key=lambda a: (-_ts(a.last_synced_at), -_ts(a.last_activity), a.native_id),
    )


def _stored_is_newer(stored: Optional[datetime], incoming: Optional[datetime]) -> bool:
    return stored is not None and (incoming is None or stored > incoming)


class IdentityResolver:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    def resolve(self, tenant_id: str) -> dict[str, CrossPlatformIdentity]:
        """Rebuild identities of one tenant. Returns every identity keyed by email."""
        now = self.clock()
        accounts = self.store.list_accounts(tenant_id)
        identities = {i.primary_email: i for i in self.store.list_identities(tenant_id)}

        # (platform, native id) -> email of the identity holding that slot
        owners: dict[tuple[Platform, str], str] = {}
        for email, identity in identities.items():
            for platform, slot in identity.platforms.items():
                owners[(platform, slot.user_id)] = email

        grouped: dict[tuple[str, Platform], list[PlatformAccount]] = {}
        inactive: list[PlatformAccount] = []
        emailless: list[PlatformAccount] = []
        without_email = 0
        for account in accounts:
            email = normalize_email(account.email)
            if email is None:
                without_email += 1
                if account.is_active:
                    emailless.append(account)
                else:
                    inactive.append(account)
                continue
            if account.is_active:
                grouped.setdefault((email, account.platform), []).append(account)
            else:
                inactive.append(account)

        touched: set[str] = set()
        conflicts = 0
        order = {p: i for i, p in enumerate(PLATFORM_ORDER)}
        for (email, platform) in sorted(grouped, key=lambda k: (k[0], order[k[1]])):
            account = _preferred(grouped[(email, platform)])

            previous_email = owners.get((platform, account.native_id))
            if previous_email is not None and previous_email != email:
                conflicts += 1
                self._detach(identities[previous_email], platform, account.native_id)
                touched.add(previous_email)
                self._log_conflict(tenant_id, MergeConflict(
                    "Account moved to a different email",
                    platform=platform.value,
                    native_id=account.native_id,
                    previous_email=previous_email,
                    email=email,
                ))

            identity = identities.get(email)
            if identity is None:
                identity = CrossPlatformIdentity(tenant_id=tenant_id, primary_email=email)
                identities[email] = identity

            stored = identity.platforms.get(platform)
            if stored is not None and _stored_is_newer(stored.last_synced_at, account.last_synced_at):
                continue
            identity.platforms[platform] = slot_from_account(account)
            owners[(platform, account.native_id)] = email
            touched.add(email)

        # A live account that lost its email can no longer be joined; its old slot would go stale
        for account in emailless:
            email = owners.get((account.platform, account.native_id))
            if email is None:
                continue
            slot = identities[email].platforms.get(account.platform)
            if slot is None or slot.user_id != account.native_id:
                continue
            if _stored_is_newer(slot.last_synced_at, account.last_synced_at):
                continue
            conflicts += 1
            self._detach(identities[email], account.platform, account.native_id)
            del owners[(account.platform, account.native_id)]
            touched.add(email)
            self._log_conflict(tenant_id, MergeConflict(
                "Account no longer exposes an email",
                platform=account.platform.value,
                native_id=account.native_id,
                previous_email=email,
                email=None,
            ))

        # Inactive accounts only refresh the slot that already carries their id
        for account in inactive:
            email = owners.get((account.platform, account.native_id))
            if email is None:
                continue
            identity = identities[email]
            slot = identity.platforms.get(account.platform)
            if slot is None or slot.user_id != account.native_id:
                continue
            if _stored_is_newer(slot.last_synced_at, account.last_synced_at):
                continue
            identity.platforms[account.platform] = slot_from_account(account)
            touched.add(email)

        for email in sorted(touched):
            if not identities[email].platforms:
                self.store.delete_identity(tenant_id, email)
                del identities[email]
                logger.info(
                    "Deleted identity %s with no platform slots left", email,
                    extra={"tenant_id": tenant_id},
                )

        for identity in identities.values():
            identity.last_sync = now
        self.store.upsert_identities(list(identities.values()))

        logger.info(
            "Resolved %d identities (%d accounts without email, %d merge conflicts)",
            len(identities), without_email, conflicts,
            extra={"tenant_id": tenant_id, "records": len(identities)},
        )
        return {email: identities[email] for email in sorted(identities)}

    @staticmethod
    def _log_conflict(tenant_id: str, conflict: MergeConflict) -> None:
        logger.warning(
            "%s: %s %s -> %s", conflict.message, conflict.native_id,
            conflict.previous_email, conflict.email,
            extra={"tenant_id": tenant_id, "platform": conflict.platform, "error_kind": conflict.kind},
        )

    @staticmethod
    def _detach(identity: CrossPlatformIdentity, platform: Platform, native_id: str) -> None:
        slot = identity.platforms.get(platform)
        if slot is not None and slot.user_id == native_id:
            del identity.platforms[platform]
