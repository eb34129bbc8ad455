"""Ghost detection: identities whose every live seat is dormant."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from seatwise.models import GhostStatus, split_valid

logger = logging.getLogger("seatwise.ghost_detector")

DEFAULT_THRESHOLD_DAYS = 90


def detect_ghosts(
    identities: Any, now: datetime, threshold_days: int = DEFAULT_THRESHOLD_DAYS
) -> dict[str, GhostStatus]:
    """Compute a GhostStatus per identity email.

    Only active, non-suspended slots are considered. A slot with no recorded
    activity has never logged in; one whose activity is older than
    ``threshold_days`` is stale. An identity is a ghost when it has at least
    one considered slot and all of them are never-logged-in or stale.
    """
    valid, errors = split_valid(identities)
    for error in errors:
        logger.warning("Skipping identity: %s", error.message, extra={"error_kind": error.kind})

    threshold = timedelta(days=threshold_days)
    statuses: dict[str, GhostStatus] = {}
    for identity in valid:
        considered = [
            (platform, identity.platforms[platform])
            for platform in identity.populated_platforms()
            if identity.platforms[platform].is_active and not identity.platforms[platform].suspended
        ]
        never = [p.value for p, slot in considered if slot.last_activity is None]
        stale = [
            p.value for p, slot in considered
            if slot.last_activity is not None and now - slot.last_activity > threshold
        ]
        idle_days = [
            max((now - slot.last_activity).days, 0)
            for _, slot in considered
            if slot.last_activity is not None
        ]
        statuses[identity.primary_email] = GhostStatus(
            is_ghost=bool(considered) and len(never) + len(stale) == len(considered),
            never_logged_in_platforms=never,
            stale_platforms=stale,
            inactive_days=min(idle_days) if idle_days else 0,
            last_calculated=now,
        )

    logger.info(
        "Ghost detection: %d of %d identities are ghosts",
        sum(1 for s in statuses.values() if s.is_ghost), len(statuses),
        extra={"records": len(statuses)},
    )
    return statuses
