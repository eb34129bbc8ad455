from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional

import pytest

from seatwise.models import Platform, PlatformAccount
from seatwise.store import MemoryStore
from tests.fakes import NOW, TENANT


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_account() -> Callable[..., PlatformAccount]:
    # Build stored accounts directly, bypassing sync.
    def _make(
        platform: Platform,
        native_id: str,
        email: Optional[str],
        **kwargs: Any,
    ) -> PlatformAccount:
        kwargs.setdefault("last_synced_at", NOW)
        return PlatformAccount(
            tenant_id=kwargs.pop("tenant_id", TENANT),
            platform=platform,
            native_id=native_id,
            email=email,
            **kwargs,
        )

    return _make
