"""Platform adapters, imported lazily so that an unused SDK is never loaded."""

from __future__ import annotations

import importlib
import logging
from typing import Optional

from seatwise.config import SeatwiseConfig
from seatwise.models import Platform
from seatwise.providers.base import BaseAdapter

logger = logging.getLogger("seatwise.providers")

ADAPTER_REGISTRY: dict[Platform, tuple[str, str]] = {
    # platform -> (module_path, class_name)
    Platform.GOOGLE_WORKSPACE: ("seatwise.providers.google_workspace", "GoogleWorkspaceAdapter"),
    Platform.SLACK: ("seatwise.providers.slack", "SlackAdapter"),
    Platform.GITHUB: ("seatwise.providers.github_org", "GitHubOrgAdapter"),
    Platform.ZOOM: ("seatwise.providers.zoom", "ZoomAdapter"),
    Platform.AWS: ("seatwise.providers.aws_iam", "AwsIamAdapter"),
}


def get_adapter(platform: Platform, config: SeatwiseConfig) -> Optional[BaseAdapter]:
    """Instantiate the adapter for ``platform``. Returns None if unconfigured."""
    if config.platform_config(platform) is None:
        logger.warning("%s not configured, skipping", platform.value)
        return None
    module_path, class_name = ADAPTER_REGISTRY[platform]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls(config)


def build_adapters(config: SeatwiseConfig) -> dict[Platform, BaseAdapter]:
    """Adapters for every configured platform."""
    adapters: dict[Platform, BaseAdapter] = {}
    for platform in config.configured_platforms():
        adapter = get_adapter(platform, config)
        if adapter is not None:
            adapters[platform] = adapter
    return adapters
