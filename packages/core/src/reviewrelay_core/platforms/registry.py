"""Platform identifier -> adapter class lookup."""

from __future__ import annotations

import logging

from reviewrelay_core.platforms.azure import AzureReposAdapter
from reviewrelay_core.platforms.base import PlatformAdapter, PlatformType
from reviewrelay_core.platforms.bitbucket import BitbucketAdapter
from reviewrelay_core.platforms.forgejo import ForgejoAdapter
from reviewrelay_core.platforms.github import GitHubAdapter
from reviewrelay_core.platforms.gitlab import GitLabAdapter

logger = logging.getLogger(__name__)

ADAPTER_TYPES: dict[str, type[PlatformAdapter]] = {
    PlatformType.GITHUB.value: GitHubAdapter,
    PlatformType.GITLAB.value: GitLabAdapter,
    PlatformType.BITBUCKET.value: BitbucketAdapter,
    PlatformType.AZURE_REPOS.value: AzureReposAdapter,
    PlatformType.FORGEJO.value: ForgejoAdapter,
}


def build_adapters(config: dict) -> dict[str, PlatformAdapter]:
    """Instantiate one adapter per platform that has enough configuration.

    A platform missing its base URL (Azure has no default) is left out and its
    webhooks are answered with 404.
    """
    tokens = config.get("tokens") or {}
    urls = config.get("platform_urls") or {}
    timeout = config.get("request_timeout", 30)
    adapters: dict[str, PlatformAdapter] = {}
    for platform, adapter_type in ADAPTER_TYPES.items():
        kwargs = {"token": tokens.get(platform), "timeout": timeout}
        if urls.get(platform):
            kwargs["base_url"] = urls[platform]
        try:
            adapters[platform] = adapter_type(**kwargs)
        except ValueError as e:
            logger.info("Platform %s disabled: %s", platform, e)
    return adapters
