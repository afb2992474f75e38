import copy
import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "organization_id": "default",
    "team_id": None,
    "max_suggestions": 10,  # per-PR cap; 0 or None = unlimited
    "show_status_feedback": True,
    "review_draft_prs": False,
    "ignored_users": [],
    "allowed_users": [],  # non-empty = only these users trigger reviews
    "repositories": {},  # per-repository overrides keyed by repository id
    "dedup_ttl_seconds": 60,
    "transient_retry_delay": 0.5,
    "request_timeout": 30,  # per platform call
    "pipeline_timeout": 600,  # whole pipeline run
    "store": "noop",
    "store_path": ".reviewrelay.db",
    "dedup_store": "memory",
    "license": {
        "status": "active",  # active | invalid | byok_required | plan_limit_exceeded
        "licensed_users": None,  # None = every user is licensed
        "seats_available": 0,
    },
    "platform_urls": {
        "github": None,  # None = api.github.com
        "gitlab": "https://gitlab.com/api/v4",
        "bitbucket": "https://api.bitbucket.org/2.0",
        "azure_repos": None,  # e.g. https://dev.azure.com/<org>
        "forgejo": "https://codeberg.org/api/v1",
    },
}

_TOKEN_ENV_VARS = {
    "github": "GITHUB_TOKEN",
    "gitlab": "GITLAB_TOKEN",
    "bitbucket": "BITBUCKET_TOKEN",
    "azure_repos": "AZURE_DEVOPS_TOKEN",
    "forgejo": "FORGEJO_TOKEN",
}

# Keys a repository entry under `repositories:` may override.
_REPOSITORY_KEYS = ("max_suggestions", "show_status_feedback", "review_draft_prs", "language")


def load_config(config_path: str = ".reviewrelay.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .reviewrelay.yml in the current directory
      3. CLI argument overrides
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        for key, value in file_config.items():
            # Nested sections merge so a partial `platform_urls:` keeps the other defaults.
            if isinstance(value, dict) and isinstance(config.get(key), dict) and key != "repositories":
                config[key] = {**config[key], **value}
            else:
                config[key] = value

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["tokens"] = {platform: os.environ.get(var) for platform, var in _TOKEN_ENV_VARS.items()}

    return config


def resolve_code_review_config(config: dict, repository_id: str | None) -> dict:
    """Return the review settings for one repository.

    A repository entry under ``repositories`` overrides the global value key by
    key; anything it does not set falls back to the top-level config.
    """
    resolved = {key: config.get(key) for key in _REPOSITORY_KEYS if key in config}
    repositories = {str(k): v for k, v in (config.get("repositories") or {}).items()}
    overrides = repositories.get(str(repository_id)) or {}
    for key in _REPOSITORY_KEYS:
        if key in overrides:
            resolved[key] = overrides[key]
    return resolved
