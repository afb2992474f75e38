"""Platform token resolution with a gh CLI fallback for GitHub.

Resolution order (stops at first success):
  1. The platform's environment variable (GITHUB_TOKEN, GITLAB_TOKEN, ...)
  2. GitHub only: `gh auth token` (works after `gh auth login`)
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

TOKEN_ENV_VARS = {
    "github": "GITHUB_TOKEN",
    "gitlab": "GITLAB_TOKEN",
    "bitbucket": "BITBUCKET_TOKEN",
    "azure_repos": "AZURE_DEVOPS_TOKEN",
    "forgejo": "FORGEJO_TOKEN",
}


def _gh_cli_token() -> str | None:
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        # gh is not installed or timed out; fall through.
        return None
    if result.returncode == 0 and result.stdout.strip():
        logger.debug("Resolved GitHub token via gh CLI session.")
        return result.stdout.strip()
    return None


def resolve_platform_token(platform: str) -> str | None:
    """Return a token for ``platform`` or None if no source is available.

    Never raises. Adapters without a token still receive webhooks but their
    API calls will fail with 401.
    """
    var = TOKEN_ENV_VARS.get(platform)
    token = os.environ.get(var) if var else None
    if token:
        return token
    if platform == "github":
        return _gh_cli_token()
    return None
