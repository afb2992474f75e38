"""Capability interface shared by the five platform adapters.

An adapter knows two things about its platform: the shape of its webhook
payloads (``event_name``/``can_handle``/``normalize``/``dedup_fields``) and
the handful of REST calls the pipeline needs (the primitives). Everything else
(dedup, re-trigger decisions, running the pipeline) is shared and lives in
``reviewrelay_core.webhooks``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from reviewrelay_core.errors import PlatformError, classify_platform_error
from reviewrelay_core.models import CanonicalEvent, CreatedComment, FileChange, PullRequest, Repository

logger = logging.getLogger(__name__)


class PlatformType(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    AZURE_REPOS = "azure_repos"
    FORGEJO = "forgejo"


class Reaction(str, Enum):
    SKIPPED = "skipped"
    NO_LICENSE = "no_license"


# Used where a platform has no reaction API and a short comment stands in.
REACTION_TEXT = {
    Reaction.SKIPPED: "👎",
    Reaction.NO_LICENSE: "👎",
}


@dataclass
class WebhookRequest:
    platform: str
    payload: dict
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in (self.headers or {}).items()}

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


@contextmanager
def translate_errors():
    """Re-raise SDK and transport errors as PlatformError subclasses."""
    try:
        yield
    except PlatformError:
        raise
    except Exception as e:
        raise classify_platform_error(e) from e


def dig(data: Any, *path: str, default=None):
    """Walk nested dicts, returning ``default`` on the first missing key."""
    for key in path:
        if not isinstance(data, Mapping):
            return default
        data = data.get(key)
        if data is None:
            return default
    return data


class PlatformAdapter(ABC):
    platform: PlatformType
    supports_reactions: bool = True
    # Header carrying the event name; None when it travels in the payload.
    event_header: str | None = None
    # event name -> allowed actions
    supported_events: Mapping[str, frozenset[str]] = {}
    comment_events: frozenset[str] = frozenset()
    # Actions that only move the head commit; these go through the re-trigger check.
    update_actions: frozenset[str] = frozenset({"synchronize", "updated"})

    # --- webhook side -----------------------------------------------------

    @abstractmethod
    def event_name(self, webhook: WebhookRequest) -> str | None:
        """Event type from the platform header (or payload, for Azure)."""

    @abstractmethod
    def action(self, webhook: WebhookRequest) -> str:
        """Normalized action: opened, synchronize, reopened, closed, created, ..."""

    @abstractmethod
    def normalize(self, webhook: WebhookRequest) -> CanonicalEvent: ...

    @abstractmethod
    def dedup_fields(self, webhook: WebhookRequest) -> dict:
        """Event-specific fields hashed into the dedup key."""

    def is_deleted_comment(self, webhook: WebhookRequest) -> bool:
        return False

    def can_handle(self, webhook: WebhookRequest) -> bool:
        if webhook.platform != self.platform.value:
            return False
        event = self.event_name(webhook)
        allowed = self.supported_events.get(event or "")
        if allowed is None:
            return False
        if event in self.comment_events and self.is_deleted_comment(webhook):
            return False
        return self.action(webhook) in allowed

    # --- primitives -------------------------------------------------------

    @abstractmethod
    def create_review_comment(
        self,
        repository: Repository,
        pull_request: PullRequest,
        *,
        path: str,
        body: str,
        start_line: int | None,
        line: int | None,
        side: str = "RIGHT",
    ) -> CreatedComment: ...

    @abstractmethod
    def create_issue_comment(
        self,
        repository: Repository,
        pull_request: PullRequest,
        body: str,
        in_reply_to: str | int | None = None,
    ) -> CreatedComment: ...

    @abstractmethod
    def add_reaction(
        self,
        repository: Repository,
        pull_request: PullRequest,
        reaction: Reaction,
        comment_id: str | int | None = None,
        comment_kind: str | None = None,
    ) -> None: ...

    @abstractmethod
    def get_commits(self, repository: Repository, pull_request: PullRequest) -> list[str]: ...

    @abstractmethod
    def get_files(self, repository: Repository, pull_request: PullRequest) -> list[FileChange]: ...

    def _reaction_as_comment(
        self,
        repository: Repository,
        pull_request: PullRequest,
        reaction: Reaction,
        comment_id: str | int | None = None,
    ) -> None:
        self.create_issue_comment(repository, pull_request, REACTION_TEXT[reaction], in_reply_to=comment_id)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
