"""Interfaces the core needs from persistence.

reviewrelay_core has no dependency on reviewrelay_store. These protocols are
satisfied structurally by the store classes; the CLI passes them in.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol, runtime_checkable

from reviewrelay_core.models import CodeSuggestion, FileChange, OrganizationAndTeamData, PullRequest, Repository


@runtime_checkable
class DedupStore(Protocol):
    def exists(self, key: str) -> bool: ...

    def set(self, key: str, ttl_seconds: float) -> None: ...

    def check_and_set(self, key: str, ttl_seconds: float) -> bool:
        """Atomically record ``key``. Returns True if it was already present."""
        ...


@runtime_checkable
class PullRequestStateRepository(Protocol):
    def get_pull_request(self, platform: str, repository_id: str, number: int) -> Any | None:
        """Return the stored record (with a ``commits`` list) or None."""
        ...

    def save_pull_request(
        self,
        platform: str,
        repository: Repository,
        pull_request: PullRequest,
        commits: Iterable[str] = (),
        organization_id: str | None = None,
    ) -> None: ...

    def count_pull_requests_by_author(self, organization_id: str, author_id: str) -> int: ...


@runtime_checkable
class SuggestionSink(Protocol):
    def aggregate_and_save(
        self,
        pull_request: PullRequest,
        repository: Repository,
        files: list[FileChange],
        sent_suggestions: list[CodeSuggestion],
        discarded_suggestions: list[CodeSuggestion],
        platform: str,
        tenant: OrganizationAndTeamData | None,
        commits: list[str],
    ) -> None: ...
