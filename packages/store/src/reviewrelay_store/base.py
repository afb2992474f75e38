"""Abstract store interfaces.

Any storage backend (memory, SQLite, Postgres) implements these. The core
depends only on the methods, never on this package, so backends are
swappable without touching pipeline code.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from reviewrelay_store.models import PullRequestRecord, SuggestionRecord


def _value(obj):
    """Enum members are stored by value."""
    return getattr(obj, "value", obj)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BaseStore(ABC):
    """Pull-request state plus the suggestion sink.

    Implementations must be safe to call from webhook worker threads.
    """

    @abstractmethod
    def get_pull_request(self, platform: str, repository_id: str, number: int) -> PullRequestRecord | None:
        """Return the stored PR, or None if it was never seen."""

    @abstractmethod
    def save_pull_request_record(self, record: PullRequestRecord) -> None:
        """Insert or replace one PR record."""

    @abstractmethod
    def count_pull_requests_by_author(self, organization_id: str, author_id: str) -> int: ...

    @abstractmethod
    def save_suggestions(self, records: list[SuggestionRecord]) -> None: ...

    @abstractmethod
    def list_suggestions(self, repository: str, pr_number: int | None = None) -> list[SuggestionRecord]:
        """Return suggestions for a repository, optionally for one PR.

        Returns an empty list if nothing is stored; never raises.
        """

    def save_pull_request(
        self,
        platform: str,
        repository,
        pull_request,
        commits=(),
        organization_id: str | None = None,
    ) -> None:
        """Record the PR's current state, merging its commit history."""
        repository_id = str(repository.id)
        existing = self.get_pull_request(platform, repository_id, pull_request.number)
        known = list(existing.commits) if existing else []
        for sha in commits:
            if sha and sha not in known:
                known.append(sha)
        self.save_pull_request_record(
            PullRequestRecord(
                platform=platform,
                repository_id=repository_id,
                repository_name=repository.full_name or repository.name,
                number=pull_request.number,
                title=pull_request.title or "",
                state=pull_request.state,
                is_draft=bool(pull_request.is_draft),
                author_id=pull_request.author_id,
                head_sha=pull_request.head_sha,
                commits=known,
                organization_id=organization_id or (existing.organization_id if existing else None),
                updated_at=_now(),
            )
        )

    def aggregate_and_save(
        self,
        pull_request,
        repository,
        files,
        sent_suggestions,
        discarded_suggestions,
        platform: str,
        tenant,
        commits,
    ) -> None:
        organization_id = getattr(tenant, "organization_id", None)
        repo_name = repository.full_name or repository.name
        saved_at = _now()
        records = [
            SuggestionRecord(
                platform=platform,
                repository=repo_name,
                pr_number=pull_request.number,
                suggestion_id=str(s.id),
                file=s.relevant_file,
                start_line=s.relevant_lines_start,
                end_line=s.relevant_lines_end,
                severity=s.severity,
                label=s.label,
                content=s.suggestion_content,
                priority_status=_value(s.priority_status),
                delivery_status=_value(s.delivery_status),
                comment_id=str(s.comment_id) if s.comment_id is not None else None,
                organization_id=organization_id,
                saved_at=saved_at,
            )
            for s in [*sent_suggestions, *discarded_suggestions]
        ]
        self.save_suggestions(records)
        self.save_pull_request(platform, repository, pull_request, commits=commits, organization_id=organization_id)

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional; the default is a no-op so callers can always call close().
        """


class BaseDedupStore(ABC):
    """Short-lived key store used to collapse duplicate webhook deliveries."""

    def __init__(self):
        self._lock = threading.Lock()

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def set(self, key: str, ttl_seconds: float) -> None: ...

    def check_and_set(self, key: str, ttl_seconds: float) -> bool:
        """Record ``key`` unless present. Returns True when it was already there."""
        with self._lock:
            if self.exists(key):
                return True
            self.set(key, ttl_seconds)
            return False

    def close(self) -> None:
        pass
