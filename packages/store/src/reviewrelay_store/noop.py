"""No-op store, the default when no store is configured.

Comments are still posted; nothing is persisted, so every update event is
treated as new. Using a NoOpStore rather than None lets callers always call
the store without conditional checks.
"""

from __future__ import annotations

from reviewrelay_store.base import BaseStore
from reviewrelay_store.models import PullRequestRecord, SuggestionRecord


class NoOpStore(BaseStore):
    """Silently discards all records; zero configuration required."""

    def get_pull_request(self, platform: str, repository_id: str, number: int) -> PullRequestRecord | None:
        return None

    def save_pull_request_record(self, record: PullRequestRecord) -> None:
        pass  # intentional no-op

    def count_pull_requests_by_author(self, organization_id: str, author_id: str) -> int:
        return 0

    def save_suggestions(self, records: list[SuggestionRecord]) -> None:
        pass  # intentional no-op

    def list_suggestions(self, repository: str, pr_number: int | None = None) -> list[SuggestionRecord]:
        return []
