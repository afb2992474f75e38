"""In-process stores. State is lost on restart; fine for a single server."""

from __future__ import annotations

import copy
import threading
import time
from typing import Callable

from reviewrelay_store.base import BaseDedupStore, BaseStore
from reviewrelay_store.models import PullRequestRecord, SuggestionRecord


class MemoryStore(BaseStore):
    def __init__(self):
        self._lock = threading.RLock()
        self._pull_requests: dict[tuple[str, str, int], PullRequestRecord] = {}
        self._suggestions: list[SuggestionRecord] = []

    def get_pull_request(self, platform: str, repository_id: str, number: int) -> PullRequestRecord | None:
        with self._lock:
            record = self._pull_requests.get((platform, str(repository_id), int(number)))
            return copy.deepcopy(record)

    def save_pull_request_record(self, record: PullRequestRecord) -> None:
        with self._lock:
            self._pull_requests[(record.platform, record.repository_id, record.number)] = copy.deepcopy(record)

    def save_pull_request(self, platform, repository, pull_request, commits=(), organization_id=None) -> None:
        with self._lock:
            super().save_pull_request(platform, repository, pull_request, commits, organization_id)

    def count_pull_requests_by_author(self, organization_id: str, author_id: str) -> int:
        with self._lock:
            return sum(
                1
                for r in self._pull_requests.values()
                if r.author_id == author_id and (organization_id is None or r.organization_id == organization_id)
            )

    def save_suggestions(self, records: list[SuggestionRecord]) -> None:
        with self._lock:
            self._suggestions.extend(records)

    def list_suggestions(self, repository: str, pr_number: int | None = None) -> list[SuggestionRecord]:
        with self._lock:
            return [
                s
                for s in self._suggestions
                if s.repository == repository and (pr_number is None or s.pr_number == pr_number)
            ]


class MemoryDedupStore(BaseDedupStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        super().__init__()
        self._clock = clock
        self._expiry: dict[str, float] = {}

    def exists(self, key: str) -> bool:
        expires_at = self._expiry.get(key)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            self._expiry.pop(key, None)
            return False
        return True

    def set(self, key: str, ttl_seconds: float) -> None:
        now = self._clock()
        self._expiry[key] = now + ttl_seconds
        # Keep the map from growing without bound on a long-running server.
        if len(self._expiry) > 10_000:
            for k in [k for k, exp in self._expiry.items() if exp <= now]:
                del self._expiry[k]
