"""Tests for reviewrelay-store implementations."""

from __future__ import annotations

import threading
import types

import pytest

from reviewrelay_store.memory import MemoryDedupStore, MemoryStore
from reviewrelay_store.models import PullRequestRecord, SuggestionRecord
from reviewrelay_store.noop import NoOpStore
from reviewrelay_store.sqlite import SQLiteDedupStore, SQLiteStore


def _repository(id="1", name="app", full_name="acme/app"):
    return types.SimpleNamespace(id=id, name=name, full_name=full_name)


def _pull_request(number=5, head_sha="h1", is_draft=False, author_id="alice"):
    return types.SimpleNamespace(
        number=number, title="Add cache", state="open", is_draft=is_draft, author_id=author_id, head_sha=head_sha
    )


def _suggestion(id, severity="high", priority_status="sent", delivery_status="sent", comment_id=11):
    return types.SimpleNamespace(
        id=id,
        relevant_file="src/cache.py",
        relevant_lines_start=3,
        relevant_lines_end=9,
        severity=severity,
        label="performance",
        suggestion_content="Evict stale entries",
        priority_status=priority_status,
        delivery_status=delivery_status,
        comment_id=comment_id,
    )


def _record(suggestion_id="s1", repository="acme/app", pr_number=1, delivery_status="sent"):
    return SuggestionRecord(
        platform="github",
        repository=repository,
        pr_number=pr_number,
        suggestion_id=suggestion_id,
        file="src/cache.py",
        start_line=1,
        end_line=2,
        severity="high",
        label="bug",
        content="text",
        delivery_status=delivery_status,
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryStore()
    else:
        s = SQLiteStore(db_path=str(tmp_path / "test.db"))
    yield s
    s.close()


# ---------------------------------------------------------------------------
# NoOpStore
# ---------------------------------------------------------------------------


class TestNoOpStore:
    def test_save_does_not_raise(self):
        store = NoOpStore()
        store.save_pull_request("github", _repository(), _pull_request(), commits=["h1"])
        store.save_suggestions([_record()])  # must not raise

    def test_nothing_is_returned(self):
        store = NoOpStore()
        store.save_suggestions([_record()])
        assert store.get_pull_request("github", "1", 5) is None
        assert store.list_suggestions("acme/app") == []
        assert store.count_pull_requests_by_author("org", "alice") == 0


# ---------------------------------------------------------------------------
# Pull request state (memory and SQLite)
# ---------------------------------------------------------------------------


class TestPullRequestState:
    def test_unknown_pull_request(self, store):
        assert store.get_pull_request("github", "1", 404) is None

    def test_save_and_get(self, store):
        store.save_pull_request("github", _repository(), _pull_request(), commits=["c0", "h1"], organization_id="org")

        record = store.get_pull_request("github", "1", 5)
        assert isinstance(record, PullRequestRecord)
        assert record.commits == ["c0", "h1"]
        assert record.repository_name == "acme/app"
        assert record.organization_id == "org"
        assert record.updated_at

    def test_commits_merged_across_saves(self, store):
        store.save_pull_request("github", _repository(), _pull_request(), commits=["c0", "h1"])
        store.save_pull_request("github", _repository(), _pull_request(head_sha="h2"), commits=["h1", "h2"])

        record = store.get_pull_request("github", "1", 5)
        assert record.commits == ["c0", "h1", "h2"]
        assert record.head_sha == "h2"

    def test_draft_flag_updated(self, store):
        store.save_pull_request("github", _repository(), _pull_request(is_draft=True))
        assert store.get_pull_request("github", "1", 5).is_draft is True
        store.save_pull_request("github", _repository(), _pull_request(is_draft=False))
        assert store.get_pull_request("github", "1", 5).is_draft is False

    def test_organization_kept_when_not_given(self, store):
        store.save_pull_request("github", _repository(), _pull_request(), organization_id="org")
        store.save_pull_request("github", _repository(), _pull_request())
        assert store.get_pull_request("github", "1", 5).organization_id == "org"

    def test_platforms_kept_apart(self, store):
        store.save_pull_request("github", _repository(), _pull_request(), commits=["a"])
        store.save_pull_request("gitlab", _repository(), _pull_request(), commits=["b"])
        assert store.get_pull_request("github", "1", 5).commits == ["a"]
        assert store.get_pull_request("gitlab", "1", 5).commits == ["b"]

    def test_count_by_author(self, store):
        for number in (1, 2):
            store.save_pull_request("github", _repository(), _pull_request(number=number), organization_id="org")
        store.save_pull_request("github", _repository(), _pull_request(number=3, author_id="bob"), organization_id="org")
        assert store.count_pull_requests_by_author("org", "alice") == 2
        assert store.count_pull_requests_by_author("other", "alice") == 0

    def test_concurrent_saves_keep_every_commit(self, store):
        threads = [
            threading.Thread(
                target=store.save_pull_request,
                args=("github", _repository(), _pull_request()),
                kwargs={"commits": [f"c{i}"]},
            )
            for i in range(10)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(store.get_pull_request("github", "1", 5).commits) == sorted(f"c{i}" for i in range(10))


# ---------------------------------------------------------------------------
# Suggestion sink (memory and SQLite)
# ---------------------------------------------------------------------------


class TestSuggestions:
    def test_save_and_list(self, store):
        store.save_suggestions([_record("s1"), _record("s2", pr_number=2)])
        assert [r.suggestion_id for r in store.list_suggestions("acme/app")] == ["s1", "s2"]
        assert [r.suggestion_id for r in store.list_suggestions("acme/app", pr_number=2)] == ["s2"]

    def test_other_repository_not_listed(self, store):
        store.save_suggestions([_record(repository="acme/other")])
        assert store.list_suggestions("acme/app") == []

    def test_aggregate_and_save_maps_suggestions(self, store):
        sent = [_suggestion("s1")]
        discarded = [_suggestion("d1", severity="low", priority_status="discarded_by_quantity", delivery_status=None,
                                 comment_id=None)]
        tenant = types.SimpleNamespace(organization_id="org")

        store.aggregate_and_save(_pull_request(), _repository(), [], sent, discarded, "github", tenant, ["h1"])

        records = store.list_suggestions("acme/app", pr_number=5)
        assert [(r.suggestion_id, r.priority_status, r.delivery_status) for r in records] == [
            ("s1", "sent", "sent"),
            ("d1", "discarded_by_quantity", None),
        ]
        assert records[0].comment_id == "11"
        assert records[0].organization_id == "org"
        assert store.get_pull_request("github", "1", 5).commits == ["h1"]

    def test_enum_statuses_stored_by_value(self, store):
        class Status:
            value = "repriorized"

        store.aggregate_and_save(
            _pull_request(), _repository(), [], [_suggestion("f1", priority_status=Status())], [], "github", None, []
        )
        assert store.list_suggestions("acme/app")[0].priority_status == "repriorized"


# ---------------------------------------------------------------------------
# Dedup stores
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture(params=["memory", "sqlite"])
def dedup(request, tmp_path):
    clock = FakeClock()
    if request.param == "memory":
        s = MemoryDedupStore(clock=clock)
    else:
        s = SQLiteDedupStore(db_path=str(tmp_path / "dedup.db"), clock=clock)
    yield s, clock
    s.close()


class TestDedupStores:
    def test_first_seen_then_duplicate(self, dedup):
        store, _ = dedup
        assert store.check_and_set("github_webhook:1:abc", 60) is False
        assert store.check_and_set("github_webhook:1:abc", 60) is True

    def test_key_expires_after_ttl(self, dedup):
        store, clock = dedup
        store.check_and_set("k", 60)
        clock.now += 59
        assert store.exists("k")
        clock.now += 2
        assert not store.exists("k")
        assert store.check_and_set("k", 60) is False

    def test_set_and_exists(self, dedup):
        store, _ = dedup
        assert not store.exists("k")
        store.set("k", 10)
        assert store.exists("k")

    def test_concurrent_check_and_set_claims_once(self, dedup):
        store, _ = dedup
        results = []
        lock = threading.Lock()

        def claim():
            seen = store.check_and_set("race", 60)
            with lock:
                results.append(seen)

        threads = [threading.Thread(target=claim) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(False) == 1

    def test_sqlite_keys_shared_between_instances(self, tmp_path):
        path = str(tmp_path / "shared.db")
        first, second = SQLiteDedupStore(path), SQLiteDedupStore(path)
        try:
            assert first.check_and_set("k", 60) is False
            assert second.check_and_set("k", 60) is True
        finally:
            first.close()
            second.close()
