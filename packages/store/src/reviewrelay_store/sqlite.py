"""SQLite stores: local file-based persistence for a single server.

Schema:
  pull_requests  one row per (platform, repository, PR); commit history as JSON
  suggestions    one row per suggestion per review run
  dedup_keys     webhook dedup keys with their wall-clock expiry
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time

from reviewrelay_store.base import BaseDedupStore, BaseStore
from reviewrelay_store.models import PullRequestRecord, SuggestionRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS pull_requests (
    platform         TEXT NOT NULL,
    repository_id    TEXT NOT NULL,
    repository_name  TEXT,
    number           INTEGER NOT NULL,
    title            TEXT,
    state            TEXT,
    is_draft         INTEGER DEFAULT 0,
    author_id        TEXT,
    head_sha         TEXT,
    commits_json     TEXT DEFAULT '[]',
    organization_id  TEXT,
    updated_at       TEXT,
    PRIMARY KEY (platform, repository_id, number)
);
CREATE INDEX IF NOT EXISTS idx_pull_requests_author ON pull_requests (organization_id, author_id);

CREATE TABLE IF NOT EXISTS suggestions (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    platform         TEXT,
    repository       TEXT NOT NULL,
    pr_number        INTEGER NOT NULL,
    suggestion_id    TEXT,
    file             TEXT,
    start_line       INTEGER,
    end_line         INTEGER,
    severity         TEXT,
    label            TEXT,
    content          TEXT,
    priority_status  TEXT,
    delivery_status  TEXT,
    comment_id       TEXT,
    organization_id  TEXT,
    saved_at         TEXT
);
CREATE INDEX IF NOT EXISTS idx_suggestions_repo ON suggestions (repository);
CREATE INDEX IF NOT EXISTS idx_suggestions_pr   ON suggestions (repository, pr_number);
"""

_DEDUP_SCHEMA = """
CREATE TABLE IF NOT EXISTS dedup_keys (
    key         TEXT PRIMARY KEY,
    expires_at  REAL NOT NULL
);
"""


def _connect(db_path: str) -> sqlite3.Connection:
    # Webhooks are processed on worker threads; access is serialized by a lock.
    conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


class SQLiteStore(BaseStore):
    """Stores PR state and suggestion history in a local SQLite file.

    The path defaults to `.reviewrelay.db` in the working directory.
    Configure via .reviewrelay.yml: `store_path: /path/to/reviewrelay.db`.
    """

    def __init__(self, db_path: str = ".reviewrelay.db"):
        self._lock = threading.RLock()
        self._conn = _connect(db_path)
        self._conn.executescript(_SCHEMA)

    def get_pull_request(self, platform: str, repository_id: str, number: int) -> PullRequestRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM pull_requests WHERE platform=? AND repository_id=? AND number=?",
                (platform, str(repository_id), int(number)),
            ).fetchone()
        return self._row_to_pull_request(row) if row else None

    def save_pull_request_record(self, record: PullRequestRecord) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO pull_requests
                  (platform, repository_id, repository_name, number, title, state, is_draft,
                   author_id, head_sha, commits_json, organization_id, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.platform,
                    record.repository_id,
                    record.repository_name,
                    record.number,
                    record.title,
                    record.state,
                    int(record.is_draft),
                    record.author_id,
                    record.head_sha,
                    json.dumps(record.commits),
                    record.organization_id,
                    record.updated_at,
                ),
            )

    def save_pull_request(self, platform, repository, pull_request, commits=(), organization_id=None) -> None:
        # Read-merge-write of the commit list must not interleave with another webhook.
        with self._lock:
            super().save_pull_request(platform, repository, pull_request, commits, organization_id)

    def count_pull_requests_by_author(self, organization_id: str, author_id: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM pull_requests WHERE organization_id=? AND author_id=?",
                (organization_id, author_id),
            ).fetchone()
        return row[0]

    def save_suggestions(self, records: list[SuggestionRecord]) -> None:
        with self._lock, self._conn:
            self._conn.executemany(
                """
                INSERT INTO suggestions
                  (platform, repository, pr_number, suggestion_id, file, start_line, end_line, severity,
                   label, content, priority_status, delivery_status, comment_id, organization_id, saved_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        r.platform,
                        r.repository,
                        r.pr_number,
                        r.suggestion_id,
                        r.file,
                        r.start_line,
                        r.end_line,
                        r.severity,
                        r.label,
                        r.content,
                        r.priority_status,
                        r.delivery_status,
                        r.comment_id,
                        r.organization_id,
                        r.saved_at,
                    )
                    for r in records
                ],
            )

    def list_suggestions(self, repository: str, pr_number: int | None = None) -> list[SuggestionRecord]:
        with self._lock:
            if pr_number is not None:
                rows = self._conn.execute(
                    "SELECT * FROM suggestions WHERE repository=? AND pr_number=? ORDER BY id",
                    (repository, pr_number),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM suggestions WHERE repository=? ORDER BY id",
                    (repository,),
                ).fetchall()
        return [self._row_to_suggestion(r) for r in rows]

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_pull_request(row: sqlite3.Row) -> PullRequestRecord:
        return PullRequestRecord(
            platform=row["platform"],
            repository_id=row["repository_id"],
            repository_name=row["repository_name"] or "",
            number=row["number"],
            title=row["title"] or "",
            state=row["state"] or "open",
            is_draft=bool(row["is_draft"]),
            author_id=row["author_id"],
            head_sha=row["head_sha"],
            commits=json.loads(row["commits_json"] or "[]"),
            organization_id=row["organization_id"],
            updated_at=row["updated_at"] or "",
        )

    @staticmethod
    def _row_to_suggestion(row: sqlite3.Row) -> SuggestionRecord:
        return SuggestionRecord(
            platform=row["platform"] or "",
            repository=row["repository"],
            pr_number=row["pr_number"],
            suggestion_id=row["suggestion_id"] or "",
            file=row["file"] or "",
            start_line=row["start_line"],
            end_line=row["end_line"],
            severity=row["severity"] or "low",
            label=row["label"] or "",
            content=row["content"] or "",
            priority_status=row["priority_status"],
            delivery_status=row["delivery_status"],
            comment_id=row["comment_id"],
            organization_id=row["organization_id"],
            saved_at=row["saved_at"] or "",
        )


class SQLiteDedupStore(BaseDedupStore):
    """Dedup keys shared by every process pointed at the same file."""

    def __init__(self, db_path: str = ".reviewrelay.db", clock=time.time):
        super().__init__()
        self._clock = clock
        self._conn = _connect(db_path)
        self._conn.executescript(_DEDUP_SCHEMA)

    def exists(self, key: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM dedup_keys WHERE key=? AND expires_at>?", (key, self._clock())
            ).fetchone()
        return row is not None

    def set(self, key: str, ttl_seconds: float) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO dedup_keys (key, expires_at) VALUES (?, ?)", (key, self._clock() + ttl_seconds)
            )

    def check_and_set(self, key: str, ttl_seconds: float) -> bool:
        now = self._clock()
        with self._lock:
            # One write transaction so two processes cannot both claim the key.
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                self._conn.execute("DELETE FROM dedup_keys WHERE key=? AND expires_at<=?", (key, now))
                inserted = self._conn.execute(
                    "INSERT OR IGNORE INTO dedup_keys (key, expires_at) VALUES (?, ?)", (key, now + ttl_seconds)
                ).rowcount
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
        return inserted == 0

    def close(self) -> None:
        self._conn.close()
