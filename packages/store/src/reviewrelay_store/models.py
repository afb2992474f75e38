"""Persisted records.

Decoupled from reviewrelay_core so the store layer can be used on its own;
the core's objects are mapped onto these by attribute name in base.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class PullRequestRecord:
    """Last known state of a pull request, used by the re-trigger check."""

    platform: str
    repository_id: str
    repository_name: str
    number: int
    title: str = ""
    state: str = "open"
    is_draft: bool = False
    author_id: str | None = None
    head_sha: str | None = None
    commits: list[str] = field(default_factory=list)
    organization_id: str | None = None
    updated_at: str = ""  # ISO-8601 UTC timestamp


@dataclass
class SuggestionRecord:
    """One suggestion of a review run and what happened to it."""

    platform: str
    repository: str
    pr_number: int
    suggestion_id: str
    file: str
    start_line: int | None
    end_line: int | None
    severity: str
    label: str
    content: str
    priority_status: str | None = None
    delivery_status: str | None = None
    comment_id: str | None = None
    organization_id: str | None = None
    saved_at: str = ""  # ISO-8601 UTC timestamp
