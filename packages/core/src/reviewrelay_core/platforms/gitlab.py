from __future__ import annotations

import hashlib
import logging

from reviewrelay_core.errors import PlatformError
from reviewrelay_core.models import (
    CanonicalEvent,
    CreatedComment,
    FileChange,
    PlatformComment,
    PullRequest,
    Repository,
)
from reviewrelay_core.platforms.base import PlatformAdapter, PlatformType, Reaction, WebhookRequest, dig
from reviewrelay_core.platforms.http import PlatformHttpClient

logger = logging.getLogger(__name__)

MERGE_REQUEST_HOOK = "Merge Request Hook"
NOTE_HOOK = "Note Hook"

_ACTIONS = {
    "open": "opened",
    "reopen": "reopened",
    "close": "closed",
    "merge": "closed",
    "update": "updated",
}
_REACTIONS = {Reaction.SKIPPED: "thumbsdown", Reaction.NO_LICENSE: "lock"}


def _line_code(path: str, line: int) -> str:
    return f"{hashlib.sha1(path.encode()).hexdigest()}_{line}_{line}"


class GitLabAdapter(PlatformAdapter):
    platform = PlatformType.GITLAB
    event_header = "X-Gitlab-Event"
    supported_events = {
        MERGE_REQUEST_HOOK: frozenset({"opened", "synchronize", "updated", "reopened", "closed"}),
        NOTE_HOOK: frozenset({"created"}),
    }
    comment_events = frozenset({NOTE_HOOK})

    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://gitlab.com/api/v4",
        timeout: float = 30,
        http: PlatformHttpClient | None = None,
    ):
        self.http = http or PlatformHttpClient(
            base_url, headers={"PRIVATE-TOKEN": token} if token else None, timeout=timeout
        )
        self._usernames: dict[int, str] = {}

    # --- webhook side -----------------------------------------------------

    def event_name(self, webhook: WebhookRequest) -> str | None:
        return webhook.header(self.event_header)

    def action(self, webhook: WebhookRequest) -> str:
        attrs = webhook.payload.get("object_attributes") or {}
        if self.event_name(webhook) == NOTE_HOOK:
            return "deleted" if attrs.get("action") == "delete" else "created"
        raw = attrs.get("action") or ""
        # An update carrying oldrev means new commits were pushed.
        if raw == "update" and attrs.get("oldrev"):
            return "synchronize"
        return _ACTIONS.get(raw, raw)

    def is_deleted_comment(self, webhook: WebhookRequest) -> bool:
        return self.action(webhook) == "deleted"

    def can_handle(self, webhook: WebhookRequest) -> bool:
        if not super().can_handle(webhook):
            return False
        if self.event_name(webhook) == NOTE_HOOK:
            return dig(webhook.payload, "object_attributes", "noteable_type") == "MergeRequest"
        return True

    def _merge_request(self, webhook: WebhookRequest) -> dict:
        if self.event_name(webhook) == NOTE_HOOK:
            return webhook.payload.get("merge_request") or {}
        return webhook.payload.get("object_attributes") or {}

    def _author_username(self, payload: dict, mr: dict) -> str | None:
        """Login of the MR author. Both hooks only carry its numeric id."""
        author_id = mr.get("author_id")
        if author_id is None:
            return None
        user = payload.get("user") or {}
        if user.get("id") == author_id and user.get("username"):
            return user["username"]
        if author_id not in self._usernames:
            try:
                username = (self.http.get(f"/users/{author_id}") or {}).get("username")
            except PlatformError as e:
                logger.warning("Could not resolve GitLab user %s: %s", author_id, e)
                return None
            if not username:
                return None
            self._usernames[author_id] = username
        return self._usernames[author_id]

    def normalize(self, webhook: WebhookRequest) -> CanonicalEvent:
        payload = webhook.payload
        project = payload.get("project") or {}
        repository = None
        if project.get("id") is not None:
            repository = Repository(
                id=str(project["id"]),
                name=project.get("name", ""),
                full_name=project.get("path_with_namespace"),
            )

        mr = self._merge_request(webhook)
        pull_request = None
        if mr.get("iid") is not None:
            state = mr.get("state") or "opened"
            pull_request = PullRequest(
                number=int(mr["iid"]),
                state="open" if state in ("opened", "locked") else state,
                locked=state == "locked" or bool(mr.get("discussion_locked")),
                is_draft=bool(mr.get("draft") or mr.get("work_in_progress")),
                head_sha=dig(mr, "last_commit", "id"),
                author_id=self._author_username(payload, mr),
                title=mr.get("title") or "",
                base_ref=mr.get("target_branch"),
            )

        comment = None
        if self.event_name(webhook) == NOTE_HOOK:
            attrs = payload.get("object_attributes") or {}
            comment = PlatformComment(
                id=attrs.get("id"), body=attrs.get("note") or "", author_id=dig(payload, "user", "username")
            )

        return CanonicalEvent(
            platform=self.platform.value,
            event=self.event_name(webhook) or "",
            action=self.action(webhook),
            repository=repository,
            pull_request=pull_request,
            comment=comment,
            trigger_comment_id=comment.id if comment else None,
            trigger_comment_kind=comment.kind if comment else None,
        )

    def dedup_fields(self, webhook: WebhookRequest) -> dict:
        attrs = webhook.payload.get("object_attributes") or {}
        mr = self._merge_request(webhook)
        return {
            "event": self.event_name(webhook),
            "action": attrs.get("action"),
            "project": dig(webhook.payload, "project", "id"),
            "iid": mr.get("iid"),
            "head": dig(mr, "last_commit", "id"),
            "note": attrs.get("id") if self.event_name(webhook) == NOTE_HOOK else None,
            "updated_at": attrs.get("updated_at"),
        }

    # --- primitives -------------------------------------------------------

    @staticmethod
    def _mr_path(repository: Repository, pull_request: PullRequest) -> str:
        return f"/projects/{repository.id}/merge_requests/{pull_request.number}"

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
    ) -> CreatedComment:
        mr_path = self._mr_path(repository, pull_request)
        refs = (self.http.get(mr_path) or {}).get("diff_refs") or {}
        position = {
            "position_type": "text",
            "base_sha": refs.get("base_sha"),
            "start_sha": refs.get("start_sha"),
            "head_sha": refs.get("head_sha"),
            "old_path": path,
            "new_path": path,
            "new_line": line,
        }
        if start_line is not None and start_line != line:
            position["line_range"] = {
                "start": {"line_code": _line_code(path, start_line), "type": "new", "new_line": start_line},
                "end": {"line_code": _line_code(path, line), "type": "new", "new_line": line},
            }
        discussion = self.http.post(f"{mr_path}/discussions", json={"body": body, "position": position}) or {}
        notes = discussion.get("notes") or [{}]
        return CreatedComment(id=notes[0].get("id"), review_id=discussion.get("id"))

    def create_issue_comment(
        self,
        repository: Repository,
        pull_request: PullRequest,
        body: str,
        in_reply_to: str | int | None = None,
    ) -> CreatedComment:
        note = self.http.post(f"{self._mr_path(repository, pull_request)}/notes", json={"body": body}) or {}
        return CreatedComment(id=note.get("id"))

    def add_reaction(
        self,
        repository: Repository,
        pull_request: PullRequest,
        reaction: Reaction,
        comment_id: str | int | None = None,
        comment_kind: str | None = None,
    ) -> None:
        path = self._mr_path(repository, pull_request)
        if comment_id is not None:
            path = f"{path}/notes/{comment_id}"
        self.http.post(f"{path}/award_emoji", json={"name": _REACTIONS[reaction]})

    def get_commits(self, repository: Repository, pull_request: PullRequest) -> list[str]:
        commits = self.http.paginate(
            f"{self._mr_path(repository, pull_request)}/commits", params={"per_page": 100, "page": 1}
        )
        return [c["id"] for c in commits]

    def get_files(self, repository: Repository, pull_request: PullRequest) -> list[FileChange]:
        diffs = self.http.paginate(
            f"{self._mr_path(repository, pull_request)}/diffs", params={"per_page": 100, "page": 1}
        )
        files = []
        for d in diffs:
            if d.get("new_file"):
                status = "added"
            elif d.get("deleted_file"):
                status = "removed"
            elif d.get("renamed_file"):
                status = "renamed"
            else:
                status = "modified"
            patch = d.get("diff") or ""
            files.append(
                FileChange(
                    filename=d.get("new_path") or d.get("old_path"),
                    status=status,
                    additions=sum(1 for ln in patch.splitlines() if ln.startswith("+") and not ln.startswith("+++")),
                    deletions=sum(1 for ln in patch.splitlines() if ln.startswith("-") and not ln.startswith("---")),
                    extra={"patch": patch},
                )
            )
        return files
