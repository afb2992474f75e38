from __future__ import annotations

import logging

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

# Forgejo and Gitea send their own header; older installs still send the GitHub/Gogs ones.
_EVENT_HEADERS = ("X-Forgejo-Event", "X-Gitea-Event", "X-GitHub-Event", "X-Gogs-Event")
_REACTIONS = {Reaction.SKIPPED: "-1", Reaction.NO_LICENSE: "-1"}


def _user_id(user: dict | None) -> str | None:
    if not user:
        return None
    return user.get("login") or user.get("username") or (str(user["id"]) if user.get("id") is not None else None)


class ForgejoAdapter(PlatformAdapter):
    platform = PlatformType.FORGEJO
    event_header = "X-Forgejo-Event"
    supported_events = {
        "pull_request": frozenset({"opened", "synchronize", "closed", "reopened"}),
        "issue_comment": frozenset({"created"}),
        "pull_request_review_comment": frozenset({"created"}),
    }
    comment_events = frozenset({"issue_comment", "pull_request_review_comment"})

    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://codeberg.org/api/v1",
        timeout: float = 30,
        http: PlatformHttpClient | None = None,
    ):
        self.http = http or PlatformHttpClient(
            base_url, headers={"Authorization": f"token {token}"} if token else None, timeout=timeout
        )

    # --- webhook side -----------------------------------------------------

    def event_name(self, webhook: WebhookRequest) -> str | None:
        for header in _EVENT_HEADERS:
            value = webhook.header(header)
            if value:
                return value
        return None

    def action(self, webhook: WebhookRequest) -> str:
        action = webhook.payload.get("action") or ""
        return "synchronize" if action == "synchronized" else action

    def is_deleted_comment(self, webhook: WebhookRequest) -> bool:
        return self.action(webhook) == "deleted"

    def can_handle(self, webhook: WebhookRequest) -> bool:
        if not super().can_handle(webhook):
            return False
        if self.event_name(webhook) == "issue_comment":
            issue = webhook.payload.get("issue") or {}
            return bool(issue.get("pull_request") or webhook.payload.get("is_pull"))
        return True

    def normalize(self, webhook: WebhookRequest) -> CanonicalEvent:
        payload = webhook.payload
        repo = payload.get("repository") or {}
        repository = None
        if repo.get("id") is not None:
            repository = Repository(
                id=str(repo["id"]),
                name=repo.get("name", ""),
                full_name=repo.get("full_name"),
                language=repo.get("language") or None,
            )

        pr = payload.get("pull_request") or payload.get("issue") or {}
        pull_request = None
        if pr.get("number") is not None:
            pull_request = PullRequest(
                number=int(pr["number"]),
                state="merged" if pr.get("merged") else pr.get("state", "open"),
                locked=bool(pr.get("is_locked")),
                is_draft=bool(pr.get("draft")),
                head_sha=dig(pr, "head", "sha"),
                author_id=_user_id(pr.get("user")),
                title=pr.get("title") or "",
                base_ref=dig(pr, "base", "ref"),
            )

        comment = None
        event = self.event_name(webhook) or ""
        if event in self.comment_events and payload.get("comment"):
            raw = payload["comment"]
            comment = PlatformComment(
                id=raw.get("id"), body=raw.get("body") or "", author_id=_user_id(raw.get("user")), kind=event
            )

        return CanonicalEvent(
            platform=self.platform.value,
            event=event,
            action=self.action(webhook),
            repository=repository,
            pull_request=pull_request,
            comment=comment,
            trigger_comment_id=comment.id if comment else None,
            trigger_comment_kind=comment.kind if comment else None,
        )

    def dedup_fields(self, webhook: WebhookRequest) -> dict:
        payload = webhook.payload
        pr = payload.get("pull_request") or payload.get("issue") or {}
        return {
            "event": self.event_name(webhook),
            "action": payload.get("action"),
            "repository": dig(payload, "repository", "id"),
            "pr": pr.get("number"),
            "head": dig(pr, "head", "sha"),
            "comment": dig(payload, "comment", "id"),
            "updated_at": pr.get("updated_at"),
        }

    # --- primitives -------------------------------------------------------

    @staticmethod
    def _repo_path(repository: Repository) -> str:
        return f"/repos/{repository.full_name or repository.name}"

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
        # Forgejo review comments anchor to a single line only.
        review = self.http.post(
            f"{self._repo_path(repository)}/pulls/{pull_request.number}/reviews",
            json={
                "body": "",
                "event": "COMMENT",
                "commit_id": pull_request.head_sha,
                "comments": [{"path": path, "body": body, "new_position": line}],
            },
        ) or {}
        return CreatedComment(id=review.get("id"), review_id=review.get("id"))

    def create_issue_comment(
        self,
        repository: Repository,
        pull_request: PullRequest,
        body: str,
        in_reply_to: str | int | None = None,
    ) -> CreatedComment:
        created = self.http.post(
            f"{self._repo_path(repository)}/issues/{pull_request.number}/comments", json={"body": body}
        )
        return CreatedComment(id=(created or {}).get("id"))

    def add_reaction(
        self,
        repository: Repository,
        pull_request: PullRequest,
        reaction: Reaction,
        comment_id: str | int | None = None,
        comment_kind: str | None = None,
    ) -> None:
        if comment_id is not None:
            path = f"{self._repo_path(repository)}/issues/comments/{comment_id}/reactions"
        else:
            path = f"{self._repo_path(repository)}/issues/{pull_request.number}/reactions"
        self.http.post(path, json={"content": _REACTIONS[reaction]})

    def get_commits(self, repository: Repository, pull_request: PullRequest) -> list[str]:
        commits = self.http.paginate(
            f"{self._repo_path(repository)}/pulls/{pull_request.number}/commits", params={"limit": 50, "page": 1}
        )
        return [c["sha"] for c in commits]

    def get_files(self, repository: Repository, pull_request: PullRequest) -> list[FileChange]:
        files = self.http.paginate(
            f"{self._repo_path(repository)}/pulls/{pull_request.number}/files", params={"limit": 50, "page": 1}
        )
        return [
            FileChange(
                filename=f["filename"],
                status=f.get("status", "modified"),
                additions=f.get("additions", 0),
                deletions=f.get("deletions", 0),
            )
            for f in files
        ]
