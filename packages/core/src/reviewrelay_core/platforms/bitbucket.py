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

_STATES = {"OPEN": "open", "MERGED": "merged", "DECLINED": "closed", "SUPERSEDED": "closed"}
_ACTIONS = {
    "pullrequest:created": "opened",
    "pullrequest:updated": "updated",
    "pullrequest:fulfilled": "closed",
    "pullrequest:rejected": "closed",
    "pullrequest:comment_created": "created",
    "pullrequest:comment_deleted": "deleted",
}


def _user_id(user: dict | None) -> str | None:
    if not user:
        return None
    return user.get("nickname") or user.get("account_id") or user.get("uuid")


class BitbucketAdapter(PlatformAdapter):
    platform = PlatformType.BITBUCKET
    event_header = "X-Event-Key"
    supports_reactions = False
    supported_events = {
        "pullrequest:created": frozenset({"opened"}),
        "pullrequest:updated": frozenset({"updated"}),
        "pullrequest:fulfilled": frozenset({"closed"}),
        "pullrequest:rejected": frozenset({"closed"}),
        "pullrequest:comment_created": frozenset({"created"}),
    }
    comment_events = frozenset({"pullrequest:comment_created"})

    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://api.bitbucket.org/2.0",
        timeout: float = 30,
        http: PlatformHttpClient | None = None,
    ):
        self.http = http or PlatformHttpClient(
            base_url, headers={"Authorization": f"Bearer {token}"} if token else None, timeout=timeout
        )

    # --- webhook side -----------------------------------------------------

    def event_name(self, webhook: WebhookRequest) -> str | None:
        return webhook.header(self.event_header)

    def action(self, webhook: WebhookRequest) -> str:
        return _ACTIONS.get(self.event_name(webhook) or "", "")

    def is_deleted_comment(self, webhook: WebhookRequest) -> bool:
        return bool(dig(webhook.payload, "comment", "deleted"))

    def normalize(self, webhook: WebhookRequest) -> CanonicalEvent:
        payload = webhook.payload
        repo = payload.get("repository") or {}
        repository = None
        if repo.get("uuid") or repo.get("full_name"):
            repository = Repository(
                id=repo.get("uuid") or repo["full_name"],
                name=repo.get("name", ""),
                full_name=repo.get("full_name"),
                language=repo.get("language") or None,
            )

        pr = payload.get("pullrequest") or {}
        pull_request = None
        if pr.get("id") is not None:
            pull_request = PullRequest(
                number=int(pr["id"]),
                state=_STATES.get(str(pr.get("state", "OPEN")).upper(), "open"),
                is_draft=bool(pr.get("draft")),
                head_sha=dig(pr, "source", "commit", "hash"),
                author_id=_user_id(pr.get("author")),
                title=pr.get("title") or "",
                base_ref=dig(pr, "destination", "branch", "name"),
            )

        comment = None
        if self.event_name(webhook) in self.comment_events and payload.get("comment"):
            raw = payload["comment"]
            comment = PlatformComment(
                id=raw.get("id"), body=dig(raw, "content", "raw", default=""), author_id=_user_id(raw.get("user"))
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
        pr = webhook.payload.get("pullrequest") or {}
        return {
            "event": self.event_name(webhook),
            "repository": dig(webhook.payload, "repository", "uuid"),
            "pr": pr.get("id"),
            "head": dig(pr, "source", "commit", "hash"),
            "comment": dig(webhook.payload, "comment", "id"),
            "updated_on": pr.get("updated_on"),
        }

    # --- primitives -------------------------------------------------------

    @staticmethod
    def _pr_path(repository: Repository, pull_request: PullRequest) -> str:
        return f"/repositories/{repository.full_name or repository.name}/pullrequests/{pull_request.number}"

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
        inline = {"path": path, "to": line}
        if start_line is not None and start_line != line:
            inline["start_to"] = start_line
        created = self.http.post(
            f"{self._pr_path(repository, pull_request)}/comments",
            json={"content": {"raw": body}, "inline": inline},
        )
        return CreatedComment(id=(created or {}).get("id"))

    def create_issue_comment(
        self,
        repository: Repository,
        pull_request: PullRequest,
        body: str,
        in_reply_to: str | int | None = None,
    ) -> CreatedComment:
        data: dict = {"content": {"raw": body}}
        if in_reply_to is not None:
            data["parent"] = {"id": int(in_reply_to)}
        created = self.http.post(f"{self._pr_path(repository, pull_request)}/comments", json=data)
        return CreatedComment(id=(created or {}).get("id"))

    def add_reaction(
        self,
        repository: Repository,
        pull_request: PullRequest,
        reaction: Reaction,
        comment_id: str | int | None = None,
        comment_kind: str | None = None,
    ) -> None:
        # No reaction API: reply to the triggering comment, or comment on the PR.
        self._reaction_as_comment(repository, pull_request, reaction, comment_id)

    def get_commits(self, repository: Repository, pull_request: PullRequest) -> list[str]:
        commits = self.http.paginate(f"{self._pr_path(repository, pull_request)}/commits", items_key="values")
        return [c["hash"] for c in commits]

    def get_files(self, repository: Repository, pull_request: PullRequest) -> list[FileChange]:
        stats = self.http.paginate(f"{self._pr_path(repository, pull_request)}/diffstat", items_key="values")
        return [
            FileChange(
                filename=dig(s, "new", "path") or dig(s, "old", "path"),
                status=s.get("status", "modified"),
                additions=s.get("lines_added", 0),
                deletions=s.get("lines_removed", 0),
            )
            for s in stats
        ]
