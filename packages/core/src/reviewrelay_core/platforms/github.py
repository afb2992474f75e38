from __future__ import annotations

import logging

from github import Auth, Github

from reviewrelay_core.models import (
    CanonicalEvent,
    CreatedComment,
    FileChange,
    PlatformComment,
    PullRequest,
    Repository,
)
from reviewrelay_core.platforms.base import (
    PlatformAdapter,
    PlatformType,
    Reaction,
    WebhookRequest,
    dig,
    translate_errors,
)

logger = logging.getLogger(__name__)

_REACTIONS = {Reaction.SKIPPED: "-1", Reaction.NO_LICENSE: "-1"}


def _user_id(user: dict | None) -> str | None:
    if not user:
        return None
    return user.get("login") or (str(user["id"]) if user.get("id") is not None else None)


class GitHubAdapter(PlatformAdapter):
    platform = PlatformType.GITHUB
    event_header = "X-GitHub-Event"
    supported_events = {
        "pull_request": frozenset({"opened", "synchronize", "reopened", "closed", "ready_for_review"}),
        "issue_comment": frozenset({"created"}),
        "pull_request_review_comment": frozenset({"created"}),
    }
    comment_events = frozenset({"issue_comment", "pull_request_review_comment"})

    def __init__(self, token: str | None = None, base_url: str | None = None, timeout: float = 30, client=None):
        if client is not None:
            self._github = client
        else:
            kwargs = {"timeout": int(timeout)}
            if base_url:
                kwargs["base_url"] = base_url
            self._github = Github(auth=Auth.Token(token), **kwargs) if token else Github(**kwargs)

    # --- webhook side -----------------------------------------------------

    def event_name(self, webhook: WebhookRequest) -> str | None:
        return webhook.header(self.event_header)

    def action(self, webhook: WebhookRequest) -> str:
        return webhook.payload.get("action") or ""

    def is_deleted_comment(self, webhook: WebhookRequest) -> bool:
        return self.action(webhook) == "deleted"

    def can_handle(self, webhook: WebhookRequest) -> bool:
        if not super().can_handle(webhook):
            return False
        # Issue comments fire for plain issues too.
        if self.event_name(webhook) == "issue_comment":
            return bool(dig(webhook.payload, "issue", "pull_request"))
        return True

    def normalize(self, webhook: WebhookRequest) -> CanonicalEvent:
        payload = webhook.payload
        event = self.event_name(webhook) or ""
        repo = payload.get("repository") or {}
        repository = None
        if repo.get("id") is not None:
            repository = Repository(
                id=str(repo["id"]),
                name=repo.get("name", ""),
                full_name=repo.get("full_name"),
                language=repo.get("language"),
            )

        pr = payload.get("pull_request") or payload.get("issue") or {}
        pull_request = None
        if pr.get("number") is not None:
            state = "merged" if pr.get("merged") or pr.get("merged_at") else pr.get("state", "open")
            pull_request = PullRequest(
                number=int(pr["number"]),
                state=state,
                locked=bool(pr.get("locked")),
                is_draft=bool(pr.get("draft")),
                head_sha=dig(pr, "head", "sha"),
                author_id=_user_id(pr.get("user")),
                title=pr.get("title") or "",
                base_ref=dig(pr, "base", "ref"),
            )

        comment = None
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

    def _pull(self, repository: Repository, pull_request: PullRequest):
        repo = self._github.get_repo(repository.full_name or repository.name)
        return repo, repo.get_pull(pull_request.number)

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
        with translate_errors():
            repo, pr = self._pull(repository, pull_request)
            commit = repo.get_commit(pull_request.head_sha or pr.head.sha)
            kwargs = {"line": line, "side": side}
            # GitHub rejects a range whose start equals its end.
            if start_line is not None and start_line != line:
                kwargs["start_line"] = start_line
                kwargs["start_side"] = side
            created = pr.create_review_comment(body, commit, path, **kwargs)
        return CreatedComment(id=created.id, review_id=getattr(created, "pull_request_review_id", None))

    def create_issue_comment(
        self,
        repository: Repository,
        pull_request: PullRequest,
        body: str,
        in_reply_to: str | int | None = None,
    ) -> CreatedComment:
        with translate_errors():
            _, pr = self._pull(repository, pull_request)
            created = pr.create_issue_comment(body)
        return CreatedComment(id=created.id)

    def add_reaction(
        self,
        repository: Repository,
        pull_request: PullRequest,
        reaction: Reaction,
        comment_id: str | int | None = None,
        comment_kind: str | None = None,
    ) -> None:
        content = _REACTIONS[reaction]
        with translate_errors():
            _, pr = self._pull(repository, pull_request)
            if comment_id is not None and comment_kind == "pull_request_review_comment":
                pr.get_review_comment(int(comment_id)).create_reaction(content)
            elif comment_id is not None:
                pr.get_issue_comment(int(comment_id)).create_reaction(content)
            else:
                pr.as_issue().create_reaction(content)

    def get_commits(self, repository: Repository, pull_request: PullRequest) -> list[str]:
        with translate_errors():
            _, pr = self._pull(repository, pull_request)
            return [c.sha for c in pr.get_commits()]

    def get_files(self, repository: Repository, pull_request: PullRequest) -> list[FileChange]:
        with translate_errors():
            _, pr = self._pull(repository, pull_request)
            return [
                FileChange(
                    filename=f.filename,
                    status=f.status,
                    additions=f.additions,
                    deletions=f.deletions,
                    extra={"patch": f.patch},
                )
                for f in pr.get_files()
            ]
