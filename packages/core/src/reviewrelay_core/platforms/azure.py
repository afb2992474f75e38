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

API_VERSION = "7.1"

PR_CREATED = "git.pullrequest.created"
PR_UPDATED = "git.pullrequest.updated"
PR_MERGE_ATTEMPTED = "git.pullrequest.merge.attempted"
PR_COMMENT = "ms.vss-code.git-pullrequest-comment-event"

_STATES = {"active": "open", "completed": "merged", "abandoned": "closed"}
_CHANGE_TYPES = {"add": "added", "delete": "removed", "rename": "renamed", "edit": "modified"}


def _user_id(user: dict | None) -> str | None:
    if not user:
        return None
    return user.get("uniqueName") or user.get("id")


class AzureReposAdapter(PlatformAdapter):
    platform = PlatformType.AZURE_REPOS
    supports_reactions = False
    supported_events = {
        PR_CREATED: frozenset({"opened"}),
        PR_UPDATED: frozenset({"updated", "closed"}),
        PR_MERGE_ATTEMPTED: frozenset({"closed", "updated"}),
        PR_COMMENT: frozenset({"created"}),
    }
    comment_events = frozenset({PR_COMMENT})

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float = 30,
        http: PlatformHttpClient | None = None,
    ):
        if http is None and not base_url:
            raise ValueError("Azure Repos needs platform_urls.azure_repos, e.g. https://dev.azure.com/<org>")
        self.http = http or PlatformHttpClient(
            base_url, auth=("", token) if token else None, timeout=timeout, params={"api-version": API_VERSION}
        )

    # --- webhook side -----------------------------------------------------

    def event_name(self, webhook: WebhookRequest) -> str | None:
        return webhook.payload.get("eventType")

    def _pull_request_resource(self, webhook: WebhookRequest) -> dict:
        resource = webhook.payload.get("resource") or {}
        if self.event_name(webhook) == PR_COMMENT:
            return resource.get("pullRequest") or {}
        return resource

    def action(self, webhook: WebhookRequest) -> str:
        event = self.event_name(webhook)
        if event == PR_COMMENT:
            return "deleted" if self.is_deleted_comment(webhook) else "created"
        if event == PR_CREATED:
            return "opened"
        status = self._pull_request_resource(webhook).get("status")
        return "closed" if status in ("completed", "abandoned") else "updated"

    def is_deleted_comment(self, webhook: WebhookRequest) -> bool:
        return bool(dig(webhook.payload, "resource", "comment", "isDeleted"))

    def normalize(self, webhook: WebhookRequest) -> CanonicalEvent:
        resource = self._pull_request_resource(webhook)
        repo = resource.get("repository") or {}
        repository = None
        if repo.get("id"):
            repository = Repository(
                id=str(repo["id"]),
                name=repo.get("name", ""),
                full_name=repo.get("name"),
                project=dig(repo, "project", "name"),
            )

        pull_request = None
        if resource.get("pullRequestId") is not None:
            pull_request = PullRequest(
                number=int(resource["pullRequestId"]),
                state=_STATES.get(resource.get("status", "active"), "open"),
                is_draft=resource.get("isDraft") is True,
                head_sha=dig(resource, "lastMergeSourceCommit", "commitId"),
                author_id=_user_id(resource.get("createdBy")),
                title=resource.get("title") or "",
                base_ref=(resource.get("targetRefName") or "").removeprefix("refs/heads/") or None,
            )

        comment = None
        if self.event_name(webhook) == PR_COMMENT:
            raw = dig(webhook.payload, "resource", "comment", default={})
            comment = PlatformComment(
                id=raw.get("id"), body=raw.get("content") or "", author_id=_user_id(raw.get("author"))
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
        payload = webhook.payload
        return {
            "prId": self._pull_request_resource(webhook).get("pullRequestId"),
            "eventType": payload.get("eventType"),
            "createdDate": payload.get("createdDate"),
            "id": payload.get("id"),
        }

    # --- primitives -------------------------------------------------------

    @staticmethod
    def _pr_path(repository: Repository, pull_request: PullRequest) -> str:
        project = f"/{repository.project}" if repository.project else ""
        return f"{project}/_apis/git/repositories/{repository.id}/pullRequests/{pull_request.number}"

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
        start = start_line if start_line is not None else line
        thread = self.http.post(
            f"{self._pr_path(repository, pull_request)}/threads",
            json={
                "comments": [{"parentCommentId": 0, "content": body, "commentType": 1}],
                "status": 1,
                "threadContext": {
                    "filePath": path if path.startswith("/") else f"/{path}",
                    "rightFileStart": {"line": start, "offset": 1},
                    "rightFileEnd": {"line": line, "offset": 1},
                },
            },
        ) or {}
        comments = thread.get("comments") or [{}]
        return CreatedComment(id=comments[0].get("id"), review_id=thread.get("id"))

    def create_issue_comment(
        self,
        repository: Repository,
        pull_request: PullRequest,
        body: str,
        in_reply_to: str | int | None = None,
    ) -> CreatedComment:
        thread = self.http.post(
            f"{self._pr_path(repository, pull_request)}/threads",
            json={"comments": [{"parentCommentId": 0, "content": body, "commentType": 1}], "status": 1},
        ) or {}
        return CreatedComment(id=thread.get("id"), review_id=thread.get("id"))

    def add_reaction(
        self,
        repository: Repository,
        pull_request: PullRequest,
        reaction: Reaction,
        comment_id: str | int | None = None,
        comment_kind: str | None = None,
    ) -> None:
        self._reaction_as_comment(repository, pull_request, reaction)

    def get_commits(self, repository: Repository, pull_request: PullRequest) -> list[str]:
        data = self.http.get(f"{self._pr_path(repository, pull_request)}/commits") or {}
        return [c["commitId"] for c in data.get("value", [])]

    def get_files(self, repository: Repository, pull_request: PullRequest) -> list[FileChange]:
        pr_path = self._pr_path(repository, pull_request)
        iterations = (self.http.get(f"{pr_path}/iterations") or {}).get("value") or []
        if not iterations:
            return []
        latest = max(i["id"] for i in iterations)
        changes = (self.http.get(f"{pr_path}/iterations/{latest}/changes") or {}).get("changeEntries") or []
        return [
            FileChange(
                filename=dig(c, "item", "path", default="").lstrip("/"),
                status=_CHANGE_TYPES.get(str(c.get("changeType", "edit")).split(",")[0].strip(), "modified"),
            )
            for c in changes
        ]
