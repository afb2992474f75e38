"""Pipeline context threaded through the review stages.

The context is a frozen dataclass. Stages never mutate it; they return a copy
built with ``evolve``/``with_status``/``with_metadata`` so each stage can be
unit-tested with a synthetic context and earlier decisions stay visible.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from reviewrelay_core.models import (
    CodeSuggestion,
    CommentResult,
    FileChange,
    OrganizationAndTeamData,
    PullRequest,
    Repository,
)


class PipelineStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({PipelineStatus.SKIPPED, PipelineStatus.FAILED})


@dataclass(frozen=True)
class StatusInfo:
    status: PipelineStatus = PipelineStatus.IN_PROGRESS
    message: str = ""
    reason_code: str | None = None


@dataclass(frozen=True)
class PipelineContext:
    organization_and_team_data: OrganizationAndTeamData | None
    repository: Repository | None
    pull_request: PullRequest | None
    platform_type: str
    code_review_config: Mapping[str, Any] = field(default_factory=dict)
    valid_suggestions: list[CodeSuggestion] = field(default_factory=list)
    discarded_suggestions: list[CodeSuggestion] = field(default_factory=list)
    status_info: StatusInfo = field(default_factory=StatusInfo)
    pipeline_metadata: Mapping[str, Any] = field(default_factory=dict)
    user_git_id: str | None = None
    trigger_comment_id: str | int | None = None
    trigger_comment_kind: str | None = None
    changed_files: list[FileChange] = field(default_factory=list)
    pr_commits: list[str] = field(default_factory=list)
    comment_results: list[CommentResult] = field(default_factory=list)
    errors: tuple[dict, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status_info.status in TERMINAL_STATUSES

    @property
    def pr_number(self) -> int | None:
        return self.pull_request.number if self.pull_request else None

    def evolve(self, **changes) -> PipelineContext:
        return dataclasses.replace(self, **changes)

    def with_status(self, status: PipelineStatus, message: str = "", reason_code: str | None = None) -> PipelineContext:
        return self.evolve(status_info=StatusInfo(status=status, message=message, reason_code=reason_code))

    def with_metadata(self, **flags) -> PipelineContext:
        return self.evolve(pipeline_metadata={**self.pipeline_metadata, **flags})

    def with_error(self, stage: str, error: BaseException) -> PipelineContext:
        return self.evolve(errors=self.errors + ({"stage": stage, "error": error},))

    def log_metadata(self) -> dict:
        """Identifiers worth attaching to every log line about this run."""
        org = self.organization_and_team_data
        return {
            "organization_id": org.organization_id if org else None,
            "repository": self.repository.name if self.repository else None,
            "pr_number": self.pr_number,
            "platform": self.platform_type,
        }
