"""Domain types shared by the pipeline, the delivery engine and the webhook layer.

Kept free of any platform SDK so every stage can be exercised with plain
dataclasses in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

SEVERITY_TIERS = ("critical", "high", "medium", "low")


class PriorityStatus(str, Enum):
    PRIORITIZED = "prioritized"
    SENT = "sent"
    DISCARDED_BY_QUANTITY = "discarded_by_quantity"
    DISCARDED_BY_SAFEGUARD = "discarded_by_safeguard"
    REPRIORIZED = "repriorized"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    REPLACED = "replaced"
    FAILED_LINES_MISMATCH = "failed_lines_mismatch"


class ClusteringType(str, Enum):
    PARENT = "parent"
    RELATED = "related"


@dataclass
class OrganizationAndTeamData:
    organization_id: str
    team_id: str | None = None


@dataclass
class Repository:
    id: str
    name: str
    full_name: str | None = None
    project: str | None = None  # Azure DevOps project; unused elsewhere
    language: str | None = None


@dataclass
class PullRequest:
    number: int
    state: str = "open"  # "open" | "closed" | "merged"
    locked: bool = False
    is_draft: bool = False
    head_sha: str | None = None
    author_id: str | None = None
    title: str = ""
    base_ref: str | None = None


@dataclass
class PlatformComment:
    id: str | int | None
    body: str
    author_id: str | None = None
    kind: str | None = None  # platform event the comment arrived with


@dataclass
class CanonicalEvent:
    """One webhook delivery, reduced to the fields the dispatcher reasons about."""

    platform: str
    event: str
    action: str
    repository: Repository | None
    pull_request: PullRequest | None
    comment: PlatformComment | None = None
    origin: str = "webhook"  # "webhook" | "command"
    trigger_comment_id: str | int | None = None
    trigger_comment_kind: str | None = None

    @property
    def is_comment(self) -> bool:
        return self.comment is not None


@dataclass
class CodeSuggestion:
    id: str
    relevant_file: str
    relevant_lines_start: int | None
    relevant_lines_end: int | None
    suggestion_content: str
    improved_code: str = ""
    severity: str = "low"
    label: str = ""
    priority_status: PriorityStatus | None = None
    clustering_information: dict[str, Any] | None = None
    delivery_status: DeliveryStatus | str | None = None
    comment_id: str | int | None = None

    @property
    def severity_tier(self) -> str | None:
        tier = (self.severity or "").lower()
        return tier if tier in SEVERITY_TIERS else None

    @property
    def is_related_cluster_member(self) -> bool:
        info = self.clustering_information or {}
        return info.get("type") == ClusteringType.RELATED.value

    @classmethod
    def from_dict(cls, data: dict) -> CodeSuggestion:
        """Build a suggestion from the camelCase or snake_case dict a generator emits."""

        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        status = pick("priority_status", "priorityStatus")
        return cls(
            id=str(pick("id", default="")),
            relevant_file=pick("relevant_file", "relevantFile", default=""),
            relevant_lines_start=pick("relevant_lines_start", "relevantLinesStart"),
            relevant_lines_end=pick("relevant_lines_end", "relevantLinesEnd"),
            suggestion_content=pick("suggestion_content", "suggestionContent", default=""),
            improved_code=pick("improved_code", "improvedCode", default=""),
            severity=str(pick("severity", default="low")).lower(),
            label=pick("label", default=""),
            priority_status=PriorityStatus(status) if status else None,
            clustering_information=pick("clustering_information", "clusteringInformation"),
        )


@dataclass
class LineComment:
    """A review comment ready to be posted; geometry already computed."""

    path: str
    body: str
    start_line: int | None
    line: int | None
    suggestion: CodeSuggestion
    side: str = "RIGHT"


@dataclass
class CreatedComment:
    id: str | int | None
    review_id: str | int | None = None


@dataclass
class CodeReviewFeedbackData:
    comment_id: str | int | None
    review_id: str | int | None
    suggestion_id: str


@dataclass
class CommentResult:
    path: str
    body: str
    start_line: int | None
    line: int | None
    delivery_status: DeliveryStatus | str
    suggestion: CodeSuggestion
    feedback: CodeReviewFeedbackData | None = None


@dataclass
class FileChange:
    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    extra: dict[str, Any] = field(default_factory=dict)
