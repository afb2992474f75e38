"""Posting review comments with line-geometry retries and fallback substitution.

Each suggestion goes through a three-step line-geometry sequence:

    ORIGINAL        the range computed from the suggestion
    END_COLLAPSED   both ends on the original end line
    START_COLLAPSED both ends on the original start line

Only "line not part of the diff" rejections move the sequence forward. A
transient failure (5xx, 429, dropped connection) retries the same geometry
once after ``retry_delay`` seconds. Auth, permission and not-found failures
stop immediately. Once the sequence is exhausted, same-severity suggestions
that were cut by the quantity cap are tried in rank order until one lands.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from reviewrelay_core.errors import (
    PlatformDefinitiveError,
    PlatformError,
    PlatformLineMismatchError,
    PlatformTransientError,
    classify_platform_error,
)
from reviewrelay_core.models import (
    CodeReviewFeedbackData,
    CodeSuggestion,
    CommentResult,
    CreatedComment,
    DeliveryStatus,
    LineComment,
    PullRequest,
    Repository,
)
from reviewrelay_core.suggestions import FallbackPool
from reviewrelay_core.webhooks.markers import REVIEW_MARKER, SUGGESTION_MARKER

logger = logging.getLogger(__name__)

MAX_COMMENT_SPAN = 15
DEFAULT_RETRY_DELAY = 0.5


def _is_single_or_oversized(suggestion: CodeSuggestion) -> bool:
    start, end = suggestion.relevant_lines_start, suggestion.relevant_lines_end
    if start is None or end is None or start == end:
        return True
    return start + MAX_COMMENT_SPAN <= end


def calculate_comment_start_line(suggestion: CodeSuggestion) -> int | None:
    """Multi-line start, or None for single-line and oversized ranges."""
    if _is_single_or_oversized(suggestion):
        return None
    return suggestion.relevant_lines_start


def calculate_comment_end_line(suggestion: CodeSuggestion) -> int | None:
    # Oversized ranges collapse onto their last line.
    return suggestion.relevant_lines_end if suggestion.relevant_lines_end is not None else suggestion.relevant_lines_start


def format_comment_body(suggestion: CodeSuggestion, language: str | None = None) -> str:
    lines = []
    header = f"**{suggestion.label}**" if suggestion.label else ""
    badge = f"severity: `{suggestion.severity}`"
    lines.append(f"{header} · {badge}" if header else badge)
    lines.append("")
    lines.append(suggestion.suggestion_content.strip())

    action = (suggestion.clustering_information or {}).get("action_statement")
    if action:
        lines.extend(["", f"_{action}_"])

    if suggestion.improved_code:
        lines.extend(["", f"```{(language or '').lower()}", suggestion.improved_code.rstrip("\n"), "```"])

    lines.extend(["", REVIEW_MARKER, SUGGESTION_MARKER.format(id=suggestion.id)])
    return "\n".join(lines)


def build_line_comment(suggestion: CodeSuggestion, language: str | None = None) -> LineComment:
    return LineComment(
        path=suggestion.relevant_file,
        body=format_comment_body(suggestion, language),
        start_line=calculate_comment_start_line(suggestion),
        line=calculate_comment_end_line(suggestion),
        suggestion=suggestion,
    )


class AttemptState(Enum):
    ORIGINAL = "original"
    END_COLLAPSED = "end_collapsed"
    START_COLLAPSED = "start_collapsed"
    EXHAUSTED = "exhausted"

    def geometry(self, comment: LineComment) -> tuple[int | None, int | None]:
        """(start_line, line) to send for this attempt."""
        if self is AttemptState.ORIGINAL:
            return comment.start_line, comment.line
        if self is AttemptState.END_COLLAPSED:
            return comment.line, comment.line
        if self is AttemptState.START_COLLAPSED:
            start = comment.suggestion.relevant_lines_start
            if start is None:
                start = comment.start_line if comment.start_line is not None else comment.line
            return start, start
        raise ValueError("no geometry once exhausted")

    def next(self) -> AttemptState:
        order = list(AttemptState)
        return order[min(order.index(self) + 1, len(order) - 1)]


@dataclass
class DeliveryOutcome:
    """Result of running one comment through the attempt sequence."""

    comment: LineComment
    start_line: int | None
    line: int | None
    created: CreatedComment | None = None
    error: PlatformError | None = None
    state: AttemptState = AttemptState.ORIGINAL

    @property
    def sent(self) -> bool:
        return self.created is not None

    @property
    def exhausted(self) -> bool:
        return self.state is AttemptState.EXHAUSTED


def _failure_status(outcome: DeliveryOutcome) -> DeliveryStatus:
    return DeliveryStatus.FAILED_LINES_MISMATCH if outcome.exhausted else DeliveryStatus.FAILED


class CommentDeliveryEngine:
    def __init__(
        self,
        adapter,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        language: str | None = None,
    ):
        self.adapter = adapter
        self.retry_delay = retry_delay
        self._sleep = sleep
        self.language = language

    def create_line_comments(
        self,
        repository: Repository,
        pull_request: PullRequest,
        suggestions: Iterable[CodeSuggestion],
        fallback_pool: FallbackPool | None = None,
    ) -> list[CommentResult]:
        """Post every suggestion, in order. Never raises for platform errors."""
        pool = fallback_pool or FallbackPool()
        language = self.language or repository.language
        results: list[CommentResult] = []

        for suggestion in suggestions:
            comment = build_line_comment(suggestion, language)
            outcome = self._deliver(repository, pull_request, comment)

            if outcome.sent:
                results.append(self._result(outcome, DeliveryStatus.SENT))
                continue
            if not outcome.exhausted:
                logger.warning(
                    "Comment for suggestion %s on %s failed: %s", suggestion.id, comment.path, outcome.error
                )
                results.append(self._result(outcome, DeliveryStatus.FAILED))
                continue

            results.extend(self._substitute(repository, pull_request, outcome, pool, language))

        return results

    def _substitute(
        self,
        repository: Repository,
        pull_request: PullRequest,
        original: DeliveryOutcome,
        pool: FallbackPool,
        language: str | None,
    ) -> list[CommentResult]:
        suggestion = original.comment.suggestion
        attempted: list[CommentResult] = []
        last = original

        for candidate in pool.candidates(suggestion.severity):
            # Marked before posting: a fallback is only ever tried once.
            pool.mark_repriorized(candidate)
            logger.info("Trying fallback %s in place of suggestion %s", candidate.id, suggestion.id)
            outcome = self._deliver(repository, pull_request, build_line_comment(candidate, language))

            if outcome.sent:
                replaced = self._result(original, DeliveryStatus.REPLACED)
                return [replaced, *attempted, self._result(outcome, DeliveryStatus.SENT)]

            attempted.append(self._result(outcome, _failure_status(outcome)))
            last = outcome
            if isinstance(outcome.error, PlatformDefinitiveError):
                break

        logger.warning(
            "Suggestion %s on %s could not be placed on the diff and no fallback landed",
            suggestion.id,
            original.comment.path,
        )
        # The slot carries the failure of the last attempt made for it.
        return [self._result(original, _failure_status(last)), *attempted]

    def _deliver(self, repository: Repository, pull_request: PullRequest, comment: LineComment) -> DeliveryOutcome:
        state = AttemptState.ORIGINAL
        last_error: PlatformError | None = None
        start_line, line = comment.start_line, comment.line

        while state is not AttemptState.EXHAUSTED:
            start_line, line = state.geometry(comment)
            try:
                created = self._post(repository, pull_request, comment, start_line, line)
                return DeliveryOutcome(comment, start_line, line, created=created, state=state)
            except PlatformLineMismatchError as e:
                logger.debug(
                    "Lines %s-%s of %s rejected (%s), next geometry", start_line, line, comment.path, state.value
                )
                last_error = e
                state = state.next()
            except PlatformError as e:
                return DeliveryOutcome(comment, start_line, line, error=e, state=state)

        return DeliveryOutcome(comment, start_line, line, error=last_error, state=state)

    def _post(
        self,
        repository: Repository,
        pull_request: PullRequest,
        comment: LineComment,
        start_line: int | None,
        line: int | None,
    ) -> CreatedComment:
        try:
            return self._call(repository, pull_request, comment, start_line, line)
        except PlatformTransientError as e:
            logger.info("Transient error posting to %s (%s), retrying in %ss", comment.path, e, self.retry_delay)
            self._sleep(self.retry_delay)
            return self._call(repository, pull_request, comment, start_line, line)

    def _call(self, repository, pull_request, comment, start_line, line) -> CreatedComment:
        try:
            return self.adapter.create_review_comment(
                repository,
                pull_request,
                path=comment.path,
                body=comment.body,
                start_line=start_line,
                line=line,
                side=comment.side,
            )
        except Exception as e:
            raise classify_platform_error(e) from e

    @staticmethod
    def _result(outcome: DeliveryOutcome, status) -> CommentResult:
        suggestion = outcome.comment.suggestion
        feedback = None
        if outcome.created is not None:
            feedback = CodeReviewFeedbackData(
                comment_id=outcome.created.id,
                review_id=outcome.created.review_id,
                suggestion_id=suggestion.id,
            )
        return CommentResult(
            path=outcome.comment.path,
            body=outcome.comment.body,
            start_line=outcome.start_line,
            line=outcome.line,
            delivery_status=status,
            suggestion=suggestion,
            feedback=feedback,
        )
