from __future__ import annotations

import logging
import time
from typing import Callable

from reviewrelay_core.delivery import DEFAULT_RETRY_DELAY, CommentDeliveryEngine
from reviewrelay_core.errors import StructuralError
from reviewrelay_core.models import CodeSuggestion, DeliveryStatus, PriorityStatus
from reviewrelay_core.pipeline.context import PipelineContext
from reviewrelay_core.pipeline.executor import PipelineStage
from reviewrelay_core.suggestions import FallbackPool, extract_repriorized, sort_and_prioritize

logger = logging.getLogger(__name__)


class CreateFileCommentsStage(PipelineStage):
    """Prioritize the collected suggestions, post them, and persist the outcome."""

    stage_name = "CreateFileCommentsStage"

    def __init__(
        self,
        adapter,
        sink=None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapter = adapter
        self.sink = sink
        self.retry_delay = retry_delay
        self.sleep = sleep

    def execute_stage(self, context: PipelineContext) -> PipelineContext:
        if context.organization_and_team_data is None or context.pull_request is None or context.repository is None:
            raise StructuralError("organization, repository and pull request are required to create comments")

        if not context.valid_suggestions:
            logger.info("%s: no valid suggestions | %s", self.stage_name, context.log_metadata())
            self._save(context, [], list(context.discarded_suggestions))
            return context.with_metadata(comments_sent=0)

        max_suggestions = (context.code_review_config or {}).get("max_suggestions")
        prioritized = sort_and_prioritize(context.valid_suggestions, context.discarded_suggestions, max_suggestions)
        pool = FallbackPool.from_discarded(prioritized.all_discarded)

        # Related cluster members are covered by their parent's comment.
        to_post = [s for s in prioritized.kept if not s.is_related_cluster_member]

        engine = CommentDeliveryEngine(
            self.adapter,
            retry_delay=self.retry_delay,
            sleep=self.sleep,
            language=(context.code_review_config or {}).get("language"),
        )
        results = engine.create_line_comments(context.repository, context.pull_request, to_post, pool)

        for result in results:
            suggestion = result.suggestion
            suggestion.delivery_status = result.delivery_status
            if result.feedback is not None:
                suggestion.comment_id = result.feedback.comment_id
            if result.delivery_status == DeliveryStatus.SENT and suggestion.priority_status != PriorityStatus.REPRIORIZED:
                suggestion.priority_status = PriorityStatus.SENT

        delivered_fallbacks, still_discarded = extract_repriorized(results, prioritized.all_discarded)
        sent: list[CodeSuggestion] = [*prioritized.kept, *delivered_fallbacks]
        self._save(context, sent, still_discarded)

        sent_count = sum(1 for r in results if r.delivery_status == DeliveryStatus.SENT)
        logger.info(
            "%s: %d of %d comment(s) posted | %s", self.stage_name, sent_count, len(results), context.log_metadata()
        )
        return context.evolve(
            valid_suggestions=sent,
            discarded_suggestions=still_discarded,
            comment_results=results,
        ).with_metadata(comments_sent=sent_count)

    def _save(self, context: PipelineContext, sent: list[CodeSuggestion], discarded: list[CodeSuggestion]) -> None:
        if self.sink is None:
            return
        try:
            self.sink.aggregate_and_save(
                context.pull_request,
                context.repository,
                context.changed_files,
                sent,
                discarded,
                context.platform_type,
                context.organization_and_team_data,
                context.pr_commits,
            )
        except Exception as e:
            # Never abort the review because persistence failed.
            logger.warning("%s: failed to save suggestions: %s | %s", self.stage_name, e, context.log_metadata())
