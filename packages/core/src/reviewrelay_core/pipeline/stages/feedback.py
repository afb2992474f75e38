from __future__ import annotations

import logging

from reviewrelay_core.pipeline.context import PipelineContext, PipelineStatus
from reviewrelay_core.pipeline.executor import PipelineStage
from reviewrelay_core.platforms.base import Reaction

logger = logging.getLogger(__name__)


class StatusFeedbackStage(PipelineStage):
    """Finalizer: tell the PR author why a run was skipped, at most once."""

    stage_name = "StatusFeedbackStage"

    def __init__(self, adapter):
        self.adapter = adapter

    def execute_stage(self, context: PipelineContext) -> PipelineContext:
        metadata = context.pipeline_metadata
        if context.status_info.status != PipelineStatus.SKIPPED:
            return context
        if not metadata.get("show_status_feedback", True) or metadata.get("notification_handled"):
            return context
        if context.repository is None or context.pull_request is None:
            return context

        try:
            self.adapter.add_reaction(
                context.repository,
                context.pull_request,
                Reaction.SKIPPED,
                comment_id=context.trigger_comment_id,
                comment_kind=context.trigger_comment_kind,
            )
        except Exception as e:
            logger.error("%s: failed to post skip feedback: %s | %s", self.stage_name, e, context.log_metadata())
            return context
        return context.with_metadata(notification_handled=True)
