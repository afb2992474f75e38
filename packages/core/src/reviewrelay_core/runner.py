"""Turning a canonical event into a pipeline run."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Mapping

from reviewrelay_core.config import resolve_code_review_config
from reviewrelay_core.delivery import DEFAULT_RETRY_DELAY
from reviewrelay_core.licensing import build_license_services
from reviewrelay_core.models import CanonicalEvent, OrganizationAndTeamData
from reviewrelay_core.pipeline.context import PipelineContext
from reviewrelay_core.pipeline.executor import PipelineExecutor, PipelineObserver
from reviewrelay_core.pipeline.stages.collect import CollectSuggestionsStage
from reviewrelay_core.pipeline.stages.comments import CreateFileCommentsStage
from reviewrelay_core.pipeline.stages.feedback import StatusFeedbackStage
from reviewrelay_core.pipeline.stages.validation import ValidatePrerequisitesStage
from reviewrelay_core.platforms.base import PlatformAdapter

logger = logging.getLogger(__name__)


def build_review_pipeline(
    adapter: PlatformAdapter,
    config: dict,
    permission_validator,
    auto_assigner=None,
    suggestion_provider=None,
    sink=None,
    pull_requests=None,
    observers: Iterable[PipelineObserver] = (),
    sleep: Callable[[float], None] = time.sleep,
) -> PipelineExecutor:
    stages = [
        ValidatePrerequisitesStage(
            adapter,
            permission_validator,
            auto_assigner=auto_assigner,
            pull_requests=pull_requests,
            ignored_users=config.get("ignored_users"),
            allowed_users=config.get("allowed_users"),
        ),
        CollectSuggestionsStage(suggestion_provider),
        CreateFileCommentsStage(
            adapter,
            sink=sink,
            retry_delay=config.get("transient_retry_delay", DEFAULT_RETRY_DELAY),
            sleep=sleep,
        ),
    ]
    return PipelineExecutor(
        stages,
        finalizer=StatusFeedbackStage(adapter),
        observers=observers,
        timeout=config.get("pipeline_timeout"),
    )


class ReviewRunner:
    def __init__(
        self,
        adapters: Mapping[str, PlatformAdapter],
        config: dict,
        suggestion_provider=None,
        sink=None,
        pull_requests=None,
        permission_validator=None,
        auto_assigner=None,
        observers: Iterable[PipelineObserver] = (),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapters = dict(adapters)
        self.config = config
        self.suggestion_provider = suggestion_provider
        self.sink = sink
        self.pull_requests = pull_requests
        if permission_validator is None:
            permission_validator, default_assigner = build_license_services(config)
            auto_assigner = auto_assigner or default_assigner
        self.permission_validator = permission_validator
        self.auto_assigner = auto_assigner
        self.observers = list(observers)
        self.sleep = sleep

    def build_context(self, event: CanonicalEvent, adapter: PlatformAdapter) -> PipelineContext:
        repository, pull_request = event.repository, event.pull_request
        commits, files = [], []
        if repository is not None and pull_request is not None:
            commits = self._safe_read("commits", adapter.get_commits, repository, pull_request)
            files = self._safe_read("files", adapter.get_files, repository, pull_request)

        return PipelineContext(
            organization_and_team_data=OrganizationAndTeamData(
                organization_id=str(self.config.get("organization_id") or "default"),
                team_id=self.config.get("team_id"),
            ),
            repository=repository,
            pull_request=pull_request,
            platform_type=event.platform,
            code_review_config=resolve_code_review_config(self.config, repository.id if repository else None),
            pipeline_metadata={"origin": event.origin, "event": event.event, "action": event.action},
            user_git_id=pull_request.author_id if pull_request else None,
            trigger_comment_id=event.trigger_comment_id,
            trigger_comment_kind=event.trigger_comment_kind,
            changed_files=files,
            pr_commits=commits,
        )

    def run(self, event: CanonicalEvent) -> PipelineContext:
        adapter = self.adapters[event.platform]
        context = self.build_context(event, adapter)
        executor = build_review_pipeline(
            adapter,
            self.config,
            self.permission_validator,
            auto_assigner=self.auto_assigner,
            suggestion_provider=self.suggestion_provider,
            sink=self.sink,
            pull_requests=self.pull_requests,
            observers=self.observers,
            sleep=self.sleep,
        )
        return executor.execute(context)

    @staticmethod
    def _safe_read(what: str, read, repository, pull_request) -> list:
        try:
            return list(read(repository, pull_request))
        except Exception as e:
            logger.warning("Could not load %s for PR #%s in %s: %s", what, pull_request.number, repository.name, e)
            return []
