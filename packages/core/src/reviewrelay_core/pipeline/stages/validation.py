"""Gatekeeping before any review work is done."""

from __future__ import annotations

import logging

from reviewrelay_core.licensing import AutoAssignReason, PermissionVerdict, ValidationErrorType
from reviewrelay_core.pipeline import reasons
from reviewrelay_core.pipeline.context import PipelineContext, PipelineStatus
from reviewrelay_core.pipeline.executor import PipelineStage
from reviewrelay_core.platforms.base import Reaction
from reviewrelay_core.webhooks.markers import REVIEW_MARKER

logger = logging.getLogger(__name__)

_SKIP_REASON = {
    ValidationErrorType.BYOK_REQUIRED: reasons.BYOK_MISSING,
    ValidationErrorType.PLAN_LIMIT_EXCEEDED: reasons.PLAN_LIMIT,
    ValidationErrorType.USER_NOT_LICENSED: reasons.USER_NO_LICENSE,
    ValidationErrorType.INVALID_LICENSE: reasons.NO_LICENSE,
}

NO_SUBSCRIPTION_MESSAGE = (
    "## No active subscription\n\n"
    "Reviews are paused for this organization until a plan is active again.\n\n"
    f"{REVIEW_MARKER}"
)
USER_NOT_LICENSED_MESSAGE = (
    "## No license for this user\n\n"
    "Ask an organization admin to assign you a license to get reviews on your pull requests.\n\n"
    f"{REVIEW_MARKER}"
)
BYOK_REQUIRED_MESSAGE = (
    "## API key configuration required 🔑\n\n"
    "Your plan requires a bring-your-own-key configuration before reviews can run.\n\n"
    f"{REVIEW_MARKER}"
)
PLAN_LIMIT_MESSAGE = (
    "## Plan limit reached\n\n"
    "This organization has used every review its plan allows. Reviews resume when the plan is upgraded "
    "or the limit resets.\n\n"
    f"{REVIEW_MARKER}"
)

_NOTICE_BY_ERROR = {
    ValidationErrorType.USER_NOT_LICENSED: USER_NOT_LICENSED_MESSAGE,
    ValidationErrorType.BYOK_REQUIRED: BYOK_REQUIRED_MESSAGE,
    ValidationErrorType.PLAN_LIMIT_EXCEEDED: PLAN_LIMIT_MESSAGE,
}


class ValidatePrerequisitesStage(PipelineStage):
    """Skip the run when the PR or its author should not be reviewed.

    Checks, in order: structural data, PR state, ignore lists, then the
    permission verdict (with one license auto-assignment attempt for
    unlicensed authors). Notices posted to the PR are best effort.
    """

    stage_name = "ValidatePrerequisitesStage"

    def __init__(
        self,
        adapter,
        permission_validator,
        auto_assigner=None,
        pull_requests=None,
        ignored_users: list[str] | None = None,
        allowed_users: list[str] | None = None,
    ):
        self.adapter = adapter
        self.permission_validator = permission_validator
        self.auto_assigner = auto_assigner
        self.pull_requests = pull_requests
        self.ignored_users = {str(u) for u in ignored_users or []}
        self.allowed_users = {str(u) for u in allowed_users or []}

    def execute_stage(self, context: PipelineContext) -> PipelineContext:
        show_status_feedback = self._show_status_feedback(context)
        context = context.with_metadata(show_status_feedback=show_status_feedback)
        if not show_status_feedback:
            context = context.with_metadata(notification_handled=True)

        reason = self._structural_reason(context)
        if reason is not None:
            logger.info("%s: %s | %s", self.stage_name, reason.message, context.log_metadata())
            return self._skip(context, reason)

        if self._is_user_ignored(context.user_git_id):
            logger.info("%s: user %s is ignored | %s", self.stage_name, context.user_git_id, context.log_metadata())
            return self._skip(context, reasons.USER_IGNORED)

        verdict: PermissionVerdict = self.permission_validator.validate_execution_permissions(
            context.organization_and_team_data, context.user_git_id, self.stage_name
        )
        if verdict.allowed or verdict.error_type == ValidationErrorType.NOT_ERROR:
            if verdict.byok_config:
                context = context.evolve(
                    code_review_config={**context.code_review_config, "byok_config": verdict.byok_config}
                )
            return context

        if verdict.error_type == ValidationErrorType.USER_NOT_LICENSED and self._try_auto_assign(
            context, show_status_feedback
        ):
            return context

        if verdict.error_type != ValidationErrorType.USER_NOT_LICENSED:
            logger.warning("%s: no active subscription | %s", self.stage_name, context.log_metadata())
            if show_status_feedback:
                self._post_notice(context, _NOTICE_BY_ERROR.get(verdict.error_type, NO_SUBSCRIPTION_MESSAGE))

        # Any notice for a license failure was posted here; the generic skip reaction would duplicate it.
        context = context.with_metadata(notification_handled=True)
        return self._skip(context, _SKIP_REASON.get(verdict.error_type, reasons.NO_LICENSE))

    # --- checks -----------------------------------------------------------

    @staticmethod
    def _show_status_feedback(context: PipelineContext) -> bool:
        value = (context.code_review_config or {}).get("show_status_feedback")
        return value if isinstance(value, bool) else True

    @staticmethod
    def _structural_reason(context: PipelineContext) -> reasons.PipelineReason | None:
        if context.repository is None or not context.repository.id or context.pull_request is None:
            return reasons.MISSING_DATA
        if context.pull_request.state in ("closed", "merged"):
            return reasons.CLOSED
        if context.pull_request.locked:
            return reasons.LOCKED
        return None

    def _is_user_ignored(self, user_git_id: str | None) -> bool:
        if not user_git_id:
            return False
        user = str(user_git_id)
        if self.allowed_users and user not in self.allowed_users:
            return True
        return user in self.ignored_users

    def _try_auto_assign(self, context: PipelineContext, show_status_feedback: bool) -> bool:
        if self.auto_assigner is None:
            reason = None
        else:
            org = context.organization_and_team_data
            pr_count = 0
            if self.pull_requests is not None and org is not None and context.user_git_id:
                try:
                    pr_count = self.pull_requests.count_pull_requests_by_author(org.organization_id, context.user_git_id)
                except Exception as e:
                    logger.warning("%s: could not count PRs for %s: %s", self.stage_name, context.user_git_id, e)
            result = self.auto_assigner.execute(
                org,
                context.user_git_id,
                pr_number=context.pr_number,
                pr_count=pr_count,
                repository_name=context.repository.name,
                provider=context.platform_type,
            )
            if result.should_proceed:
                logger.info("%s: proceeding after auto-assign (%s)", self.stage_name, result.reason.value)
                return True
            reason = result.reason

        logger.warning(
            "%s: user %s not licensed (auto-assign: %s) | %s",
            self.stage_name,
            context.user_git_id,
            reason.value if reason else None,
            context.log_metadata(),
        )
        if show_status_feedback and reason not in (AutoAssignReason.IGNORED_USER, AutoAssignReason.NOT_ALLOWED_USER):
            self._react(context, Reaction.NO_LICENSE)
        return False

    # --- outcomes ---------------------------------------------------------

    @staticmethod
    def _skip(context: PipelineContext, reason: reasons.PipelineReason) -> PipelineContext:
        return context.with_status(PipelineStatus.SKIPPED, reasons.skipped_with_reason(reason), reason.code)

    def _react(self, context: PipelineContext, reaction: Reaction) -> None:
        try:
            self.adapter.add_reaction(
                context.repository,
                context.pull_request,
                reaction,
                comment_id=context.trigger_comment_id,
                comment_kind=context.trigger_comment_kind,
            )
        except Exception as e:
            logger.error("%s: failed to add %s reaction: %s | %s", self.stage_name, reaction.value, e, context.log_metadata())

    def _post_notice(self, context: PipelineContext, body: str) -> None:
        try:
            self.adapter.create_issue_comment(context.repository, context.pull_request, body)
        except Exception as e:
            logger.error("%s: failed to post license notice: %s | %s", self.stage_name, e, context.log_metadata())
