"""Shared webhook handling: filter, dedup, re-trigger decision, dispatch.

Adapters only translate payloads; the rules for when a review runs are the
same for every platform and live here.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Mapping

from reviewrelay_core.config import resolve_code_review_config
from reviewrelay_core.models import CanonicalEvent
from reviewrelay_core.persistence import DedupStore, PullRequestStateRepository
from reviewrelay_core.platforms.base import PlatformAdapter, WebhookRequest
from reviewrelay_core.webhooks.dedup import DEFAULT_DEDUP_TTL, build_dedup_key
from reviewrelay_core.webhooks.markers import has_review_marker, is_review_command

logger = logging.getLogger(__name__)

_FINISHED_STATES = frozenset({"closed", "merged", "abandoned"})


class DispatchOutcome(str, Enum):
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    SAVED = "saved"
    TRIGGERED = "triggered"


class WebhookDispatcher:
    def __init__(
        self,
        adapters: Mapping[str, PlatformAdapter],
        dedup_store: DedupStore | None,
        pull_requests: PullRequestStateRepository | None,
        review_runner,
        config: dict | None = None,
    ):
        self.adapters = dict(adapters)
        self.dedup_store = dedup_store
        self.pull_requests = pull_requests
        self.review_runner = review_runner
        self.config = config or {}

    def accepts(self, webhook: WebhookRequest) -> bool:
        adapter = self.adapters.get(webhook.platform)
        return adapter is not None and adapter.can_handle(webhook)

    def dispatch(self, webhook: WebhookRequest) -> DispatchOutcome:
        adapter = self.adapters.get(webhook.platform)
        if adapter is None or not adapter.can_handle(webhook):
            logger.debug("Ignoring %s webhook (event=%s)", webhook.platform, adapter and adapter.event_name(webhook))
            return DispatchOutcome.IGNORED

        event = adapter.normalize(webhook)
        if event.repository is None or event.pull_request is None:
            logger.warning("Ignoring %s %s webhook without repository or pull request", event.platform, event.event)
            return DispatchOutcome.IGNORED

        if self._is_duplicate(adapter, webhook, event):
            return DispatchOutcome.DUPLICATE

        if event.is_comment:
            return self._handle_comment(event)

        trigger = self.should_trigger(adapter, event)
        self._save_state(adapter, event)
        if not trigger:
            logger.info(
                "PR #%s in %s saved without review (%s)", event.pull_request.number, event.repository.name, event.action
            )
            return DispatchOutcome.SAVED

        self._run(event)
        return DispatchOutcome.TRIGGERED

    def _is_duplicate(self, adapter: PlatformAdapter, webhook: WebhookRequest, event: CanonicalEvent) -> bool:
        if self.dedup_store is None:
            return False
        key = build_dedup_key(event.platform, event.pull_request.number, adapter.dedup_fields(webhook))
        if key is None:
            return False
        ttl = self.config.get("dedup_ttl_seconds", DEFAULT_DEDUP_TTL)
        try:
            seen = self.dedup_store.check_and_set(key.key, ttl)
        except Exception as e:
            # Fail open: an unreachable store never drops a webhook.
            logger.warning("Dedup store unavailable (%s); processing %s", e, key.key)
            return False
        if seen:
            logger.warning("Duplicate webhook %s", key.key)
        return seen

    def _handle_comment(self, event: CanonicalEvent) -> DispatchOutcome:
        body = event.comment.body if event.comment else ""
        if not body or not body.strip():
            return DispatchOutcome.IGNORED
        # The bot's own comments carry the marker; never let them start a review.
        if has_review_marker(body) or not is_review_command(body):
            return DispatchOutcome.IGNORED
        logger.info("Review command on PR #%s in %s", event.pull_request.number, event.repository.name)
        event.origin = "command"
        event.trigger_comment_id = event.comment.id
        event.trigger_comment_kind = event.comment.kind
        self._run(event)
        return DispatchOutcome.TRIGGERED

    def should_trigger(self, adapter: PlatformAdapter, event: CanonicalEvent) -> bool:
        """Decide whether a pull-request event starts a review.

        Finished PRs never trigger. Anything but a plain update does. For
        updates the stored state decides: a draft that became ready always
        triggers, a head commit already seen does not. Any failure while
        looking up state errs on the side of reviewing.
        """
        pr = event.pull_request
        if event.action == "closed" or pr.state in _FINISHED_STATES:
            return False

        review_config = resolve_code_review_config(self.config, event.repository.id)
        if pr.is_draft and not review_config.get("review_draft_prs", False):
            logger.debug("PR #%s is a draft; not reviewing", pr.number)
            return False

        if event.action not in adapter.update_actions:
            return True
        if self.pull_requests is None:
            return True

        try:
            stored = self.pull_requests.get_pull_request(event.platform, event.repository.id, pr.number)
        except Exception as e:
            logger.error("PR state lookup failed for #%s (%s); reviewing anyway", pr.number, e)
            return True
        if stored is None:
            return True

        if getattr(stored, "is_draft", False) and not pr.is_draft:
            return True
        if pr.head_sha and pr.head_sha in (getattr(stored, "commits", None) or []):
            logger.debug("Commit %s on PR #%s already processed", pr.head_sha, pr.number)
            return False
        return True

    def _save_state(self, adapter: PlatformAdapter, event: CanonicalEvent) -> None:
        if self.pull_requests is None:
            return
        try:
            commits = adapter.get_commits(event.repository, event.pull_request)
        except Exception as e:
            logger.warning("Could not list commits for PR #%s: %s", event.pull_request.number, e)
            commits = []
        if event.pull_request.head_sha and event.pull_request.head_sha not in commits:
            commits.append(event.pull_request.head_sha)
        try:
            self.pull_requests.save_pull_request(
                event.platform,
                event.repository,
                event.pull_request,
                commits=commits,
                organization_id=self.config.get("organization_id"),
            )
        except Exception as e:
            logger.warning("Failed to save PR #%s state: %s", event.pull_request.number, e)

    def _run(self, event: CanonicalEvent) -> None:
        try:
            context = self.review_runner.run(event)
        except Exception as e:
            logger.error("Review of PR #%s in %s crashed: %s", event.pull_request.number, event.repository.name, e, exc_info=True)
            return
        logger.info(
            "Review of PR #%s in %s finished: %s %s",
            event.pull_request.number,
            event.repository.name,
            context.status_info.status.value,
            context.status_info.message,
        )
