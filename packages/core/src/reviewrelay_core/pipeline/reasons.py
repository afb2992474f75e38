"""Reason codes attached to SKIPPED pipeline runs."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PipelineReason:
    code: str
    message: str
    emoji: str = "👎"


MISSING_DATA = PipelineReason("MISSING_DATA", "Repository or pull request data is missing")
CLOSED = PipelineReason("CLOSED", "Pull request is closed or merged")
LOCKED = PipelineReason("LOCKED", "Pull request is locked")
USER_IGNORED = PipelineReason("USER_IGNORED", "Pull request author is on the ignore list")
NO_LICENSE = PipelineReason("NO_LICENSE", "No active subscription for this organization")
USER_NO_LICENSE = PipelineReason("USER_NO_LICENSE", "Pull request author has no license")
BYOK_MISSING = PipelineReason("BYOK_MISSING", "Plan requires a bring-your-own-key configuration", "🔑")
PLAN_LIMIT = PipelineReason("PLAN_LIMIT", "Plan limit exceeded")

BY_CODE = {
    reason.code: reason
    for reason in (MISSING_DATA, CLOSED, LOCKED, USER_IGNORED, NO_LICENSE, USER_NO_LICENSE, BYOK_MISSING, PLAN_LIMIT)
}


def skipped_with_reason(reason: PipelineReason) -> str:
    return f"Skipped: {reason.message}"
