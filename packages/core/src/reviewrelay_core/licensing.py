"""Permission verdicts and license auto-assignment.

The real decision lives in a billing service. These config-driven versions
let the service run standalone and are what the tests exercise; anything with
the same ``validate_execution_permissions``/``execute`` methods can replace
them.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any

from reviewrelay_core.models import OrganizationAndTeamData

logger = logging.getLogger(__name__)


class ValidationErrorType(str, Enum):
    INVALID_LICENSE = "invalid_license"
    USER_NOT_LICENSED = "user_not_licensed"
    BYOK_REQUIRED = "byok_required"
    PLAN_LIMIT_EXCEEDED = "plan_limit_exceeded"
    NOT_ERROR = "not_error"


@dataclass
class PermissionVerdict:
    allowed: bool
    error_type: ValidationErrorType | None = None
    byok_config: dict[str, Any] | None = None


class AutoAssignReason(str, Enum):
    ALREADY_LICENSED = "ALREADY_LICENSED"
    LICENSE_ASSIGNED = "LICENSE_ASSIGNED"
    NO_SEATS_AVAILABLE = "NO_SEATS_AVAILABLE"
    IGNORED_USER = "IGNORED_USER"
    NOT_ALLOWED_USER = "NOT_ALLOWED_USER"
    MISSING_USER = "MISSING_USER"


@dataclass
class AutoAssignResult:
    should_proceed: bool
    reason: AutoAssignReason


_STATUS_TO_ERROR = {
    "invalid": ValidationErrorType.INVALID_LICENSE,
    "expired": ValidationErrorType.INVALID_LICENSE,
    "byok_required": ValidationErrorType.BYOK_REQUIRED,
    "plan_limit_exceeded": ValidationErrorType.PLAN_LIMIT_EXCEEDED,
}


class StaticPermissionValidator:
    """Reads the ``license:`` config section.

    ``licensed_users`` of ``None`` licenses everyone; a list licenses only the
    users in it (shared with ``SeatAutoAssigner``, which appends to it).
    """

    def __init__(self, license_config: dict | None = None, byok_config: dict | None = None):
        self.license_config = license_config or {}
        self.byok_config = byok_config
        self._lock = threading.Lock()

    @property
    def licensed_users(self) -> list[str] | None:
        return self.license_config.get("licensed_users")

    def is_licensed(self, user_git_id: str | None) -> bool:
        users = self.licensed_users
        return users is None or (user_git_id is not None and str(user_git_id) in {str(u) for u in users})

    def assign(self, user_git_id: str) -> None:
        with self._lock:
            users = self.license_config.setdefault("licensed_users", [])
            if users is not None and str(user_git_id) not in {str(u) for u in users}:
                users.append(str(user_git_id))

    def validate_execution_permissions(
        self,
        organization_and_team_data: OrganizationAndTeamData | None,
        user_git_id: str | None,
        stage_name: str = "",
    ) -> PermissionVerdict:
        status = str(self.license_config.get("status", "active")).lower()
        error = _STATUS_TO_ERROR.get(status)
        if error is not None:
            logger.debug("License status %r for %s (%s)", status, organization_and_team_data, stage_name)
            return PermissionVerdict(allowed=False, error_type=error)
        if not self.is_licensed(user_git_id):
            return PermissionVerdict(allowed=False, error_type=ValidationErrorType.USER_NOT_LICENSED)
        return PermissionVerdict(allowed=True, byok_config=self.byok_config)


class SeatAutoAssigner:
    """Gives a free seat to an unlicensed PR author when the org has one left."""

    def __init__(
        self,
        validator: StaticPermissionValidator,
        seats_available: int = 0,
        ignored_users: list[str] | None = None,
        allowed_users: list[str] | None = None,
    ):
        self.validator = validator
        self.seats_available = seats_available
        self.ignored_users = {str(u) for u in ignored_users or []}
        self.allowed_users = {str(u) for u in allowed_users or []}
        self._lock = threading.Lock()

    def execute(
        self,
        organization_and_team_data: OrganizationAndTeamData | None,
        user_git_id: str | None,
        pr_number: int | None = None,
        pr_count: int = 0,
        repository_name: str | None = None,
        provider: str | None = None,
    ) -> AutoAssignResult:
        if not user_git_id:
            return AutoAssignResult(False, AutoAssignReason.MISSING_USER)
        user = str(user_git_id)
        if user in self.ignored_users:
            return AutoAssignResult(False, AutoAssignReason.IGNORED_USER)
        if self.allowed_users and user not in self.allowed_users:
            return AutoAssignResult(False, AutoAssignReason.NOT_ALLOWED_USER)
        if self.validator.is_licensed(user):
            return AutoAssignResult(True, AutoAssignReason.ALREADY_LICENSED)

        with self._lock:
            if self.seats_available <= 0:
                return AutoAssignResult(False, AutoAssignReason.NO_SEATS_AVAILABLE)
            self.seats_available -= 1
        self.validator.assign(user)
        logger.info(
            "Assigned a license to %s (PR #%s in %s on %s, %d previous PRs)",
            user,
            pr_number,
            repository_name,
            provider,
            pr_count,
        )
        return AutoAssignResult(True, AutoAssignReason.LICENSE_ASSIGNED)


def build_license_services(config: dict) -> tuple[StaticPermissionValidator, SeatAutoAssigner]:
    license_config = config.get("license") or {}
    validator = StaticPermissionValidator(license_config, byok_config=config.get("byok"))
    assigner = SeatAutoAssigner(
        validator,
        seats_available=int(license_config.get("seats_available") or 0),
        ignored_users=config.get("ignored_users"),
        allowed_users=config.get("allowed_users"),
    )
    return validator, assigner
