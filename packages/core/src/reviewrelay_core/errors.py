"""Error taxonomy for the review-delivery pipeline.

Stage-level errors are caught by the executor and turned into a terminal
pipeline status. Platform errors are caught per suggestion by the delivery
engine, which decides between retrying, adjusting geometry, or giving up based
on the subclass returned by ``classify_platform_error``.
"""

from __future__ import annotations

import re

import httpx
from github import GithubException

LINE_MISMATCH_ERROR_TYPE = "failed_lines_mismatch"

_DEFINITIVE_STATUSES = frozenset({401, 403, 404})
_TRANSIENT_CODES = frozenset({"ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "EPIPE", "EAI_AGAIN", "ECONNABORTED"})

# Messages platforms return when a comment targets lines outside the diff.
_LINE_MISMATCH_RE = re.compile(
    r"must be part of the diff"
    r"|line could not be resolved"
    r"|start_line must be part of the same hunk"
    r"|pull_request_review_thread\.(start_)?line"
    r"|line_code"
    r"|position is invalid"
    r"|invalid line",
    re.IGNORECASE,
)


class ReviewRelayError(Exception):
    """Base class for every error raised by reviewrelay."""


class StructuralError(ReviewRelayError):
    """Required context fields are missing. Fatal to the run, never retried."""


class ExecutionPermissionError(ReviewRelayError):
    """License, plan or BYOK rules forbid the run."""

    def __init__(self, message: str, error_type: str | None = None):
        super().__init__(message)
        self.error_type = error_type


class PlatformError(ReviewRelayError):
    """A source-control platform rejected a call for a reason we cannot act on."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        code: str | None = None,
        error_type: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.error_type = error_type

    @property
    def reason(self) -> str:
        return self.error_type or "failed"


class PlatformTransientError(PlatformError):
    """5xx, rate limiting or a dropped connection. Worth one more try."""


class PlatformLineMismatchError(PlatformError):
    """The platform refused the line range because it is not part of the diff."""

    def __init__(self, message: str, status: int | None = None, code: str | None = None, error_type=None):
        super().__init__(message, status=status, code=code, error_type=error_type or LINE_MISMATCH_ERROR_TYPE)


class PlatformDefinitiveError(PlatformError):
    """Authentication, permission or not-found. Retrying cannot help."""


def _extract(exc) -> tuple[int | None, str | None, str | None, str]:
    """Pull (status, code, error_type, message) out of whatever the SDK raised."""
    if isinstance(exc, GithubException):
        data = exc.data if isinstance(exc.data, dict) else {}
        parts = [str(data.get("message", ""))]
        for err in data.get("errors") or []:
            parts.append(err.get("message", "") if isinstance(err, dict) else str(err))
        return exc.status, None, None, " ".join(p for p in parts if p) or str(exc)

    if isinstance(exc, httpx.HTTPStatusError):
        try:
            text = exc.response.text
        except httpx.ResponseNotRead:
            text = ""
        return exc.response.status_code, None, None, text or str(exc)

    if isinstance(exc, httpx.TimeoutException):
        return None, "ETIMEDOUT", None, str(exc) or "timeout"

    if isinstance(exc, httpx.TransportError):
        return None, "ECONNRESET", None, str(exc) or "transport error"

    if isinstance(exc, ConnectionResetError):
        return None, "ECONNRESET", None, str(exc)

    if isinstance(exc, (TimeoutError, ConnectionError)):
        return None, "ETIMEDOUT", None, str(exc)

    # Dict-shaped errors and ad-hoc objects carrying status/code/errorType.
    if isinstance(exc, dict):
        get = exc.get
    else:

        def get(key, default=None):
            return getattr(exc, key, default)

    status = get("status") or get("status_code")
    code = get("code")
    error_type = get("error_type") or get("errorType")
    message = get("message") or str(exc)
    return status, (str(code) if code else None), error_type, str(message)


def classify_platform_error(exc) -> PlatformError:
    """Map a raw SDK/transport error onto the platform error taxonomy."""
    if isinstance(exc, PlatformError):
        return exc

    status, code, error_type, message = _extract(exc)

    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None

    if error_type == LINE_MISMATCH_ERROR_TYPE:
        return PlatformLineMismatchError(message, status=status, code=code)
    if status in _DEFINITIVE_STATUSES:
        return PlatformDefinitiveError(message, status=status, code=code, error_type=error_type)
    if (status is not None and status >= 500) or status == 429 or (code and code.upper() in _TRANSIENT_CODES):
        return PlatformTransientError(message, status=status, code=code, error_type=error_type)
    if status in (400, 422) and _LINE_MISMATCH_RE.search(message or ""):
        return PlatformLineMismatchError(message, status=status, code=code)
    return PlatformError(message, status=status, code=code, error_type=error_type)
