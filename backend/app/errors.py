"""Failure taxonomy shared by the allocation, heartbeat and termination flows.

Services never raise for expected failures. They return a :class:`Failure`,
and the API layer turns it into a JSON error body via :func:`failure_response`.
Every body carries the concrete code, its category and a retry hint so the
caller can tell "retry now", "retry later" and "give up" apart.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from fastapi.responses import JSONResponse


class ErrorCategory(StrEnum):
    VALIDATION = "ValidationError"
    NOT_FOUND = "NotFound"
    CAPACITY_EXHAUSTED = "CapacityExhausted"
    UPSTREAM_FAILURE = "UpstreamFailure"
    INVALID_STATE = "InvalidState"
    INTERNAL = "InternalError"


class RetryHint(StrEnum):
    NOW = "now"
    LATER = "later"
    NEVER = "never"


_CATEGORY_RETRY: dict[ErrorCategory, RetryHint] = {
    ErrorCategory.VALIDATION: RetryHint.NEVER,
    ErrorCategory.NOT_FOUND: RetryHint.NEVER,
    ErrorCategory.CAPACITY_EXHAUSTED: RetryHint.LATER,
    ErrorCategory.UPSTREAM_FAILURE: RetryHint.LATER,
    ErrorCategory.INVALID_STATE: RetryHint.NEVER,
    ErrorCategory.INTERNAL: RetryHint.NOW,
}


class FailureCode(StrEnum):
    BUILD_NOT_FOUND = "BuildNotFound"
    NO_AGENTS_AVAILABLE = "NoAgentsAvailable"
    NO_PORTS_AVAILABLE = "NoPortsAvailable"
    CONTAINER_CREATE_FAILED = "ContainerCreateFailed"
    CONTAINER_START_FAILED = "ContainerStartFailed"
    INSTANCE_NOT_FOUND = "InstanceNotFound"
    INSTANCE_ALREADY_TERMINATED = "InstanceAlreadyTerminated"
    INTERNAL_ERROR = "InternalError"


# code -> (category, HTTP status)
_CODE_TABLE: dict[FailureCode, tuple[ErrorCategory, int]] = {
    FailureCode.BUILD_NOT_FOUND: (ErrorCategory.NOT_FOUND, 400),
    FailureCode.NO_AGENTS_AVAILABLE: (ErrorCategory.CAPACITY_EXHAUSTED, 400),
    FailureCode.NO_PORTS_AVAILABLE: (ErrorCategory.CAPACITY_EXHAUSTED, 400),
    FailureCode.CONTAINER_CREATE_FAILED: (ErrorCategory.UPSTREAM_FAILURE, 500),
    FailureCode.CONTAINER_START_FAILED: (ErrorCategory.UPSTREAM_FAILURE, 500),
    FailureCode.INSTANCE_NOT_FOUND: (ErrorCategory.NOT_FOUND, 404),
    FailureCode.INSTANCE_ALREADY_TERMINATED: (ErrorCategory.INVALID_STATE, 400),
    FailureCode.INTERNAL_ERROR: (ErrorCategory.INTERNAL, 500),
}


@dataclass(frozen=True)
class Failure:
    code: FailureCode
    message: str

    @property
    def category(self) -> ErrorCategory:
        return _CODE_TABLE[self.code][0]

    @property
    def status_code(self) -> int:
        return _CODE_TABLE[self.code][1]

    @property
    def retry(self) -> RetryHint:
        return _CATEGORY_RETRY[self.category]


def error_body(
    detail: str,
    code: str,
    category: ErrorCategory,
    **extra: Any,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "detail": detail,
        "error": code,
        "category": category.value,
        "retry": _CATEGORY_RETRY[category].value,
    }
    body.update(extra)
    return body


def failure_response(failure: Failure) -> JSONResponse:
    return JSONResponse(
        status_code=failure.status_code,
        content=error_body(failure.message, failure.code.value, failure.category),
    )


def category_for_status(status_code: int) -> ErrorCategory:
    """Category for an ``HTTPException`` raised by a plain CRUD route."""
    if status_code == 404:
        return ErrorCategory.NOT_FOUND
    if status_code == 409:
        return ErrorCategory.INVALID_STATE
    if status_code >= 500:
        return ErrorCategory.INTERNAL
    return ErrorCategory.VALIDATION
