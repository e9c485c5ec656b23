"""
Error types raised by the scheduler, the broadcaster and the event codec.

Each error carries a category (drives the HTTP status), a retry flag and
structured context for the log line. Callers branch on the class, never on
the message text.

Architecture:
    ::

        FleetError
        ├── TransientError            retryable
        │   ├── TransportError        one observer connection failed
        │   └── StoreUnavailable      store locked/unreachable, tick aborted
        ├── ValidationError
        │   └── InvalidSchedule       rejected at schedule time
        ├── NotFoundError
        │   ├── DeploymentNotFound
        │   └── TaskRunNotFound
        ├── ParseError
        │   └── MessageDecodeError    bad wire envelope
        └── OrchestrationError
            ├── InvalidTransition     status/progress change not permitted
            └── ClaimConflict         another instance claimed first

Usage:
    raise InvalidTransition("Cannot complete a pending deployment").with_context(
        deployment_id=deployment.id,
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    NETWORK = "NETWORK"
    DATABASE = "DATABASE"
    PARSE = "PARSE"
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    ORCHESTRATION = "ORCHESTRATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Identifiers an error is about. Unset fields are left out of logs."""

    deployment_id: str | None = None
    task_run_id: str | None = None
    device_id: str | None = None
    instance_id: str | None = None
    connection_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        known = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "metadata" and getattr(self, f.name) is not None
        }
        return {**known, **self.metadata}


class FleetError(Exception):
    """Base class; subclasses pick the default category and retry flag.

    Examples:
        >>> FleetError("boom").category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> StoreUnavailable("locked").retryable
        True
    """

    default_category = ErrorCategory.INTERNAL
    default_retryable = False
    default_retry_after: int | None = None

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_after = self.default_retry_after if retry_after is None else retry_after
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FleetError:
        """Attach identifiers; unknown keys go to ``context.metadata``."""
        known = {f.name for f in fields(ErrorContext)} - {"metadata"}
        for key, value in kwargs.items():
            if key in known:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        context = self.context.to_dict()
        if context:
            data["context"] = context
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# ── Transient ────────────────────────────────────────────────────────────


class TransientError(FleetError):
    default_category = ErrorCategory.NETWORK
    default_retryable = True


class TransportError(TransientError):
    """A send to (or receive from) one observer connection failed."""


class StoreUnavailable(TransientError):
    """The deployment store is locked or unreachable. The next tick retries."""

    default_category = ErrorCategory.DATABASE
    default_retry_after = 5


# ── Rejected requests ────────────────────────────────────────────────────


class ValidationError(FleetError):
    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, field: str | None = None, value: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        if self.value is not None:
            data["value"] = repr(self.value)
        return data


class InvalidSchedule(ValidationError):
    """Bad cron pattern, past ``scheduled_for`` or fields that do not fit the schedule type."""


class NotFoundError(FleetError):
    default_category = ErrorCategory.NOT_FOUND


class DeploymentNotFound(NotFoundError):
    def __init__(self, deployment_id: str):
        super().__init__(
            f"Deployment not found: {deployment_id}",
            context=ErrorContext(deployment_id=deployment_id),
        )
        self.deployment_id = deployment_id


class TaskRunNotFound(NotFoundError):
    def __init__(self, task_run_id: str):
        super().__init__(
            f"Task run not found: {task_run_id}",
            context=ErrorContext(task_run_id=task_run_id),
        )
        self.task_run_id = task_run_id


class ParseError(FleetError):
    default_category = ErrorCategory.PARSE


class MessageDecodeError(ParseError):
    """Not a valid ``{type, data, timestamp?}`` envelope."""


# ── Lifecycle ────────────────────────────────────────────────────────────


class OrchestrationError(FleetError):
    default_category = ErrorCategory.ORCHESTRATION


class InvalidTransition(OrchestrationError):
    """A status or progress change the state machine does not permit."""

    def __init__(self, message: str, *, current: str | None = None, target: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.current = current
        self.target = target

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({k: v for k, v in (("current", self.current), ("target", self.target)) if v is not None})
        return data


class ClaimConflict(OrchestrationError):
    """Another scheduler instance claimed the deployment first."""


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "FleetError",
    "TransientError",
    "TransportError",
    "StoreUnavailable",
    "ValidationError",
    "InvalidSchedule",
    "NotFoundError",
    "DeploymentNotFound",
    "TaskRunNotFound",
    "ParseError",
    "MessageDecodeError",
    "OrchestrationError",
    "InvalidTransition",
    "ClaimConflict",
]
