"""Structured results returned by every coordinator operation."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field, is_dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, TypeVar

from pydantic import BaseModel

from .storage.records import RecordStoreError
from .workflows.loader import WorkflowLoadError

logger = logging.getLogger(__name__)

OperationT = TypeVar("OperationT", bound=Callable[..., "CoordinatorResult"])


class ErrorCode(str, Enum):
    """Stable machine codes carried by failed results."""

    NO_SESSION = "NO_SESSION"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_REQUIRED = "SESSION_REQUIRED"
    ACTIVE_LOCKS = "ACTIVE_LOCKS"
    LOCKED = "LOCKED"
    LOCK_NOT_FOUND = "LOCK_NOT_FOUND"
    NOT_OWNER = "NOT_OWNER"
    QUEUE_FULL = "QUEUE_FULL"
    UNKNOWN_ROLE = "UNKNOWN_ROLE"
    AGENT_NOT_IN_PIPELINE = "AGENT_NOT_IN_PIPELINE"
    CONFIDENCE_BELOW_THRESHOLD = "CONFIDENCE_BELOW_THRESHOLD"
    WORKTREE_FAILED = "WORKTREE_FAILED"
    UNCOMMITTED_CHANGES = "UNCOMMITTED_CHANGES"
    MISSING_ARGS = "MISSING_ARGS"
    INVALID_ARGS = "INVALID_ARGS"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    DUPLICATE_PROJECT = "DUPLICATE_PROJECT"
    WORKFLOW_INVALID = "WORKFLOW_INVALID"
    STATE_ERROR = "STATE_ERROR"


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if is_dataclass(value) and not isinstance(value, type):
        return _jsonable(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    return value


@dataclass(slots=True)
class CoordinatorResult:
    """Success flag plus an optional error code, a message and a payload."""

    success: bool
    message: str = ""
    error: ErrorCode | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **payload: Any) -> "CoordinatorResult":
        return cls(success=True, message=message, payload=payload)

    @classmethod
    def fail(cls, error: ErrorCode, message: str, **payload: Any) -> "CoordinatorResult":
        return cls(success=False, message=message, error=error, payload=payload)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        """Flatten into the `{success, error?, message, ...payload}` wire shape."""

        data: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            data["error"] = self.error.value
        data["message"] = self.message
        for key, value in self.payload.items():
            data[key] = _jsonable(value)
        return data


def coordinator_operation(method: OperationT) -> OperationT:
    """Report storage and workflow failures raised by ``method`` as failed results."""

    @functools.wraps(method)
    def wrapper(*args: Any, **kwargs: Any) -> CoordinatorResult:
        try:
            return method(*args, **kwargs)
        except RecordStoreError as exc:
            logger.error("State write failed", extra={"operation": method.__name__, "error": str(exc)})
            return CoordinatorResult.fail(ErrorCode.STATE_ERROR, str(exc))
        except WorkflowLoadError as exc:
            logger.error("Workflow definitions invalid", extra={"operation": method.__name__, "error": str(exc)})
            return CoordinatorResult.fail(ErrorCode.WORKFLOW_INVALID, str(exc))

    return wrapper  # type: ignore[return-value]


__all__ = ["CoordinatorResult", "ErrorCode", "coordinator_operation"]
