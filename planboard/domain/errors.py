from __future__ import annotations

from typing import Any, Mapping

from .enums import ErrorCode


class PlanningError(Exception):
    """Base class for every error the planning core raises."""


class BusyError(PlanningError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} is still being processed, try again shortly")
        self.task_id = task_id


class DragRejectedError(PlanningError):
    pass


class ValidationError(PlanningError):
    def __init__(self, field_errors: Mapping[str, str]) -> None:
        self.field_errors = dict(field_errors)
        super().__init__("; ".join(f"{key}: {value}" for key, value in self.field_errors.items()))


class TaskServiceError(PlanningError):
    code: str = ErrorCode.UNKNOWN.value

    def __init__(self, message: str, details: Any = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code

    @property
    def field_errors(self) -> dict[str, str] | None:
        if isinstance(self.details, Mapping):
            return {str(key): str(value) for key, value in self.details.items()}
        return None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TaskServiceError:
        code = str(payload.get("code") or ErrorCode.UNKNOWN.value)
        message = str(payload.get("message") or code)
        error_cls = _ERRORS_BY_CODE.get(code, TaskServiceError)
        return error_cls(message, payload.get("details"), code=code)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NotFoundError(TaskServiceError):
    code = ErrorCode.NOT_FOUND.value


class InvalidStateTransitionError(TaskServiceError):
    code = ErrorCode.INVALID_STATE_TRANSITION.value


class ConflictError(TaskServiceError):
    code = ErrorCode.CONFLICT.value


class StaleStateError(TaskServiceError):
    code = ErrorCode.STALE_STATE.value


class UnknownServiceError(TaskServiceError):
    code = ErrorCode.UNKNOWN.value


class DueDateRequiredError(TaskServiceError):
    code = ErrorCode.DUE_DATE_REQUIRED.value


_ERRORS_BY_CODE: dict[str, type[TaskServiceError]] = {
    ErrorCode.NOT_FOUND.value: NotFoundError,
    ErrorCode.INVALID_STATE_TRANSITION.value: InvalidStateTransitionError,
    ErrorCode.CONFLICT.value: ConflictError,
    ErrorCode.STALE_STATE.value: StaleStateError,
    ErrorCode.UNKNOWN.value: UnknownServiceError,
    ErrorCode.DUE_DATE_REQUIRED.value: DueDateRequiredError,
}

RETRYABLE_CODES = frozenset({ErrorCode.CONFLICT.value, ErrorCode.STALE_STATE.value})
