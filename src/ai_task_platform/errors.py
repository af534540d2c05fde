"""Exception hierarchy for task and API operations."""

from __future__ import annotations


class TaskPlatformError(Exception):
    """Base error carrying a stable machine-readable code."""

    code = "task_platform_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidTaskTypeError(TaskPlatformError):
    code = "invalid_task_type"


class EmptyTitleError(TaskPlatformError):
    code = "empty_title"


class InvalidDependencyError(TaskPlatformError):
    code = "invalid_dependency"


class CircularDependencyError(TaskPlatformError):
    code = "circular_dependency"


class InsufficientCreditsError(TaskPlatformError):
    """Raised before anything is persisted when the balance cannot cover a cost."""

    code = "insufficient_credits"

    def __init__(self, *, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient credits: required={required}, available={available}.",
        )
        self.required = required
        self.available = available


class TaskNotFoundError(TaskPlatformError):
    code = "invalid_task"

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidTransitionError(TaskPlatformError):
    code = "invalid_transition"


class TaskRegistrationError(TaskPlatformError):
    code = "registration_error"


class ProcessingError(TaskPlatformError):
    """Raised by processors; the engine turns it into a failed task."""

    code = "processing_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
