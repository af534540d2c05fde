"""Task processor contract and shared helpers for built-in processors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, ClassVar, Protocol, runtime_checkable

from ai_task_platform.api.manager import ApiManager
from ai_task_platform.api.service import ApiResponse, ApiService, ServiceName
from ai_task_platform.errors import ProcessingError
from ai_task_platform.storage.common import utc_now
from ai_task_platform.tasks.models import TaskLogLevel, TaskView

TaskLogSink = Callable[[int, str, TaskLogLevel], None]


@runtime_checkable
class TaskProcessor(Protocol):
    """Executes one task type; both methods raise ProcessingError on failure."""

    def validate_inputs(self, inputs: dict[str, Any]) -> None: ...

    def process(self, task: TaskView) -> dict[str, Any]: ...


class BaseTaskProcessor(ABC):
    """Common plumbing: API service lookup, task logging and output formatting."""

    task_type: ClassVar[str] = ""

    def __init__(self, api_manager: ApiManager, *, log_sink: TaskLogSink | None = None) -> None:
        self.api_manager = api_manager
        self.log_sink = log_sink

    def get_task_type(self) -> str:
        return self.task_type

    @abstractmethod
    def validate_inputs(self, inputs: dict[str, Any]) -> None:
        """Raise ProcessingError when required inputs are missing or invalid."""

    @abstractmethod
    def process(self, task: TaskView) -> dict[str, Any]: ...

    def log(self, task_id: int, message: str, level: TaskLogLevel = TaskLogLevel.INFO) -> None:
        if self.log_sink is not None:
            self.log_sink(task_id, message, level)

    def get_api_service(self, name: ServiceName, task: TaskView) -> ApiService:
        service = self.api_manager.get_service(name, user_id=task.user_id)
        if service is None:
            raise ProcessingError(
                f"{name.value} API service is not available.",
                code="api_service_unavailable",
            )
        return service

    @staticmethod
    def require_inputs(inputs: dict[str, Any], *names: str) -> None:
        for name in names:
            value = inputs.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ProcessingError(
                    f"Missing required input: {name}",
                    code=f"missing_{name}",
                )

    @staticmethod
    def input_list(value: Any) -> list[str]:
        """Accept a list or a comma-separated string; blank items are dropped."""

        if value is None:
            return []
        if isinstance(value, str):
            items: list[Any] = value.split(",")
        elif isinstance(value, list | tuple):
            items = list(value)
        else:
            items = [value]
        return [str(item).strip() for item in items if str(item).strip()]

    @staticmethod
    def format_outputs(outputs: dict[str, Any]) -> dict[str, Any]:
        return {**outputs, "generated_at": utc_now().isoformat()}

    @staticmethod
    def unwrap(response: ApiResponse, *, context: str) -> Any:
        """Return response data or raise ProcessingError carrying the API error."""

        if response.success:
            return response.data
        error = response.error
        code = error.code if error is not None else "api_error"
        message = error.message if error is not None else "Unknown API error"
        raise ProcessingError(f"{context}: {message}", code=code)
