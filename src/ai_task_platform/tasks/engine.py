"""Dependency-aware, priority-ordered, approval-gated task engine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import Executor, wait
from typing import Any

from sqlmodel import Session

from ai_task_platform.credits.ledger import CreditLedger, TransactionType
from ai_task_platform.errors import (
    CircularDependencyError,
    EmptyTitleError,
    InvalidDependencyError,
    InvalidTaskTypeError,
    InvalidTransitionError,
    ProcessingError,
    TaskNotFoundError,
    TaskRegistrationError,
)
from ai_task_platform.tasks.models import (
    BUILTIN_TASK_TYPES,
    CANCELABLE_STATUSES,
    DEFAULT_PRIORITY,
    NOT_STARTED_STATUSES,
    TaskCreate,
    TaskLogLevel,
    TaskLogView,
    TaskStatus,
    TaskTypeDefinition,
    TaskView,
    clamp_priority,
)
from ai_task_platform.tasks.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    TaskEvent,
)
from ai_task_platform.tasks.processor import TaskProcessor
from ai_task_platform.tasks.repository import TaskRepository

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 10

DispatchTrigger = Callable[[int], None]


class TaskEngine:
    """Owns the task type registry, processors and every state transition."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskRepository,
        ledger: CreditLedger,
        notifications: NotificationSink | None = None,
        dispatch_trigger: DispatchTrigger | None = None,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        register_builtin_types: bool = True,
    ) -> None:
        self.repository = repository
        self.ledger = ledger
        self.notifications = notifications or LoggingNotificationSink()
        self.dispatch_trigger = dispatch_trigger
        self.batch_limit = batch_limit
        self._task_types: dict[str, TaskTypeDefinition] = {}
        self._processors: dict[str, TaskProcessor] = {}
        if register_builtin_types:
            for definition in BUILTIN_TASK_TYPES:
                self._task_types[definition.key] = definition

    # -- registry ---------------------------------------------------------

    def register_task_type(  # noqa: PLR0913
        self,
        key: str,
        name: str,
        description: str,
        *,
        credits_cost: int = 1,
        requires_approval: bool = False,
        category: str = "general",
        icon: str = "admin-generic",
    ) -> TaskTypeDefinition:
        if key in self._task_types:
            raise TaskRegistrationError(f"Task type already registered: {key}")
        if credits_cost < 0:
            raise TaskRegistrationError(f"credits_cost must be >= 0 for task type {key}")
        definition = TaskTypeDefinition(
            key=key,
            name=name,
            description=description,
            credits_cost=credits_cost,
            requires_approval=requires_approval,
            category=category,
            icon=icon,
        )
        self._task_types[key] = definition
        return definition

    def register_task_processor(self, key: str, processor: Any) -> None:
        if key not in self._task_types:
            raise TaskRegistrationError(f"Unknown task type: {key}")
        if not isinstance(processor, TaskProcessor) or not all(
            callable(getattr(processor, name, None)) for name in ("validate_inputs", "process")
        ):
            raise TaskRegistrationError(
                f"Processor for {key} must implement validate_inputs() and process().",
            )
        self._processors[key] = processor

    def get_task_type(self, key: str) -> TaskTypeDefinition | None:
        return self._task_types.get(key)

    def get_task_types(self) -> list[TaskTypeDefinition]:
        return list(self._task_types.values())

    def has_processor(self, key: str) -> bool:
        return key in self._processors

    # -- creation and queries ---------------------------------------------

    def create_task(  # noqa: PLR0913
        self,
        user_id: int,
        task_type: str,
        title: str,
        inputs: dict[str, Any] | None = None,
        description: str = "",
        priority: int = DEFAULT_PRIORITY,
        dependencies: Iterable[int] = (),
    ) -> TaskView:
        """Validate, persist and charge for a new task.

        Nothing is written when validation or the credit check fails. The
        initial status is `waiting_dependency` when dependencies are given,
        otherwise `approval_required` or `pending` depending on the type.
        """

        definition = self._task_types.get(task_type)
        if definition is None:
            raise InvalidTaskTypeError(f"Invalid task type: {task_type}")
        clean_title = title.strip()
        if not clean_title:
            raise EmptyTitleError("Task title is required.")

        dependency_ids = list(dict.fromkeys(int(item) for item in dependencies))
        missing = set(dependency_ids) - self.repository.existing_ids(dependency_ids)
        if missing:
            raise InvalidDependencyError(
                f"Invalid dependency task ID(s): {', '.join(str(i) for i in sorted(missing))}",
            )

        if dependency_ids:
            status = TaskStatus.WAITING_DEPENDENCY
        else:
            status = self._ready_status(task_type)

        def _charge(session: Session, task_id: int) -> None:
            self.ledger.debit_if_sufficient(
                user_id,
                definition.credits_cost,
                TransactionType.TASK_COST,
                task_id,
                notes=f"Task cost: {clean_title}",
                session=session,
            )

        with self.ledger.user_lock(user_id):
            task = self.repository.insert_task(
                TaskCreate(
                    user_id=user_id,
                    task_type=task_type,
                    title=clean_title,
                    status=status,
                    credits_cost=definition.credits_cost,
                    description=description,
                    inputs=dict(inputs or {}),
                    priority=clamp_priority(priority),
                    dependencies=dependency_ids,
                ),
                on_insert=_charge if definition.credits_cost > 0 else None,
            )

        self.repository.append_log(task.task_id, f"Task created: {clean_title}")
        if dependency_ids:
            self.repository.append_log(
                task.task_id,
                f"Task has {len(dependency_ids)} dependencies. "
                "It will start after all dependencies are completed.",
            )
        logger.info(
            "Created task %s (%s) for user %s with status %s",
            task.task_id,
            task_type,
            user_id,
            status.value,
        )
        self._notify(TaskEvent.CREATED, task)
        return task

    def get_task(self, task_id: int) -> TaskView | None:
        return self.repository.get_task(task_id)

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        user_id: int | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        return self.repository.list_tasks(status=status, user_id=user_id, limit=limit)

    def get_task_logs(self, task_id: int) -> list[TaskLogView]:
        self._require_task(task_id)
        return self.repository.list_logs(task_id)

    def log_task(
        self,
        task_id: int,
        message: str,
        level: TaskLogLevel | str = TaskLogLevel.INFO,
    ) -> int:
        self._require_task(task_id)
        return self.repository.append_log(task_id, message, TaskLogLevel(level))

    # -- user-driven transitions -----------------------------------------

    def approve_task(self, task_id: int) -> TaskView:
        task = self._require_task(task_id)
        if not self.repository.transition(
            task_id,
            from_statuses={TaskStatus.APPROVAL_REQUIRED},
            to_status=TaskStatus.PENDING,
        ):
            raise InvalidTransitionError(
                f"Task {task_id} is {task.status.value}; only tasks awaiting approval "
                "can be approved.",
            )
        self.repository.append_log(task_id, "Task approved and scheduled for processing.")
        approved = self._require_task(task_id)
        self._notify(TaskEvent.APPROVED, approved)
        if self.dispatch_trigger is not None:
            self.dispatch_trigger(task_id)
        return approved

    def cancel_task(self, task_id: int) -> TaskView:
        task = self._require_task(task_id)
        if not self.repository.transition(
            task_id,
            from_statuses=CANCELABLE_STATUSES,
            to_status=TaskStatus.CANCELED,
        ):
            raise InvalidTransitionError(
                f"Task {task_id} is {task.status.value}; only pending tasks or tasks "
                "awaiting approval can be canceled.",
            )
        logger.info("Canceled task %s", task_id)
        return self._require_task(task_id)

    def add_task_dependency(self, task_id: int, dependency_id: int) -> TaskView:
        task = self._require_task(task_id)
        if self.repository.get_task(dependency_id) is None:
            raise InvalidDependencyError(f"Invalid dependency task: {dependency_id}")
        if self._would_create_cycle(task_id, dependency_id):
            raise CircularDependencyError(
                f"Cannot add dependency {dependency_id} to task {task_id}: "
                "would create circular dependency.",
            )
        if dependency_id in task.dependencies:
            return task
        if task.status not in NOT_STARTED_STATUSES:
            raise InvalidTransitionError(
                f"Task {task_id} is {task.status.value}; dependencies can only be added "
                "before a task starts.",
            )

        if not self.repository.update_dependencies(
            task_id,
            dependencies=[*task.dependencies, dependency_id],
            from_statuses={task.status},
            to_status=TaskStatus.WAITING_DEPENDENCY,
        ):
            raise InvalidTransitionError(f"Task {task_id} changed concurrently; retry.")
        if task.status is not TaskStatus.WAITING_DEPENDENCY:
            self._log_status(task_id, TaskStatus.WAITING_DEPENDENCY)
        self.repository.append_log(task_id, f"Added dependency: Task ID {dependency_id}")
        return self._require_task(task_id)

    def remove_task_dependency(self, task_id: int, dependency_id: int) -> TaskView:
        task = self._require_task(task_id)
        if dependency_id not in task.dependencies:
            return task

        remaining = [item for item in task.dependencies if item != dependency_id]
        new_status: TaskStatus | None = None
        if task.status is TaskStatus.WAITING_DEPENDENCY and not remaining:
            new_status = self._ready_status(task.task_type)
        if not self.repository.update_dependencies(
            task_id,
            dependencies=remaining,
            from_statuses={task.status},
            to_status=new_status,
        ):
            raise InvalidTransitionError(f"Task {task_id} changed concurrently; retry.")
        if new_status is not None:
            self._log_status(task_id, new_status)
        self.repository.append_log(task_id, f"Removed dependency: Task ID {dependency_id}")
        return self._require_task(task_id)

    def update_task_priority(self, task_id: int, priority: int) -> TaskView:
        self._require_task(task_id)
        value = clamp_priority(priority)
        if not self.repository.update_priority(task_id, value):
            raise TaskNotFoundError(task_id)
        self.repository.append_log(task_id, f"Updated priority: {value}")
        return self._require_task(task_id)

    # -- scheduler passes -------------------------------------------------

    def check_dependency_tasks(self) -> int:
        """Promote waiting tasks whose dependencies have all reached a terminal state."""

        updated = 0
        for task in self.repository.list_waiting():
            dependency_ids = set(task.dependencies)
            statuses = self.repository.statuses_of(dependency_ids)
            if len(statuses) != len(dependency_ids):
                continue
            if not all(status.is_terminal for status in statuses.values()):
                continue
            if self.repository.transition(
                task.task_id,
                from_statuses={TaskStatus.WAITING_DEPENDENCY},
                to_status=self._ready_status(task.task_type),
            ):
                self.repository.append_log(
                    task.task_id,
                    "All dependencies completed. Task is ready for processing.",
                )
                updated += 1
        if updated:
            logger.info("Dependency check promoted %s task(s)", updated)
        return updated

    def process_task(self, task_id: int) -> bool:
        """Dispatch one pending task now; False when it is not pending or fails."""

        task = self.repository.get_task(task_id)
        if task is None or task.status is not TaskStatus.PENDING:
            return False
        processor = self._processors.get(task.task_type)
        if processor is None:
            self._fail_without_processor(task)
            return False
        if not self.repository.transition(
            task_id,
            from_statuses={TaskStatus.PENDING},
            to_status=TaskStatus.PROCESSING,
        ):
            return False
        return self._run_processor(self._require_task(task_id), processor)

    def process_pending_tasks(
        self,
        limit: int | None = None,
        executor: Executor | None = None,
    ) -> int:
        """Claim up to `limit` pending tasks in dispatch order and run them.

        Returns the number of tasks moved to `processing`. A dependency check
        runs after the pass.
        """

        batch = self.batch_limit if limit is None else limit
        claimed: list[tuple[TaskView, TaskProcessor]] = []
        for task in self.repository.list_pending(limit=batch):
            processor = self._processors.get(task.task_type)
            if processor is None:
                self._fail_without_processor(task)
                continue
            if self.repository.transition(
                task.task_id,
                from_statuses={TaskStatus.PENDING},
                to_status=TaskStatus.PROCESSING,
            ):
                claimed.append((self._require_task(task.task_id), processor))

        if executor is None:
            for task, processor in claimed:
                self._run_processor(task, processor)
        else:
            futures = [
                executor.submit(self._run_processor, task, processor) for task, processor in claimed
            ]
            wait(futures)

        if claimed:
            logger.info("Dispatched %s pending task(s)", len(claimed))
        self.check_dependency_tasks()
        return len(claimed)

    # -- internals ----------------------------------------------------------

    def _run_processor(self, task: TaskView, processor: TaskProcessor) -> bool:
        try:
            processor.validate_inputs(task.inputs)
            outputs = processor.process(task)
        except ProcessingError as error:
            self.repository.append_log(
                task.task_id,
                f"Error processing task: {error.message}",
                TaskLogLevel.ERROR,
            )
            return self._finish_failed(task, error=error.message)
        except Exception as error:  # noqa: BLE001
            logger.exception("Processor for task %s raised", task.task_id)
            self.repository.append_log(
                task.task_id,
                f"Exception processing task: {error}",
                TaskLogLevel.ERROR,
            )
            return self._finish_failed(task, error=str(error))

        if not isinstance(outputs, dict):
            self.repository.append_log(
                task.task_id,
                "Error processing task: processor returned no outputs.",
                TaskLogLevel.ERROR,
            )
            return self._finish_failed(task, error="processor returned no outputs")

        if not self.repository.transition(
            task.task_id,
            from_statuses={TaskStatus.PROCESSING},
            to_status=TaskStatus.COMPLETED,
            outputs=outputs,
        ):
            logger.warning("Task %s left processing before completion was recorded", task.task_id)
            return False
        self.repository.append_log(task.task_id, "Task outputs updated.")
        self._notify(TaskEvent.COMPLETED, task)
        return True

    def _finish_failed(self, task: TaskView, *, error: str) -> bool:
        if self.repository.transition(
            task.task_id,
            from_statuses={TaskStatus.PROCESSING},
            to_status=TaskStatus.FAILED,
        ):
            self._notify(TaskEvent.FAILED, task, error=error)
        return False

    def _fail_without_processor(self, task: TaskView) -> None:
        self.repository.append_log(
            task.task_id,
            "No processor found for this task type.",
            TaskLogLevel.ERROR,
        )
        if self.repository.transition(
            task.task_id,
            from_statuses={TaskStatus.PENDING},
            to_status=TaskStatus.FAILED,
        ):
            self._notify(TaskEvent.FAILED, task, error="no processor")

    def _ready_status(self, task_type: str) -> TaskStatus:
        definition = self._task_types.get(task_type)
        if definition is not None and definition.requires_approval:
            return TaskStatus.APPROVAL_REQUIRED
        return TaskStatus.PENDING

    def _would_create_cycle(self, task_id: int, dependency_id: int) -> bool:
        """True when `task_id` is reachable from `dependency_id` (or they are equal)."""

        stack = [dependency_id]
        visited: set[int] = set()
        while stack:
            current = stack.pop()
            if current == task_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            node = self.repository.get_task(current)
            if node is not None:
                stack.extend(node.dependencies)
        return False

    def _require_task(self, task_id: int) -> TaskView:
        task = self.repository.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _log_status(self, task_id: int, status: TaskStatus) -> None:
        self.repository.append_log(task_id, f"Task status updated to: {status.label}")

    def _notify(self, event: TaskEvent, task: TaskView, **extra: Any) -> None:
        self.notifications.notify(
            event,
            {
                "task_id": task.task_id,
                "task_type": task.task_type,
                "user_id": task.user_id,
                **extra,
            },
        )
