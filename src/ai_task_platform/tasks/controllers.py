"""Controllers for task, credit and cache CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ai_task_platform.api.logs import UsagePeriod
from ai_task_platform.api.service import ServiceName
from ai_task_platform.config import Settings
from ai_task_platform.credits.ledger import CreditsType
from ai_task_platform.runtime import open_platform
from ai_task_platform.tasks.models import TaskStatus, TaskView
from ai_task_platform.tasks.scheduler import TaskScheduler


@dataclass(slots=True)
class CreateTaskCommand:
    """CLI input for task creation."""

    db_path: Path | None
    task_type: str
    title: str
    description: str
    inputs_json: str | None
    inputs: tuple[str, ...]
    priority: int
    dependencies: tuple[int, ...]
    user_id: int | None


@dataclass(slots=True)
class ListTasksCommand:
    db_path: Path | None
    status: str | None
    user_id: int | None
    limit: int


@dataclass(slots=True)
class TaskIdCommand:
    """CLI input for single-task operations."""

    db_path: Path | None
    task_id: int


@dataclass(slots=True)
class ApproveCommand:
    db_path: Path | None
    task_id: int
    dispatch: bool = True


@dataclass(slots=True)
class DependencyCommand:
    db_path: Path | None
    task_id: int
    dependency_id: int


@dataclass(slots=True)
class PriorityCommand:
    db_path: Path | None
    task_id: int
    priority: int


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for scheduler execution."""

    db_path: Path | None
    once: bool
    max_cycles: int | None


@dataclass(slots=True)
class CreditsCommand:
    db_path: Path | None
    user_id: int | None
    amount: int = 0
    bonus: bool = False


@dataclass(slots=True)
class CacheCommand:
    db_path: Path | None
    service: str | None = None
    endpoint: str | None = None


@dataclass(slots=True)
class ApiUsageCommand:
    db_path: Path | None
    service: str
    period: str
    user_id: int | None


class TaskCliController:
    """Coordinates task engine, scheduler, credit and cache CLI operations."""

    def list_types(self, db_path: Path | None) -> list[str]:
        settings = Settings.from_env(db_path=db_path)
        with open_platform(settings) as platform:
            engine = platform.engine
            return [
                f"{definition.key}: {definition.name} cost={definition.credits_cost} "
                f"approval={'yes' if definition.requires_approval else 'no'} "
                f"category={definition.category} "
                f"processor={'yes' if engine.has_processor(definition.key) else 'no'}"
                for definition in engine.get_task_types()
            ]

    def create_task(self, command: CreateTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        inputs = parse_inputs(command.inputs_json, command.inputs)
        with open_platform(settings) as platform:
            user_id = _user_id(command.user_id, settings)
            task = platform.engine.create_task(
                user_id,
                command.task_type,
                command.title,
                inputs,
                description=command.description,
                priority=command.priority,
                dependencies=command.dependencies,
            )
            balance = platform.ledger.get_balance(user_id)
        return [
            f"Task created: task_id={task.task_id} type={task.task_type} "
            f"status={task.status.value} priority={task.priority}",
            f"Credits charged: {task.credits_cost} (balance={balance})",
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = TaskStatus(command.status) if command.status else None
        with open_platform(settings) as platform:
            tasks = platform.engine.list_tasks(
                status=status,
                user_id=command.user_id,
                limit=command.limit,
            )
        if not tasks:
            return ["No tasks found."]
        return [_task_line(task) for task in tasks]

    def inspect_task(self, command: TaskIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            task = platform.engine.get_task(command.task_id)
            if task is None:
                return [f"Task not found: {command.task_id}"]
            logs = platform.engine.get_task_logs(command.task_id)

        duration = task.duration_seconds
        lines = [
            f"Task: {task.task_id}",
            f"Title: {task.title}",
            f"Type: {task.task_type}",
            f"Status: {task.status_label}",
            f"Priority: {task.priority}",
            f"Credits: {task.credits_cost}",
            f"Dependencies: {', '.join(str(i) for i in task.dependencies) or '-'}",
            f"Inputs: {json.dumps(task.inputs, ensure_ascii=False, sort_keys=True)}",
            f"Created: {task.created_at.isoformat()}",
            f"Started: {task.started_at.isoformat() if task.started_at else '-'}",
            f"Completed: {task.completed_at.isoformat() if task.completed_at else '-'}",
            f"Duration: {f'{duration:.2f}s' if duration is not None else '-'}",
        ]
        if task.outputs is not None:
            lines.append(f"Outputs: {json.dumps(task.outputs, ensure_ascii=False, default=str)}")
        lines.append(f"Logs: {len(logs)}")
        lines.extend(
            f"  [{entry.created_at.isoformat()}] {entry.level.value}: {entry.message}"
            for entry in logs
        )
        return lines

    def approve_task(self, command: ApproveCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            scheduler = TaskScheduler(engine=platform.engine, settings=settings.scheduler)
            task = platform.engine.approve_task(command.task_id)
            if command.dispatch:
                scheduler.dispatch_requested()
                task = platform.engine.get_task(command.task_id) or task
        return [
            f"Task approved: {command.task_id}",
            f"Status: {task.status.value}",
        ]

    def cancel_task(self, command: TaskIdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            platform.engine.cancel_task(command.task_id)
        return [f"Task canceled: {command.task_id}"]

    def add_dependency(self, command: DependencyCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            task = platform.engine.add_task_dependency(command.task_id, command.dependency_id)
        return [
            f"Dependency added: task_id={task.task_id} depends_on={command.dependency_id} "
            f"status={task.status.value}",
        ]

    def remove_dependency(self, command: DependencyCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            task = platform.engine.remove_task_dependency(command.task_id, command.dependency_id)
        return [
            f"Dependency removed: task_id={task.task_id} dependency={command.dependency_id} "
            f"status={task.status.value}",
        ]

    def update_priority(self, command: PriorityCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            task = platform.engine.update_task_priority(command.task_id, command.priority)
        return [f"Priority updated: task_id={task.task_id} priority={task.priority}"]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            scheduler = TaskScheduler(engine=platform.engine, settings=settings.scheduler)
            summary = (
                scheduler.run_once()
                if command.once
                else scheduler.run_loop(max_cycles=command.max_cycles)
            )
        return [
            "Scheduler summary: "
            f"cycles={summary.cycles} dependency_checks={summary.dependency_checks} "
            f"promoted={summary.promoted} dispatch_passes={summary.dispatch_passes} "
            f"dispatched={summary.dispatched} immediate={summary.immediate_dispatches}",
        ]

    def credit_balance(self, command: CreditsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            user_id = _user_id(command.user_id, settings)
            balance = platform.ledger.get_balance(user_id)
            entries = platform.ledger.list_entries(user_id, limit=10)
        lines = [f"User {user_id} balance: {balance}"]
        lines.extend(
            f"  #{entry.entry_id} {entry.credits_amount:+d} {entry.transaction_type.value} "
            f"ref={entry.reference_id if entry.reference_id is not None else '-'} "
            f"{entry.notes or ''}".rstrip()
            for entry in entries
        )
        return lines

    def grant_credits(self, command: CreditsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            user_id = _user_id(command.user_id, settings)
            platform.ledger.grant(
                user_id,
                command.amount,
                CreditsType.BONUS if command.bonus else CreditsType.REGULAR,
                notes="Granted from CLI",
            )
            balance = platform.ledger.get_balance(user_id)
        return [f"Granted {command.amount} credits to user {user_id} (balance={balance})"]

    def cache_stats(self, command: CacheCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            stats = platform.cache.get_cache_stats()
        lines = [
            f"Cached items: {stats['total_cached_items']} (expired={stats['expired_items']})",
            f"Default TTL: {stats['default_ttl']}s",
        ]
        lines.extend(f"  service {name}: {count}" for name, count in stats["by_service"].items())
        lines.extend(
            f"  endpoint {name}: {count}" for name, count in stats["by_endpoint"].items()
        )
        return lines

    def cache_clear(self, command: CacheCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            if command.service and command.endpoint:
                removed = platform.cache.clear_endpoint_cache(command.service, command.endpoint)
            elif command.service:
                removed = platform.cache.clear_service_cache(command.service)
            elif command.endpoint:
                raise ValueError("--endpoint requires --service")
            else:
                removed = platform.cache.clear_all_cache()
        return [f"Cache entries removed: {removed}"]

    def api_usage(self, command: ApiUsageCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_platform(settings) as platform:
            service = platform.api_manager.get_service(
                ServiceName(command.service),
                user_id=_user_id(command.user_id, settings),
            )
            if service is None:
                return [f"Service not available: {command.service}"]
            stats = service.get_usage_stats(UsagePeriod(command.period))
        lines = [
            f"{command.service} usage ({command.period}): calls={stats.call_count} "
            f"credits={stats.total_credits} errors={stats.error_count} "
            f"success_rate={stats.success_rate:.1f}% avg_duration={stats.avg_duration:.3f}s",
        ]
        lines.extend(
            f"  {usage.endpoint}: calls={usage.call_count} credits={usage.total_credits}"
            for usage in stats.endpoints
        )
        return lines


def parse_inputs(inputs_json: str | None, pairs: tuple[str, ...]) -> dict[str, Any]:
    """Merge a JSON object with `key=value` pairs; pair values may be JSON literals."""

    inputs: dict[str, Any] = {}
    if inputs_json:
        try:
            loaded = json.loads(inputs_json)
        except json.JSONDecodeError as error:
            raise ValueError(f"Invalid --inputs-json: {error}") from error
        if not isinstance(loaded, dict):
            raise ValueError("--inputs-json must be a JSON object")
        inputs.update(loaded)
    for pair in pairs:
        key, separator, raw = pair.partition("=")
        if not separator or not key.strip():
            raise ValueError(f"Invalid --input {pair!r}; expected key=value")
        try:
            value: Any = json.loads(raw)
        except json.JSONDecodeError:
            value = raw
        inputs[key.strip()] = value
    return inputs


def _user_id(explicit: int | None, settings: Settings) -> int:
    return explicit if explicit is not None else settings.user_context.user_id


def _task_line(task: TaskView) -> str:
    return (
        f"{task.task_id} [{task.status.value}] p={task.priority} {task.task_type} "
        f"user={task.user_id} deps={','.join(str(i) for i in task.dependencies) or '-'} "
        f"{task.title}"
    )
