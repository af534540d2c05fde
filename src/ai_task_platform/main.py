"""CLI entrypoint for ai-tasks."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from ai_task_platform import __version__
from ai_task_platform.api.logs import UsagePeriod
from ai_task_platform.api.service import ServiceName
from ai_task_platform.errors import TaskPlatformError
from ai_task_platform.tasks.controllers import (
    ApiUsageCommand,
    ApproveCommand,
    CacheCommand,
    CreateTaskCommand,
    CreditsCommand,
    DependencyCommand,
    ListTasksCommand,
    PriorityCommand,
    TaskCliController,
    TaskIdCommand,
    WorkerCommand,
)
from ai_task_platform.tasks.models import TaskStatus

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
user_option = click.option(
    "--user-id",
    type=int,
    default=None,
    help="User id; defaults to AI_TASKS_USER_ID.",
)


@click.group()
@click.version_option(version=__version__, prog_name="ai-tasks")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level.",
)
def ai_tasks(log_level: str) -> None:
    """Credit-metered AI/SEO task engine CLI."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@ai_tasks.command("types")
@db_path_option
def types_command(db_path: Path | None) -> None:
    """List registered task types."""

    _run(lambda: TASK_CONTROLLER.list_types(db_path))


@ai_tasks.command("create")
@db_path_option
@click.option("--type", "task_type", required=True, help="Task type key.")
@click.option("--title", required=True, help="Task title.")
@click.option("--description", default="", help="Task description.")
@click.option("--inputs-json", default=None, help="Task inputs as a JSON object.")
@click.option(
    "--input",
    "inputs",
    multiple=True,
    help="Task input as key=value (value may be JSON). Can be repeated.",
)
@click.option(
    "--priority",
    type=click.IntRange(0, 100, clamp=True),
    default=50,
    show_default=True,
    help="Dispatch priority; higher runs first.",
)
@click.option(
    "--depends-on",
    "dependencies",
    type=int,
    multiple=True,
    help="Task id this task depends on. Can be repeated.",
)
@user_option
def create_command(  # noqa: PLR0913
    db_path: Path | None,
    task_type: str,
    title: str,
    description: str,
    inputs_json: str | None,
    inputs: tuple[str, ...],
    priority: int,
    dependencies: tuple[int, ...],
    user_id: int | None,
) -> None:
    """Create a task and charge its credit cost."""

    _run(
        lambda: TASK_CONTROLLER.create_task(
            CreateTaskCommand(
                db_path=db_path,
                task_type=task_type,
                title=title,
                description=description,
                inputs_json=inputs_json,
                inputs=inputs,
                priority=priority,
                dependencies=dependencies,
                user_id=user_id,
            ),
        ),
    )


@ai_tasks.command("tasks")
@db_path_option
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Filter by status.",
)
@user_option
@click.option("--limit", type=int, default=50, show_default=True, help="Max rows.")
def tasks_command(
    db_path: Path | None,
    status: str | None,
    user_id: int | None,
    limit: int,
) -> None:
    """List tasks, newest first."""

    _run(
        lambda: TASK_CONTROLLER.list_tasks(
            ListTasksCommand(db_path=db_path, status=status, user_id=user_id, limit=limit),
        ),
    )


@ai_tasks.command("inspect")
@db_path_option
@click.option("--task-id", type=int, required=True, help="Task id.")
def inspect_command(db_path: Path | None, task_id: int) -> None:
    """Show one task with outputs and logs."""

    _run(lambda: TASK_CONTROLLER.inspect_task(TaskIdCommand(db_path=db_path, task_id=task_id)))


@ai_tasks.command("approve")
@db_path_option
@click.option("--task-id", type=int, required=True, help="Task id.")
@click.option(
    "--dispatch/--no-dispatch",
    default=True,
    show_default=True,
    help="Run the approved task immediately.",
)
def approve_command(db_path: Path | None, task_id: int, dispatch: bool) -> None:
    """Approve a task awaiting approval."""

    _run(
        lambda: TASK_CONTROLLER.approve_task(
            ApproveCommand(db_path=db_path, task_id=task_id, dispatch=dispatch),
        ),
    )


@ai_tasks.command("cancel")
@db_path_option
@click.option("--task-id", type=int, required=True, help="Task id.")
def cancel_command(db_path: Path | None, task_id: int) -> None:
    """Cancel a pending task or a task awaiting approval."""

    _run(lambda: TASK_CONTROLLER.cancel_task(TaskIdCommand(db_path=db_path, task_id=task_id)))


@ai_tasks.command("depend")
@db_path_option
@click.option("--task-id", type=int, required=True, help="Task id.")
@click.option("--on", "dependency_id", type=int, required=True, help="Dependency task id.")
def depend_command(db_path: Path | None, task_id: int, dependency_id: int) -> None:
    """Make a task wait for another task."""

    _run(
        lambda: TASK_CONTROLLER.add_dependency(
            DependencyCommand(db_path=db_path, task_id=task_id, dependency_id=dependency_id),
        ),
    )


@ai_tasks.command("undepend")
@db_path_option
@click.option("--task-id", type=int, required=True, help="Task id.")
@click.option("--on", "dependency_id", type=int, required=True, help="Dependency task id.")
def undepend_command(db_path: Path | None, task_id: int, dependency_id: int) -> None:
    """Remove a dependency from a task."""

    _run(
        lambda: TASK_CONTROLLER.remove_dependency(
            DependencyCommand(db_path=db_path, task_id=task_id, dependency_id=dependency_id),
        ),
    )


@ai_tasks.command("priority")
@db_path_option
@click.option("--task-id", type=int, required=True, help="Task id.")
@click.option("--value", "priority", type=int, required=True, help="Priority 0-100.")
def priority_command(db_path: Path | None, task_id: int, priority: int) -> None:
    """Change a task's dispatch priority."""

    _run(
        lambda: TASK_CONTROLLER.update_priority(
            PriorityCommand(db_path=db_path, task_id=task_id, priority=priority),
        ),
    )


@ai_tasks.command("worker")
@db_path_option
@click.option("--once", is_flag=True, help="Run one dependency check and dispatch pass.")
@click.option(
    "--max-cycles",
    type=int,
    default=None,
    help="Stop after this many scheduler ticks.",
)
def worker_command(db_path: Path | None, once: bool, max_cycles: int | None) -> None:
    """Run the task scheduler."""

    _run(
        lambda: TASK_CONTROLLER.run_worker(
            WorkerCommand(db_path=db_path, once=once, max_cycles=max_cycles),
        ),
    )


@ai_tasks.group()
def credits() -> None:
    """Credit ledger commands."""


@credits.command("balance")
@db_path_option
@user_option
def credits_balance(db_path: Path | None, user_id: int | None) -> None:
    """Show balance and recent ledger entries."""

    _run(lambda: TASK_CONTROLLER.credit_balance(CreditsCommand(db_path=db_path, user_id=user_id)))


@credits.command("grant")
@db_path_option
@user_option
@click.option("--amount", type=click.IntRange(min=1), required=True, help="Credits to add.")
@click.option("--bonus", is_flag=True, help="Record as bonus credits.")
def credits_grant(db_path: Path | None, user_id: int | None, amount: int, bonus: bool) -> None:
    """Grant credits to a user."""

    _run(
        lambda: TASK_CONTROLLER.grant_credits(
            CreditsCommand(db_path=db_path, user_id=user_id, amount=amount, bonus=bonus),
        ),
    )


@ai_tasks.group()
def cache() -> None:
    """API response cache commands."""


@cache.command("stats")
@db_path_option
def cache_stats(db_path: Path | None) -> None:
    """Show cache entry counts by service and endpoint."""

    _run(lambda: TASK_CONTROLLER.cache_stats(CacheCommand(db_path=db_path)))


@cache.command("clear")
@db_path_option
@click.option(
    "--service",
    type=click.Choice([name.value for name in ServiceName]),
    default=None,
    help="Only clear this service.",
)
@click.option("--endpoint", default=None, help="Only clear this endpoint (needs --service).")
def cache_clear(db_path: Path | None, service: str | None, endpoint: str | None) -> None:
    """Clear cached API responses."""

    _run(
        lambda: TASK_CONTROLLER.cache_clear(
            CacheCommand(db_path=db_path, service=service, endpoint=endpoint),
        ),
    )


@ai_tasks.command("api-usage")
@db_path_option
@click.option(
    "--service",
    type=click.Choice([name.value for name in ServiceName]),
    required=True,
    help="API service.",
)
@click.option(
    "--period",
    type=click.Choice([period.value for period in UsagePeriod]),
    default=UsagePeriod.MONTH.value,
    show_default=True,
    help="Aggregation window.",
)
@user_option
def api_usage_command(
    db_path: Path | None,
    service: str,
    period: str,
    user_id: int | None,
) -> None:
    """Show API call counts and credits spent."""

    _run(
        lambda: TASK_CONTROLLER.api_usage(
            ApiUsageCommand(db_path=db_path, service=service, period=period, user_id=user_id),
        ),
    )


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (TaskPlatformError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ai_tasks()
