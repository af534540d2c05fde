"""Persistent task store backed by SQLModel + SQLite."""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable
from pathlib import Path
from typing import Any

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from ai_task_platform.storage.alembic_runner import upgrade_head
from ai_task_platform.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    dump_json,
    load_json,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from ai_task_platform.storage.sqlmodel_models import Task, TaskLog
from ai_task_platform.tasks.models import (
    TaskCreate,
    TaskLogLevel,
    TaskLogView,
    TaskStatus,
    TaskView,
)


class TaskRepository:
    """Task and task-log persistence facade."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def insert_task(
        self,
        payload: TaskCreate,
        *,
        on_insert: Callable[[Session, int], object] | None = None,
    ) -> TaskView:
        """Insert a task; `on_insert` may add rows to the same transaction.

        An exception from `on_insert` rolls the whole insert back.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = Task(
                user_id=payload.user_id,
                task_type=payload.task_type,
                status=payload.status.value,
                title=payload.title,
                description=payload.description,
                inputs_json=dump_json(payload.inputs),
                outputs_json=None,
                credits_cost=payload.credits_cost,
                priority=payload.priority,
                dependencies_json=dump_json(payload.dependencies),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            if on_insert is not None:
                session.flush()
                on_insert(session, row.id or 0)
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def get_task(self, task_id: int) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            return _to_task_view(row) if row is not None else None

    def existing_ids(self, task_ids: Iterable[int]) -> set[int]:
        ids = set(task_ids)
        if not ids:
            return set()
        with Session(self.engine) as session:
            found = session.exec(select(Task.id).where(col(Task.id).in_(ids))).all()
        return {task_id for task_id in found if task_id is not None}

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        user_id: int | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """Most recent tasks first."""

        with Session(self.engine) as session:
            query = select(Task)
            if status is not None:
                query = query.where(Task.status == status.value)
            if user_id is not None:
                query = query.where(Task.user_id == user_id)
            rows = session.exec(query.order_by(col(Task.id).desc()).limit(limit)).all()
        return [_to_task_view(row) for row in rows]

    def list_pending(self, *, limit: int) -> list[TaskView]:
        """Dispatch order: priority descending, then insertion order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(Task)
                .where(Task.status == TaskStatus.PENDING.value)
                .order_by(col(Task.priority).desc(), col(Task.id).asc())
                .limit(limit),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_waiting(self) -> list[TaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Task)
                .where(Task.status == TaskStatus.WAITING_DEPENDENCY.value)
                .order_by(col(Task.id).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def statuses_of(self, task_ids: Collection[int]) -> dict[int, TaskStatus]:
        if not task_ids:
            return {}
        with Session(self.engine) as session:
            rows = session.exec(
                select(Task.id, Task.status).where(col(Task.id).in_(list(task_ids))),
            ).all()
        return {task_id: TaskStatus(status) for task_id, status in rows if task_id is not None}

    def transition(
        self,
        task_id: int,
        *,
        from_statuses: Collection[TaskStatus],
        to_status: TaskStatus,
        outputs: dict[str, Any] | None = None,
    ) -> bool:
        """Compare-and-set status change; False when the task was not in `from_statuses`."""

        now = to_db_datetime(utc_now())
        values: dict[str, Any] = {"status": to_status.value, "updated_at": now}
        if to_status is TaskStatus.PROCESSING:
            values["started_at"] = now
        if to_status.is_terminal:
            values["completed_at"] = now
        if outputs is not None:
            values["outputs_json"] = dump_json(outputs)

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.id) == task_id,
                    col(Task.status).in_([status.value for status in from_statuses]),
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.add(
                TaskLog(
                    task_id=task_id,
                    message=f"Task status updated to: {to_status.label}",
                    log_level=TaskLogLevel.INFO.value,
                    created_at=now,
                ),
            )
            session.commit()
            return True

    def update_dependencies(
        self,
        task_id: int,
        *,
        dependencies: list[int],
        from_statuses: Collection[TaskStatus],
        to_status: TaskStatus | None = None,
    ) -> bool:
        """Replace the dependency list, optionally moving status, if still in `from_statuses`."""

        now = to_db_datetime(utc_now())
        values: dict[str, Any] = {"dependencies_json": dump_json(dependencies), "updated_at": now}
        if to_status is not None:
            values["status"] = to_status.value

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.id) == task_id,
                    col(Task.status).in_([status.value for status in from_statuses]),
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def update_priority(self, task_id: int, priority: int) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(col(Task.id) == task_id)
                .values(priority=priority, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def append_log(
        self,
        task_id: int,
        message: str,
        level: TaskLogLevel = TaskLogLevel.INFO,
    ) -> int:
        with Session(self.engine) as session:
            row = TaskLog(
                task_id=task_id,
                message=message,
                log_level=level.value,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.id or 0

    def list_logs(self, task_id: int) -> list[TaskLogView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskLog).where(TaskLog.task_id == task_id).order_by(col(TaskLog.id).asc()),
            ).all()
        return [
            TaskLogView(
                log_id=row.id or 0,
                task_id=row.task_id,
                message=row.message,
                level=TaskLogLevel(row.log_level),
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]


def _to_task_view(row: Task) -> TaskView:
    outputs = load_json(row.outputs_json, None)
    return TaskView(
        task_id=row.id or 0,
        user_id=row.user_id,
        task_type=row.task_type,
        status=TaskStatus(row.status),
        title=row.title,
        description=row.description,
        inputs=load_json(row.inputs_json, {}),
        outputs=outputs if isinstance(outputs, dict) else None,
        credits_cost=row.credits_cost,
        priority=row.priority,
        dependencies=[int(item) for item in load_json(row.dependencies_json, [])],
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
    )
