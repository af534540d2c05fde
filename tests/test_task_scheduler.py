from __future__ import annotations

from typing import Any

import allure
import pytest

from ai_task_platform.config import SchedulerSettings
from ai_task_platform.credits.ledger import CreditLedger
from ai_task_platform.tasks.engine import TaskEngine
from ai_task_platform.tasks.models import TaskStatus, TaskView
from ai_task_platform.tasks.scheduler import TaskScheduler

pytestmark = [
    allure.epic("Task Engine"),
    allure.feature("Scheduler"),
]


class _Clock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


class _CountingProcessor:
    def __init__(self) -> None:
        self.calls = 0

    def validate_inputs(self, inputs: dict[str, Any]) -> None:
        return None

    def process(self, task: TaskView) -> dict[str, Any]:
        self.calls += 1
        return {"n": self.calls}


@pytest.fixture()
def processor(engine: TaskEngine, ledger: CreditLedger) -> _CountingProcessor:
    ledger.grant(1, 1000)
    counting = _CountingProcessor()
    engine.register_task_processor("keyword_research", counting)
    engine.register_task_processor("content_generation", counting)
    return counting


def _settings(**overrides: Any) -> SchedulerSettings:
    values: dict[str, Any] = {
        "tick_seconds": 0.01,
        "dependency_check_interval_seconds": 300,
        "dispatch_interval_seconds": 3600,
    }
    values.update(overrides)
    return SchedulerSettings(**values)


def test_tick_runs_passes_only_when_due(engine: TaskEngine, processor) -> None:
    clock = _Clock()
    scheduler = TaskScheduler(engine=engine, settings=_settings(), clock=clock)
    engine.create_task(1, "keyword_research", "First")

    first = scheduler.tick()
    assert (first.dependency_checks, first.dispatch_passes, first.dispatched) == (1, 1, 1)

    engine.create_task(1, "keyword_research", "Second")
    clock.now += 299
    idle = scheduler.tick()
    assert (idle.dependency_checks, idle.dispatch_passes) == (0, 0)

    clock.now += 1
    dependency_only = scheduler.tick()
    assert (dependency_only.dependency_checks, dependency_only.dispatch_passes) == (1, 0)

    clock.now += 3300
    dispatch = scheduler.tick()
    assert (dispatch.dispatch_passes, dispatch.dispatched) == (1, 1)
    assert processor.calls == 2


def test_approval_triggers_immediate_dispatch(engine: TaskEngine, processor) -> None:
    clock = _Clock()
    scheduler = TaskScheduler(engine=engine, settings=_settings(), clock=clock)
    scheduler.tick()
    task = engine.create_task(1, "content_generation", "Article", {"topic": "seo"})

    engine.approve_task(task.task_id)
    assert scheduler.pending_requests() == [task.task_id]

    summary = scheduler.tick()

    assert summary.immediate_dispatches == 1
    assert summary.dispatch_passes == 0
    assert engine.get_task(task.task_id).status is TaskStatus.COMPLETED
    assert scheduler.pending_requests() == []


def test_dispatch_requested_skips_tasks_no_longer_pending(engine: TaskEngine, processor) -> None:
    scheduler = TaskScheduler(engine=engine, settings=_settings())
    task = engine.create_task(1, "content_generation", "Article", {"topic": "seo"})
    engine.approve_task(task.task_id)
    engine.cancel_task(task.task_id)

    assert scheduler.dispatch_requested() == 0
    assert processor.calls == 0


def test_run_once_promotes_then_dispatches(engine: TaskEngine, processor) -> None:
    scheduler = TaskScheduler(engine=engine, settings=_settings())
    base = engine.create_task(1, "keyword_research", "Base")
    follow = engine.create_task(1, "keyword_research", "Follow", dependencies=[base.task_id])

    first = scheduler.run_once()
    assert first.dispatched == 1
    assert engine.get_task(follow.task_id).status is TaskStatus.PENDING

    second = scheduler.run_once()
    assert second.dispatched == 1
    assert engine.get_task(follow.task_id).status is TaskStatus.COMPLETED


def test_run_loop_stops_after_max_cycles(engine: TaskEngine, processor) -> None:
    scheduler = TaskScheduler(engine=engine, settings=_settings(max_workers=2))
    for index in range(3):
        engine.create_task(1, "keyword_research", f"T{index}")

    summary = scheduler.run_loop(max_cycles=2)

    assert summary.cycles == 2
    assert summary.dispatched == 3
    assert processor.calls == 3


def test_run_loop_survives_tick_errors(engine: TaskEngine, monkeypatch) -> None:
    scheduler = TaskScheduler(engine=engine, settings=_settings())

    def _broken() -> int:
        raise RuntimeError("db locked")

    monkeypatch.setattr(engine, "check_dependency_tasks", _broken)

    summary = scheduler.run_loop(max_cycles=3)

    assert summary.cycles == 3


def test_stop_ends_loop(engine: TaskEngine) -> None:
    scheduler = TaskScheduler(engine=engine, settings=_settings())
    scheduler.stop()

    assert scheduler.run_loop().cycles == 0
