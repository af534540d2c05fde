"""Polling scheduler that drives dependency checks and dispatch passes."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass

from ai_task_platform.config import SchedulerSettings
from ai_task_platform.tasks.engine import TaskEngine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SchedulerRunSummary:
    """Aggregate scheduler counters for CLI reporting."""

    cycles: int = 0
    dependency_checks: int = 0
    promoted: int = 0
    dispatch_passes: int = 0
    dispatched: int = 0
    immediate_dispatches: int = 0


class TaskScheduler:
    """Runs the engine's periodic passes and one-shot dispatch requests."""

    def __init__(
        self,
        *,
        engine: TaskEngine,
        settings: SchedulerSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.engine = engine
        self.settings = settings
        self._clock = clock
        self._requests: list[int] = []
        self._requests_lock = threading.Lock()
        self._stop_requested = False
        self._stop_signal_name: str | None = None
        self._next_dependency_check: float | None = None
        self._next_dispatch: float | None = None
        self._executor: ThreadPoolExecutor | None = None
        engine.dispatch_trigger = self.request_dispatch

    def request_dispatch(self, task_id: int) -> None:
        """Queue a task for dispatch on the next tick."""

        with self._requests_lock:
            if task_id not in self._requests:
                self._requests.append(task_id)

    def pending_requests(self) -> list[int]:
        with self._requests_lock:
            return list(self._requests)

    def run_once(self) -> SchedulerRunSummary:
        """Run queued dispatches, the dependency check and one dispatch pass now."""

        summary = SchedulerRunSummary(cycles=1)
        self._drain_requests(summary)
        self._dependency_pass(summary)
        self._dispatch_pass(summary)
        return summary

    def tick(self) -> SchedulerRunSummary:
        """Run whatever is due at the current clock reading."""

        summary = SchedulerRunSummary(cycles=1)
        now = self._clock()
        self._drain_requests(summary)
        if self._next_dependency_check is None or now >= self._next_dependency_check:
            self._dependency_pass(summary)
            self._next_dependency_check = now + self.settings.dependency_check_interval_seconds
        if self._next_dispatch is None or now >= self._next_dispatch:
            self._dispatch_pass(summary)
            self._next_dispatch = now + self.settings.dispatch_interval_seconds
        return summary

    def run_loop(self, *, max_cycles: int | None = None) -> SchedulerRunSummary:
        """Tick until SIGINT/SIGTERM or `max_cycles` ticks have run."""

        aggregate = SchedulerRunSummary()
        with self._signal_handlers(), self._worker_pool():
            while not self._stop_requested:
                if max_cycles is not None and aggregate.cycles >= max_cycles:
                    break
                try:
                    summary = self.tick()
                except Exception:
                    logger.exception("Scheduler tick failed")
                    summary = SchedulerRunSummary(cycles=1)
                _accumulate(aggregate, summary)
                if max_cycles is not None and aggregate.cycles >= max_cycles:
                    break
                self._sleep_with_stop(self.settings.tick_seconds)
        if self._stop_signal_name is not None:
            logger.info("Scheduler stopped by %s", self._stop_signal_name)
        return aggregate

    def stop(self) -> None:
        self._stop_requested = True

    def dispatch_requested(self) -> int:
        """Run tasks queued by `request_dispatch`; returns how many completed."""

        with self._requests_lock:
            requested, self._requests = self._requests, []
        completed = 0
        for task_id in requested:
            if self.engine.process_task(task_id):
                completed += 1
            else:
                logger.debug("Requested dispatch for task %s did not complete", task_id)
        return completed

    def _drain_requests(self, summary: SchedulerRunSummary) -> None:
        summary.immediate_dispatches += self.dispatch_requested()

    def _dependency_pass(self, summary: SchedulerRunSummary) -> None:
        summary.dependency_checks += 1
        summary.promoted += self.engine.check_dependency_tasks()

    def _dispatch_pass(self, summary: SchedulerRunSummary) -> None:
        summary.dispatch_passes += 1
        summary.dispatched += self.engine.process_pending_tasks(
            limit=self.settings.batch_limit,
            executor=self._executor,
        )

    @contextmanager
    def _worker_pool(self) -> Iterator[None]:
        if self.settings.max_workers <= 1:
            yield
            return
        with ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="ai-task",
        ) as executor:
            self._executor = executor
            try:
                yield
            finally:
                self._executor = None

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self._stop_requested = True
            self._stop_signal_name = name

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _accumulate(aggregate: SchedulerRunSummary, summary: SchedulerRunSummary) -> None:
    aggregate.cycles += summary.cycles
    aggregate.dependency_checks += summary.dependency_checks
    aggregate.promoted += summary.promoted
    aggregate.dispatch_passes += summary.dispatch_passes
    aggregate.dispatched += summary.dispatched
    aggregate.immediate_dispatches += summary.immediate_dispatches
