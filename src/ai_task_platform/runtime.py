"""Wire storage, API services and the task engine from settings."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from ai_task_platform.api.cache import ApiCache
from ai_task_platform.api.logs import ApiLogRepository
from ai_task_platform.api.manager import ApiManager
from ai_task_platform.config import Settings
from ai_task_platform.credits.ledger import CreditLedger
from ai_task_platform.http.client import ApiHttpClient
from ai_task_platform.storage.alembic_runner import upgrade_head
from ai_task_platform.tasks.engine import TaskEngine
from ai_task_platform.tasks.notifications import NotificationSink
from ai_task_platform.tasks.processors import register_builtin_processors
from ai_task_platform.tasks.repository import TaskRepository


@dataclass(slots=True)
class Platform:
    """Every long-lived component bound to one database."""

    settings: Settings
    repository: TaskRepository
    ledger: CreditLedger
    cache: ApiCache
    api_logs: ApiLogRepository
    api_manager: ApiManager
    engine: TaskEngine

    def close(self) -> None:
        self.api_manager.close()
        self.repository.close()
        self.ledger.close()
        self.cache.close()
        self.api_logs.close()


def build_platform(
    settings: Settings,
    *,
    http_client: ApiHttpClient | None = None,
    notifications: NotificationSink | None = None,
) -> Platform:
    """Migrate the schema and build all components with built-in processors registered."""

    settings.validate()
    upgrade_head(settings.db_path)
    timeout = settings.busy_timeout_ms
    repository = TaskRepository(settings.db_path, busy_timeout_ms=timeout)
    ledger = CreditLedger(settings.db_path, busy_timeout_ms=timeout)
    cache = ApiCache(
        settings.db_path,
        default_ttl=settings.api.cache_ttl_seconds,
        busy_timeout_ms=timeout,
    )
    api_logs = ApiLogRepository(settings.db_path, busy_timeout_ms=timeout)
    api_manager = ApiManager(
        settings=settings.api,
        ledger=ledger,
        cache=cache,
        api_logs=api_logs,
        http_client=http_client,
    )
    engine = TaskEngine(
        repository=repository,
        ledger=ledger,
        notifications=notifications,
        batch_limit=settings.scheduler.batch_limit,
    )
    register_builtin_processors(engine, api_manager)
    return Platform(
        settings=settings,
        repository=repository,
        ledger=ledger,
        cache=cache,
        api_logs=api_logs,
        api_manager=api_manager,
        engine=engine,
    )


@contextmanager
def open_platform(
    settings: Settings,
    *,
    http_client: ApiHttpClient | None = None,
) -> Iterator[Platform]:
    platform = build_platform(settings, http_client=http_client)
    try:
        yield platform
    finally:
        platform.close()
