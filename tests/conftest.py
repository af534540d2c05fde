"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import replace
from pathlib import Path

import httpx
import pytest

from ai_task_platform.api.cache import ApiCache
from ai_task_platform.api.logs import ApiLogRepository
from ai_task_platform.api.service import ApiCredentials, ServiceContext
from ai_task_platform.config import ApiSettings, Settings
from ai_task_platform.credits.ledger import CreditLedger
from ai_task_platform.http.client import ApiHttpClient
from ai_task_platform.runtime import Platform, build_platform
from ai_task_platform.storage.alembic_runner import upgrade_head
from ai_task_platform.tasks.engine import TaskEngine
from ai_task_platform.tasks.notifications import RecordingNotificationSink
from ai_task_platform.tasks.repository import TaskRepository

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "platform.db"
    upgrade_head(path)
    return path


@pytest.fixture()
def ledger(db_path: Path) -> Iterator[CreditLedger]:
    instance = CreditLedger(db_path)
    yield instance
    instance.close()


@pytest.fixture()
def repository(db_path: Path) -> Iterator[TaskRepository]:
    instance = TaskRepository(db_path)
    yield instance
    instance.close()


@pytest.fixture()
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture()
def engine(
    repository: TaskRepository,
    ledger: CreditLedger,
    notifications: RecordingNotificationSink,
) -> TaskEngine:
    return TaskEngine(repository=repository, ledger=ledger, notifications=notifications)


@pytest.fixture()
def service_context(db_path: Path, ledger: CreditLedger) -> Iterator[Callable[..., ServiceContext]]:
    """Build a ServiceContext whose HTTP client routes through an httpx.MockTransport."""

    opened: list[object] = []

    def _build(handler: Handler | None = None) -> ServiceContext:
        cache = ApiCache(db_path)
        api_logs = ApiLogRepository(db_path)
        client = ApiHttpClient(
            transport=httpx.MockTransport(handler or _unexpected_request),
        )
        opened.extend([cache, api_logs, client])
        return ServiceContext(ledger=ledger, cache=cache, api_logs=api_logs, http_client=client)

    yield _build
    for resource in opened:
        resource.close()  # type: ignore[attr-defined]


@pytest.fixture()
def credentials() -> ApiCredentials:
    return ApiCredentials(api_key="test-key", api_secret="test-secret")


@pytest.fixture()
def sandbox_platform(tmp_path: Path) -> Iterator[Platform]:
    """Fully wired platform with sandboxed providers and no network access."""

    settings = replace(
        Settings(db_path=tmp_path / "sandbox.db"),
        api=ApiSettings(sandbox_mode=True),
    )
    platform = build_platform(
        settings,
        http_client=ApiHttpClient(transport=httpx.MockTransport(_unexpected_request)),
        notifications=RecordingNotificationSink(),
    )
    yield platform
    platform.api_manager.context.http_client.close()
    platform.close()


@pytest.fixture()
def sandbox_env(monkeypatch, tmp_path: Path) -> Path:
    """Environment for CLI tests: sandboxed providers and a temp database."""

    db = tmp_path / "cli.db"
    monkeypatch.setenv("AI_TASKS_API_SANDBOX", "1")
    monkeypatch.setenv("AI_TASKS_USER_ID", "7")
    monkeypatch.delenv("AI_TASKS_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("AI_TASKS_DATAFORSEO_LOGIN", raising=False)
    monkeypatch.delenv("AI_TASKS_DATAFORSEO_PASSWORD", raising=False)
    return db


def _unexpected_request(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"Unexpected HTTP request: {request.method} {request.url}")
