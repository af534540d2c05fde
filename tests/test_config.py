from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import allure
import pytest

from ai_task_platform.config import ApiSettings, SchedulerSettings, Settings

pytestmark = [
    allure.epic("Platform"),
    allure.feature("Configuration"),
]


def test_from_env_reads_prefixed_variables(monkeypatch) -> None:
    monkeypatch.setenv("AI_TASKS_DB_PATH", "/tmp/tasks.db")
    monkeypatch.setenv("AI_TASKS_MAX_WORKERS", "4")
    monkeypatch.setenv("AI_TASKS_DISPATCH_INTERVAL_SECONDS", "60")
    monkeypatch.setenv("AI_TASKS_OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("AI_TASKS_API_SANDBOX", "yes")
    monkeypatch.setenv("AI_TASKS_API_CACHE", "off")
    monkeypatch.setenv("AI_TASKS_USER_ID", "12")

    settings = Settings.from_env()

    assert settings.db_path == Path("/tmp/tasks.db")
    assert settings.scheduler.max_workers == 4
    assert settings.scheduler.dispatch_interval_seconds == 60
    assert settings.scheduler.dependency_check_interval_seconds == 300
    assert settings.api.openai_api_key == "sk-env"
    assert settings.api.sandbox_mode is True
    assert settings.api.use_caching is False
    assert settings.user_context.user_id == 12


def test_explicit_db_path_wins(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AI_TASKS_DB_PATH", "/tmp/ignored.db")

    assert Settings.from_env(db_path=tmp_path / "x.db").db_path == tmp_path / "x.db"


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("AI_TASKS_API_SANDBOX", "maybe")

    with pytest.raises(ValueError, match="AI_TASKS_API_SANDBOX"):
        Settings.from_env()


def test_defaults_validate() -> None:
    Settings().validate()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(busy_timeout_ms=0), "BUSY_TIMEOUT"),
        (Settings(scheduler=SchedulerSettings(tick_seconds=0)), "TICK_SECONDS"),
        (Settings(scheduler=SchedulerSettings(batch_limit=0)), "BATCH_LIMIT"),
        (Settings(scheduler=SchedulerSettings(max_workers=0)), "MAX_WORKERS"),
        (Settings(api=ApiSettings(cache_ttl_seconds=0)), "CACHE_TTL"),
        (Settings(api=ApiSettings(max_retries=-1)), "MAX_RETRIES"),
        (Settings(api=ApiSettings(openai_base_url="api.openai.com")), "OPENAI_BASE_URL"),
        (
            Settings(api=ApiSettings(dataforseo_base_url="ftp://api.dataforseo.com")),
            "DATAFORSEO_BASE_URL",
        ),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_user_id_must_be_positive() -> None:
    settings = Settings()
    settings = replace(settings, user_context=replace(settings.user_context, user_id=0))

    with pytest.raises(ValueError, match="AI_TASKS_USER_ID"):
        settings.validate()
