"""Runtime configuration for the task engine, scheduler and API services."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from ai_task_platform.storage.common import DEFAULT_BUSY_TIMEOUT_MS


@dataclass(slots=True)
class SchedulerSettings:
    """Polling scheduler settings."""

    tick_seconds: float = 5.0
    dependency_check_interval_seconds: int = 300
    dispatch_interval_seconds: int = 3_600
    batch_limit: int = 10
    max_workers: int = 1


@dataclass(slots=True)
class ApiSettings:
    """External provider credentials and request policy."""

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_default_model: str = "gpt-3.5-turbo"
    dataforseo_login: str = ""
    dataforseo_password: str = ""
    dataforseo_base_url: str = "https://api.dataforseo.com/v3"
    sandbox_mode: bool = False
    use_caching: bool = True
    cache_ttl_seconds: int = 3_600
    request_timeout_seconds: float = 30.0
    max_retries: int = 2


@dataclass(slots=True)
class UserContextSettings:
    """User context settings."""

    user_id: int = 1
    user_name: str = "Default User"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".ai_tasks.db")
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    user_context: UserContextSettings = field(default_factory=UserContextSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AI_TASKS_DB_PATH", ".ai_tasks.db")),
            busy_timeout_ms=int(
                os.getenv("AI_TASKS_SQLITE_BUSY_TIMEOUT_MS", str(DEFAULT_BUSY_TIMEOUT_MS)),
            ),
            scheduler=SchedulerSettings(
                tick_seconds=float(os.getenv("AI_TASKS_SCHEDULER_TICK_SECONDS", "5.0")),
                dependency_check_interval_seconds=int(
                    os.getenv("AI_TASKS_DEPENDENCY_CHECK_INTERVAL_SECONDS", "300"),
                ),
                dispatch_interval_seconds=int(
                    os.getenv("AI_TASKS_DISPATCH_INTERVAL_SECONDS", "3600"),
                ),
                batch_limit=int(os.getenv("AI_TASKS_DISPATCH_BATCH_LIMIT", "10")),
                max_workers=int(os.getenv("AI_TASKS_MAX_WORKERS", "1")),
            ),
            api=ApiSettings(
                openai_api_key=os.getenv("AI_TASKS_OPENAI_API_KEY", ""),
                openai_base_url=os.getenv(
                    "AI_TASKS_OPENAI_BASE_URL",
                    "https://api.openai.com/v1",
                ),
                openai_default_model=os.getenv("AI_TASKS_OPENAI_MODEL", "gpt-3.5-turbo"),
                dataforseo_login=os.getenv("AI_TASKS_DATAFORSEO_LOGIN", ""),
                dataforseo_password=os.getenv("AI_TASKS_DATAFORSEO_PASSWORD", ""),
                dataforseo_base_url=os.getenv(
                    "AI_TASKS_DATAFORSEO_BASE_URL",
                    "https://api.dataforseo.com/v3",
                ),
                sandbox_mode=_env_bool("AI_TASKS_API_SANDBOX", default=False),
                use_caching=_env_bool("AI_TASKS_API_CACHE", default=True),
                cache_ttl_seconds=int(os.getenv("AI_TASKS_API_CACHE_TTL_SECONDS", "3600")),
                request_timeout_seconds=float(
                    os.getenv("AI_TASKS_API_TIMEOUT_SECONDS", "30.0"),
                ),
                max_retries=int(os.getenv("AI_TASKS_API_MAX_RETRIES", "2")),
            ),
            user_context=UserContextSettings(
                user_id=int(os.getenv("AI_TASKS_USER_ID", "1")),
                user_name=os.getenv("AI_TASKS_USER_NAME", "Default User"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot run with."""

        if self.busy_timeout_ms <= 0:
            raise ValueError("AI_TASKS_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.scheduler.tick_seconds <= 0:
            raise ValueError("AI_TASKS_SCHEDULER_TICK_SECONDS must be > 0.")
        if self.scheduler.dependency_check_interval_seconds <= 0:
            raise ValueError("AI_TASKS_DEPENDENCY_CHECK_INTERVAL_SECONDS must be > 0.")
        if self.scheduler.dispatch_interval_seconds <= 0:
            raise ValueError("AI_TASKS_DISPATCH_INTERVAL_SECONDS must be > 0.")
        if self.scheduler.batch_limit <= 0:
            raise ValueError("AI_TASKS_DISPATCH_BATCH_LIMIT must be > 0.")
        if self.scheduler.max_workers <= 0:
            raise ValueError("AI_TASKS_MAX_WORKERS must be > 0.")
        if self.api.cache_ttl_seconds <= 0:
            raise ValueError("AI_TASKS_API_CACHE_TTL_SECONDS must be > 0.")
        if self.api.request_timeout_seconds <= 0:
            raise ValueError("AI_TASKS_API_TIMEOUT_SECONDS must be > 0.")
        if self.api.max_retries < 0:
            raise ValueError("AI_TASKS_API_MAX_RETRIES must be >= 0.")
        if self.user_context.user_id <= 0:
            raise ValueError("AI_TASKS_USER_ID must be a positive integer.")
        for name, url in (
            ("AI_TASKS_OPENAI_BASE_URL", self.api.openai_base_url),
            ("AI_TASKS_DATAFORSEO_BASE_URL", self.api.dataforseo_base_url),
        ):
            _validate_base_url(name, url)


def _validate_base_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
