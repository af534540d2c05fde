"""API call log store with secret redaction and usage aggregation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from sqlalchemy import case, func
from sqlmodel import Session, col, select

from ai_task_platform.storage.alembic_runner import upgrade_head
from ai_task_platform.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    dump_json,
    load_json,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from ai_task_platform.storage.sqlmodel_models import ApiLog

MAX_LOG_PAYLOAD_CHARS = 65_535
REDACTED = "[REDACTED]"
_SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "api-key",
        "key",
        "secret",
        "password",
        "token",
        "auth",
        "authorization",
    },
)


class ApiCallStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class UsagePeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    LAST_30_DAYS = "30d"


@dataclass(slots=True)
class ApiLogView:
    log_id: int
    user_id: int
    service: str
    endpoint: str
    request: Any
    response: Any
    status: ApiCallStatus
    duration: float
    credits_used: int
    created_at: datetime


@dataclass(slots=True)
class EndpointUsage:
    endpoint: str
    call_count: int
    total_credits: int


@dataclass(slots=True)
class ApiUsageStats:
    """Aggregated usage for one user and service over a period."""

    call_count: int
    total_credits: int
    avg_duration: float
    error_count: int
    success_rate: float
    endpoints: list[EndpointUsage] = field(default_factory=list)


def redact_secrets(data: Any) -> Any:
    """Replace values stored under credential-like keys, recursing into containers."""

    if isinstance(data, dict):
        redacted: dict[Any, Any] = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if key_lower in _SENSITIVE_KEYS or "secret" in key_lower or "pass" in key_lower:
                redacted[key] = REDACTED
            else:
                redacted[key] = redact_secrets(value)
        return redacted
    if isinstance(data, list | tuple):
        return [redact_secrets(item) for item in data]
    return data


def prepare_log_payload(data: Any) -> str | None:
    if data is None:
        return None
    if isinstance(data, str):
        serialized = data
    else:
        serialized = dump_json(redact_secrets(data))
    if len(serialized) > MAX_LOG_PAYLOAD_CHARS:
        serialized = serialized[: MAX_LOG_PAYLOAD_CHARS - 3] + "..."
    return serialized


def period_start(period: UsagePeriod, *, now: datetime | None = None) -> datetime:
    current = to_utc_aware_datetime(now or utc_now())
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is UsagePeriod.DAY:
        return midnight
    if period is UsagePeriod.WEEK:
        return midnight - timedelta(days=midnight.weekday())
    if period is UsagePeriod.MONTH:
        return midnight.replace(day=1)
    if period is UsagePeriod.YEAR:
        return midnight.replace(month=1, day=1)
    return midnight - timedelta(days=30)


class ApiLogRepository:
    """Append-only API call log backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def record(  # noqa: PLR0913
        self,
        *,
        user_id: int,
        service: str,
        endpoint: str,
        request: Any,
        response: Any,
        status: ApiCallStatus,
        duration: float,
        credits_used: int,
    ) -> int:
        """Persist one call with secrets redacted and return the log id."""

        with Session(self.engine) as session:
            row = ApiLog(
                user_id=user_id,
                service=service,
                endpoint=endpoint,
                request_json=prepare_log_payload(request),
                response_json=prepare_log_payload(response),
                status=status.value,
                duration=round(duration, 4),
                credits_used=credits_used,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.id or 0

    def count(self, *, user_id: int | None = None, service: str | None = None) -> int:
        with Session(self.engine) as session:
            statement = select(func.count()).select_from(ApiLog)
            if user_id is not None:
                statement = statement.where(ApiLog.user_id == user_id)
            if service is not None:
                statement = statement.where(ApiLog.service == service)
            return int(session.exec(statement).one())

    def list_recent(self, *, user_id: int, service: str, limit: int = 10) -> list[ApiLogView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ApiLog)
                .where(ApiLog.user_id == user_id, ApiLog.service == service)
                .order_by(col(ApiLog.created_at).desc(), col(ApiLog.id).desc())
                .limit(limit),
            ).all()
        return [_to_log_view(row) for row in rows]

    def usage_stats(self, *, user_id: int, service: str, since: datetime) -> ApiUsageStats:
        scope = (
            col(ApiLog.user_id) == user_id,
            col(ApiLog.service) == service,
            col(ApiLog.created_at) >= to_db_datetime(since),
        )
        is_error = col(ApiLog.status) == ApiCallStatus.ERROR.value
        credits_sum = func.coalesce(func.sum(ApiLog.credits_used), 0)
        with Session(self.engine) as session:
            call_count, total_credits, avg_duration, error_count = session.exec(
                select(
                    func.count(),
                    credits_sum,
                    func.coalesce(func.avg(ApiLog.duration), 0.0),
                    func.coalesce(func.sum(case((is_error, 1), else_=0)), 0),
                ).where(*scope),
            ).one()
            endpoint_rows = session.exec(
                select(ApiLog.endpoint, func.count(), credits_sum)
                .where(*scope)
                .group_by(col(ApiLog.endpoint))
                .order_by(func.count().desc(), col(ApiLog.endpoint)),
            ).all()

        calls = int(call_count)
        errors = int(error_count)
        return ApiUsageStats(
            call_count=calls,
            total_credits=int(total_credits),
            avg_duration=float(avg_duration),
            error_count=errors,
            success_rate=((calls - errors) / calls * 100.0) if calls else 0.0,
            endpoints=[
                EndpointUsage(endpoint=endpoint, call_count=int(count), total_credits=int(credits))
                for endpoint, count, credits in endpoint_rows
            ],
        )


def _to_log_view(row: ApiLog) -> ApiLogView:
    return ApiLogView(
        log_id=row.id or 0,
        user_id=row.user_id,
        service=row.service,
        endpoint=row.endpoint,
        request=load_json(row.request_json, row.request_json),
        response=load_json(row.response_json, row.response_json),
        status=ApiCallStatus(row.status),
        duration=row.duration,
        credits_used=row.credits_used,
        created_at=to_utc_aware_datetime(row.created_at),
    )
