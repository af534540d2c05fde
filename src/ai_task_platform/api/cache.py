"""Persistent response cache with service and endpoint invalidation groups."""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlmodel import Session, col, select

from ai_task_platform.storage.alembic_runner import upgrade_head
from ai_task_platform.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    dump_json,
    load_json,
    to_db_datetime,
    utc_now,
)
from ai_task_platform.storage.sqlmodel_models import ApiCacheEntry, ApiCacheGroup

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600
CACHE_KEY_PREFIX = "ai_tasks_api_cache_"


def build_cache_key(service: str, endpoint: str, params: Any) -> str:
    """Key is stable across parameter ordering."""

    canonical = json.dumps(params, sort_keys=True, ensure_ascii=False, default=str)
    params_hash = hashlib.md5(canonical.encode("utf-8")).hexdigest()  # noqa: S324
    return f"{CACHE_KEY_PREFIX}{service}_{endpoint}_{params_hash}"


def endpoint_group(service: str, endpoint: str) -> str:
    return f"{service}_{endpoint}"


class ApiCache:
    """Last-writer-wins cache shared by every API service."""

    def __init__(
        self,
        db_path: Path,
        *,
        default_ttl: int = DEFAULT_CACHE_TTL_SECONDS,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.default_ttl = default_ttl
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def get(self, service: str, endpoint: str, params: Any) -> Any | None:
        """Return cached data, or None on a miss or an expired entry."""

        cache_key = build_cache_key(service, endpoint, params)
        with Session(self.engine) as session:
            row = session.get(ApiCacheEntry, cache_key)
            if row is None:
                return None
            if row.expires_at <= to_db_datetime(utc_now()):
                self._delete_keys(session, [cache_key])
                session.commit()
                logger.debug("Cache entry expired: %s", cache_key)
                return None
            return load_json(row.payload_json, None)

    def set(
        self,
        service: str,
        endpoint: str,
        params: Any,
        data: Any,
        ttl: int | None = None,
    ) -> str:
        """Store `data` as JSON and return the cache key.

        Only the JSON shape survives: tuples read back as lists, mapping keys
        as strings, and a stored `None` reads back as a miss.
        """

        cache_key = build_cache_key(service, endpoint, params)
        now = to_db_datetime(utc_now())
        expires_at = now + timedelta(seconds=self.default_ttl if ttl is None else ttl)
        with Session(self.engine) as session:
            row = session.get(ApiCacheEntry, cache_key)
            if row is None:
                row = ApiCacheEntry(
                    cache_key=cache_key,
                    service=service,
                    endpoint=endpoint,
                    payload_json=dump_json(data),
                    created_at=now,
                    expires_at=expires_at,
                )
            else:
                row.payload_json = dump_json(data)
                row.created_at = now
                row.expires_at = expires_at
            session.add(row)
            for group_name in (service, endpoint_group(service, endpoint)):
                if session.get(ApiCacheGroup, (group_name, cache_key)) is None:
                    session.add(ApiCacheGroup(group_name=group_name, cache_key=cache_key))
            session.commit()
        return cache_key

    def delete(self, service: str, endpoint: str, params: Any) -> bool:
        cache_key = build_cache_key(service, endpoint, params)
        with Session(self.engine) as session:
            removed = self._delete_keys(session, [cache_key])
            session.commit()
        return removed > 0

    def clear_service_cache(self, service: str) -> int:
        return self._clear_group(service)

    def clear_endpoint_cache(self, service: str, endpoint: str) -> int:
        return self._clear_group(endpoint_group(service, endpoint))

    def clear_all_cache(self) -> int:
        """Clear every known group, then drop any ungrouped leftovers."""

        with Session(self.engine) as session:
            groups = session.exec(select(ApiCacheGroup.group_name).distinct()).all()
        cleared = sum(self._clear_group(group_name) for group_name in groups)
        with Session(self.engine) as session:
            session.exec(sa_delete(ApiCacheEntry))  # type: ignore[call-overload]
            session.exec(sa_delete(ApiCacheGroup))  # type: ignore[call-overload]
            session.commit()
        return cleared

    def set_default_ttl(self, ttl: int) -> None:
        if ttl <= 0:
            raise ValueError("Cache TTL must be > 0")
        self.default_ttl = int(ttl)

    def get_cache_stats(self) -> dict[str, Any]:
        with Session(self.engine) as session:
            total = session.exec(select(func.count()).select_from(ApiCacheEntry)).one()
            by_service = session.exec(
                select(ApiCacheEntry.service, func.count())
                .group_by(col(ApiCacheEntry.service))
                .order_by(col(ApiCacheEntry.service)),
            ).all()
            by_endpoint = session.exec(
                select(ApiCacheEntry.service, ApiCacheEntry.endpoint, func.count())
                .group_by(col(ApiCacheEntry.service), col(ApiCacheEntry.endpoint))
                .order_by(col(ApiCacheEntry.service), col(ApiCacheEntry.endpoint)),
            ).all()
            expired = session.exec(
                select(func.count())
                .select_from(ApiCacheEntry)
                .where(col(ApiCacheEntry.expires_at) <= to_db_datetime(utc_now())),
            ).one()
        return {
            "total_cached_items": int(total),
            "expired_items": int(expired),
            "default_ttl": self.default_ttl,
            "by_service": {service: int(count) for service, count in by_service},
            "by_endpoint": {
                endpoint_group(service, endpoint): int(count)
                for service, endpoint, count in by_endpoint
            },
        }

    def _clear_group(self, group_name: str) -> int:
        with Session(self.engine) as session:
            keys = list(
                session.exec(
                    select(ApiCacheGroup.cache_key).where(ApiCacheGroup.group_name == group_name),
                ).all(),
            )
            cleared = self._delete_keys(session, keys)
            session.exec(
                sa_delete(ApiCacheGroup).where(  # type: ignore[call-overload]
                    col(ApiCacheGroup.group_name) == group_name,
                ),
            )
            session.commit()
        logger.info("Cleared %s cache entries from group %s", cleared, group_name)
        return cleared

    def _delete_keys(self, session: Session, keys: list[str]) -> int:
        if not keys:
            return 0
        result = session.exec(
            sa_delete(ApiCacheEntry).where(  # type: ignore[call-overload]
                col(ApiCacheEntry.cache_key).in_(keys),
            ),
        )
        session.exec(
            sa_delete(ApiCacheGroup).where(  # type: ignore[call-overload]
                col(ApiCacheGroup.cache_key).in_(keys),
            ),
        )
        return int(result.rowcount or 0)
