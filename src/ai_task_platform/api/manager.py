"""Registry that builds per-user API services from settings."""

from __future__ import annotations

import logging

from ai_task_platform.api.cache import ApiCache
from ai_task_platform.api.dataforseo_service import DataForSEOService
from ai_task_platform.api.logs import ApiLogRepository
from ai_task_platform.api.openai_service import OpenAIService
from ai_task_platform.api.service import (
    ApiCredentials,
    ApiService,
    ServiceContext,
    ServiceName,
)
from ai_task_platform.config import ApiSettings
from ai_task_platform.credits.ledger import CreditLedger
from ai_task_platform.http.client import ApiHttpClient

logger = logging.getLogger(__name__)


class ApiManager:
    """Keeps service classes by name and binds them to users on demand."""

    def __init__(
        self,
        *,
        settings: ApiSettings,
        ledger: CreditLedger,
        cache: ApiCache,
        api_logs: ApiLogRepository,
        http_client: ApiHttpClient | None = None,
    ) -> None:
        self.settings = settings
        self._owns_http_client = http_client is None
        self.context = ServiceContext(
            ledger=ledger,
            cache=cache,
            api_logs=api_logs,
            http_client=http_client
            or ApiHttpClient(
                timeout_seconds=settings.request_timeout_seconds,
                max_retries=settings.max_retries,
            ),
        )
        self._services: dict[ServiceName, type[ApiService]] = {}
        self.register_service(ServiceName.OPENAI, OpenAIService)
        self.register_service(ServiceName.DATAFORSEO, DataForSEOService)

    def close(self) -> None:
        if self._owns_http_client:
            self.context.http_client.close()

    def register_service(self, name: ServiceName, service_cls: type[ApiService]) -> bool:
        """Register a service class; returns False when the name is taken."""

        if name in self._services:
            return False
        self._services[name] = service_cls
        return True

    def available_services(self) -> list[ServiceName]:
        return list(self._services)

    def get_service(self, name: ServiceName | str, *, user_id: int) -> ApiService | None:
        try:
            key = ServiceName(name)
        except ValueError:
            logger.warning("Unknown API service requested: %s", name)
            return None
        service_cls = self._services.get(key)
        if service_cls is None:
            return None

        credentials, base_url = self._service_config(key)
        return service_cls(
            user_id=user_id,
            credentials=credentials,
            context=self.context,
            base_url=base_url,
            sandbox_mode=self.settings.sandbox_mode,
            use_caching=self.settings.use_caching,
            cache_ttl=self.settings.cache_ttl_seconds,
        )

    def _service_config(self, name: ServiceName) -> tuple[ApiCredentials, str | None]:
        if name is ServiceName.OPENAI:
            return (
                ApiCredentials(api_key=self.settings.openai_api_key),
                self.settings.openai_base_url,
            )
        if name is ServiceName.DATAFORSEO:
            return (
                ApiCredentials(
                    api_key=self.settings.dataforseo_login,
                    api_secret=self.settings.dataforseo_password,
                ),
                self.settings.dataforseo_base_url,
            )
        return ApiCredentials(), None
