"""Abstract API service: sandbox, cache, cost accounting and call logging."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from ai_task_platform.api.cache import ApiCache
from ai_task_platform.api.logs import (
    ApiCallStatus,
    ApiLogRepository,
    ApiLogView,
    ApiUsageStats,
    UsagePeriod,
    period_start,
)
from ai_task_platform.credits.ledger import CreditLedger, TransactionType
from ai_task_platform.http.client import ApiHttpClient, HttpResult

logger = logging.getLogger(__name__)

INSUFFICIENT_CREDITS_MESSAGE = "Not enough credits to perform this operation."


class ServiceName(str, Enum):
    """Registered external providers."""

    OPENAI = "openai"
    DATAFORSEO = "dataforseo"


@dataclass(slots=True)
class ApiCredentials:
    api_key: str = ""
    api_secret: str = ""


@dataclass(slots=True)
class ApiError:
    code: str
    message: str
    status_code: int | None = None


@dataclass(slots=True)
class ApiResponse:
    """Outcome of one service call; infrastructure failures land in `error`."""

    success: bool
    data: Any = None
    error: ApiError | None = None
    sandbox: bool = False
    cached: bool = False
    credits_used: int = 0
    log_id: int | None = None

    @classmethod
    def failure(cls, code: str, message: str, status_code: int | None = None) -> ApiResponse:
        return cls(
            success=False,
            error=ApiError(code=code, message=message, status_code=status_code),
        )

    def to_log_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "data": self.data}
        if self.error is not None:
            payload["error"] = {"code": self.error.code, "message": self.error.message}
        return payload


class ApiRequestError(Exception):
    """Raised by `execute_request` implementations for failed provider calls."""

    def __init__(self, code: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


@dataclass(slots=True)
class ServiceContext:
    """Shared collaborators every service instance is bound to."""

    ledger: CreditLedger
    cache: ApiCache
    api_logs: ApiLogRepository
    http_client: ApiHttpClient


class ApiService(ABC):
    """One external provider bound to one user."""

    service_name: ClassVar[ServiceName]
    default_base_url: ClassVar[str]
    requires_api_secret: ClassVar[bool] = False

    def __init__(  # noqa: PLR0913
        self,
        *,
        user_id: int,
        credentials: ApiCredentials,
        context: ServiceContext,
        base_url: str | None = None,
        sandbox_mode: bool = False,
        use_caching: bool = True,
        cache_ttl: int | None = None,
    ) -> None:
        self.user_id = user_id
        self.credentials = credentials
        self.ledger = context.ledger
        self.cache = context.cache
        self.api_logs = context.api_logs
        self.http_client = context.http_client
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.sandbox_mode = sandbox_mode
        self.use_caching = use_caching
        self.cache_ttl = cache_ttl

    def set_sandbox_mode(self, enabled: bool) -> None:
        self.sandbox_mode = bool(enabled)

    def is_sandbox_mode(self) -> bool:
        return self.sandbox_mode

    def set_caching(self, enabled: bool) -> None:
        self.use_caching = bool(enabled)

    def is_configured(self) -> bool:
        if not self.credentials.api_key:
            return False
        return not (self.requires_api_secret and not self.credentials.api_secret)

    def request_with_cache(  # noqa: PLR0913
        self,
        endpoint: str,
        params: Any = None,
        method: str = "GET",
        ttl: int | None = None,
        *,
        idempotent: bool | None = None,
        estimated_credits: int | None = None,
    ) -> ApiResponse:
        """Serve idempotent reads from the cache and store successful live results.

        GET requests are idempotent by default; providers that transport reads
        over POST pass `idempotent=True`. Sandbox mode bypasses the cache.
        """

        params = {} if params is None else params
        cacheable = (method.upper() == "GET" if idempotent is None else idempotent) and (
            self.use_caching and not self.sandbox_mode
        )
        if cacheable:
            cached = self.cache.get(self.service_name.value, endpoint, params)
            if cached is not None:
                logger.debug("Cache hit for %s %s", self.service_name.value, endpoint)
                return ApiResponse(success=True, data=cached, cached=True)

        response = self.make_request(
            endpoint,
            params,
            method,
            estimated_credits=estimated_credits,
        )
        if cacheable and response.success:
            self.cache.set(
                self.service_name.value,
                endpoint,
                params,
                response.data,
                ttl if ttl is not None else self.cache_ttl,
            )
        return response

    def make_request(
        self,
        endpoint: str,
        params: Any = None,
        method: str = "GET",
        *,
        files: dict[str, str] | None = None,
        estimated_credits: int | None = None,
    ) -> ApiResponse:
        """Run one call; live calls are logged and debited, sandbox calls are not."""

        params = {} if params is None else params
        method = method.upper()
        if self.sandbox_mode:
            return ApiResponse(
                success=True,
                data=self.generate_sandbox_response(endpoint, params, method),
                sandbox=True,
            )

        started = time.perf_counter()
        try:
            data = self.execute_request(endpoint, params, method, files=files)
            response = ApiResponse(success=True, data=data)
        except ApiRequestError as error:
            logger.warning(
                "%s request to %s failed: [%s] %s",
                self.service_name.value,
                endpoint,
                error.code,
                error.message,
            )
            response = ApiResponse.failure(error.code, error.message, error.status_code)
        duration = time.perf_counter() - started

        credits_used = 0
        if response.success:
            actual = self.calculate_credits_used(endpoint, params, response)
            credits_used = actual if actual is not None else (estimated_credits or 0)
        response.credits_used = max(0, int(credits_used))

        log_id = self.api_logs.record(
            user_id=self.user_id,
            service=self.service_name.value,
            endpoint=endpoint,
            request=params,
            response=response.to_log_payload(),
            status=ApiCallStatus.SUCCESS if response.success else ApiCallStatus.ERROR,
            duration=duration,
            credits_used=response.credits_used,
        )
        response.log_id = log_id
        if response.credits_used > 0:
            self.ledger.debit(
                self.user_id,
                response.credits_used,
                TransactionType.API_USAGE,
                log_id,
                notes=f"API usage: {self.service_name.value} - {endpoint}",
            )
        return response

    def check_credits(self, required: int) -> bool:
        return self.get_credit_balance() >= required

    def get_credit_balance(self) -> int:
        return self.ledger.get_balance(self.user_id)

    def ensure_credits(self, estimate: int) -> ApiResponse | None:
        """Return an error response when the balance cannot cover the estimate."""

        if self.sandbox_mode or estimate <= 0 or self.check_credits(estimate):
            return None
        logger.warning(
            "User %s lacks credits for %s call (estimate=%s)",
            self.user_id,
            self.service_name.value,
            estimate,
        )
        return ApiResponse.failure("insufficient_credits", INSUFFICIENT_CREDITS_MESSAGE)

    def clear_cache(self) -> int:
        return self.cache.clear_service_cache(self.service_name.value)

    def clear_endpoint_cache(self, endpoint: str) -> int:
        return self.cache.clear_endpoint_cache(self.service_name.value, endpoint)

    def get_recent_logs(self, limit: int = 10) -> list[ApiLogView]:
        return self.api_logs.list_recent(
            user_id=self.user_id,
            service=self.service_name.value,
            limit=limit,
        )

    def get_usage_stats(self, period: UsagePeriod = UsagePeriod.MONTH) -> ApiUsageStats:
        return self.api_logs.usage_stats(
            user_id=self.user_id,
            service=self.service_name.value,
            since=period_start(period),
        )

    def _send(
        self,
        endpoint: str,
        params: Any,
        method: str,
        *,
        headers: dict[str, str],
        files: dict[str, Any] | None = None,
    ) -> HttpResult:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        if method == "GET":
            return self.http_client.send(method, url, headers=headers, params=params or None)
        if files:
            return self.http_client.send(
                method,
                url,
                headers=headers,
                data={key: str(value) for key, value in params.items()},
                files=files,
            )
        return self.http_client.send(method, url, headers=headers, json=params)

    @abstractmethod
    def execute_request(
        self,
        endpoint: str,
        params: Any,
        method: str,
        *,
        files: dict[str, str] | None = None,
    ) -> Any:
        """Perform the live call and return decoded data or raise ApiRequestError."""

    @abstractmethod
    def generate_sandbox_response(self, endpoint: str, params: Any, method: str) -> Any:
        """Deterministic mock shaped like the provider's response."""

    @abstractmethod
    def calculate_credits_used(
        self,
        endpoint: str,
        params: Any,
        response: ApiResponse,
    ) -> int | None:
        """Actual cost of a successful call; None falls back to the pre-call estimate."""
