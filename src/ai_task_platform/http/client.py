"""Synchronous HTTP client with retries, timeout and JSON decoding."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_USER_AGENT = "AiTaskPlatform/0.1 (+https://github.com/ai-task-platform)"


@dataclass(slots=True)
class HttpResult:
    """Result of one outbound API call."""

    url: str
    status_code: int
    payload: Any
    text: str
    is_success: bool
    error: str | None = None
    content: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)


class ApiHttpClient:
    """httpx.Client wrapper that never raises transport errors to callers."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._client = httpx.Client(
            timeout=self._timeout,
            headers={"User-Agent": user_agent},
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def send(  # noqa: PLR0913
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> HttpResult:
        """Send a request and decode a JSON body when present."""

        try:
            response = self._client.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json,
                data=data,
                files=files,
            )
        except httpx.TimeoutException:
            logger.warning("Timeout calling %s %s", method, url)
            return HttpResult(
                url=url,
                status_code=0,
                payload=None,
                text="",
                is_success=False,
                error="timeout",
            )
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling %s %s: %s", method, url, exc)
            return HttpResult(
                url=url,
                status_code=0,
                payload=None,
                text="",
                is_success=False,
                error=str(exc),
            )

        payload: Any = None
        error: str | None = None
        if response.content:
            try:
                payload = response.json()
            except ValueError:
                if "json" in response.headers.get("content-type", ""):
                    error = "malformed JSON response"
        if error is None and not response.is_success:
            error = f"HTTP {response.status_code}"
        return HttpResult(
            url=url,
            status_code=response.status_code,
            payload=payload,
            text=response.text,
            is_success=response.is_success and error is None,
            error=error,
            content=response.content,
            headers=dict(response.headers),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ApiHttpClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
