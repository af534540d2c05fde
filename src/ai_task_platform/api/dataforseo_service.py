"""DataForSEO provider: SERP, keywords, on-page and backlinks endpoints."""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import math
import random
from typing import Any

from ai_task_platform.api.service import (
    ApiRequestError,
    ApiResponse,
    ApiService,
    ServiceName,
)

logger = logging.getLogger(__name__)

OK_STATUS_CODE = 20000
CREDITS_PER_USD = 100
DEFAULT_LOCATION_CODE = 2840
DEFAULT_LANGUAGE_CODE = "en"

# USD per call, or per returned item where noted.
SERP_PRICING: dict[tuple[str, str], dict[str, float]] = {
    ("google", "organic"): {"live": 2, "task_post": 1, "task_get": 1},
    ("google", "local_pack"): {"live": 3, "task_post": 1, "task_get": 2},
}
KEYWORDS_DATA_PRICING: dict[tuple[str, str], dict[str, float]] = {
    ("google", "search_volume"): {"live": 0.5, "task_post": 0.2, "task_get": 0.3},
    ("google", "keywords_for_site"): {"live": 5, "task_post": 2, "task_get": 3},
    ("google", "keywords_for_keywords"): {"live": 5, "task_post": 2, "task_get": 3},
}
ON_PAGE_PRICING: dict[str, float] = {
    "task_post": 5,
    "task_get": 10,
    "pages": 0.1,  # per page
    "lighthouse": 5,
    "content_parsing": 2,
    "instant_pages": 0.5,  # per page
}
BACKLINKS_PRICING: dict[str, float] = {
    "summary": 1,
    "backlinks": 0.002,  # per backlink
    "domain_pages": 0.5,
    "anchors": 0.5,
}

KEYWORDS_FOR_KEYWORDS_ENDPOINT = "keywords_data/google/keywords_for_keywords/live"
SEARCH_VOLUME_ENDPOINT = "keywords_data/google/search_volume/live"
ON_PAGE_TASK_POST_ENDPOINT = "on_page/task_post"
ON_PAGE_PAGES_ENDPOINT = "on_page/pages"
BACKLINKS_SUMMARY_ENDPOINT = "backlinks/summary/live"
BACKLINKS_ENDPOINT = "backlinks/backlinks/live"

_SANDBOX_SEED_WORDS = (
    "marketing",
    "seo",
    "content",
    "website",
    "business",
    "online",
    "search",
    "engine",
    "optimization",
)


def _endpoint_mode(segment: str | None) -> str:
    if segment == "task_post":
        return "task_post"
    if segment is not None and (segment == "task_get" or segment.startswith("tasks")):
        return "task_get"
    return "live"


def _task_count(params: Any) -> int:
    if isinstance(params, list) and params and isinstance(params[0], dict):
        return len(params)
    return 1


def _first_task_result(data: Any) -> list[Any]:
    if not isinstance(data, dict):
        return []
    tasks = data.get("tasks")
    if not isinstance(tasks, list) or not tasks or not isinstance(tasks[0], dict):
        return []
    result = tasks[0].get("result")
    return result if isinstance(result, list) else []


def estimate_endpoint_usd(endpoint: str, params: Any, data: Any = None) -> float:
    """Table price in USD for one call, scaled by task or item count."""

    parts = endpoint.strip("/").split("/")
    api = parts[0]
    if api in {"serp", "keywords_data"} and len(parts) >= 3:
        table = SERP_PRICING if api == "serp" else KEYWORDS_DATA_PRICING
        modes = table.get((parts[1], parts[2]))
        if modes is None:
            return 0.0
        return modes[_endpoint_mode(parts[3] if len(parts) > 3 else None)] * _task_count(params)

    name = parts[1] if len(parts) > 1 else ""
    if api == "on_page":
        if name == "task_post":
            return ON_PAGE_PRICING["task_post"] * _task_count(params)
        if name == "tasks" or name.startswith("task_get"):
            return ON_PAGE_PRICING["task_get"]
        if name in {"pages", "instant_pages"}:
            return ON_PAGE_PRICING[name] * max(1, len(_first_task_result(data)))
        return ON_PAGE_PRICING.get(name, 0.0)
    if api == "backlinks":
        if name == "backlinks":
            result = _first_task_result(data)
            items = result[0].get("items") if result and isinstance(result[0], dict) else None
            return BACKLINKS_PRICING["backlinks"] * max(1, len(items or []))
        return BACKLINKS_PRICING.get(name, 0.0)
    return 0.0


def usd_to_credits(usd: float) -> int:
    return math.floor(usd * CREDITS_PER_USD + 0.5)


class DataForSEOService(ApiService):
    service_name = ServiceName.DATAFORSEO
    default_base_url = "https://api.dataforseo.com/v3"
    requires_api_secret = True

    def estimate_credits_for_endpoint(self, endpoint: str, params: Any, data: Any = None) -> int:
        return usd_to_credits(estimate_endpoint_usd(endpoint, params, data))

    def keyword_suggestions(
        self,
        keyword: str,
        *,
        location_code: int = DEFAULT_LOCATION_CODE,
        language_code: str = DEFAULT_LANGUAGE_CODE,
        limit: int = 100,
    ) -> ApiResponse:
        body = [
            {
                "keyword": keyword,
                "location_code": location_code,
                "language_code": language_code,
                "limit": limit,
            },
        ]
        return self._cached_post(KEYWORDS_FOR_KEYWORDS_ENDPOINT, body)

    def keyword_search_volume(
        self,
        keywords: list[str],
        *,
        location_code: int = DEFAULT_LOCATION_CODE,
        language_code: str = DEFAULT_LANGUAGE_CODE,
    ) -> ApiResponse:
        body = [
            {"keyword": keyword, "location_code": location_code, "language_code": language_code}
            for keyword in keywords
        ]
        return self._cached_post(SEARCH_VOLUME_ENDPOINT, body)

    def serp_organic(  # noqa: PLR0913
        self,
        keyword: str,
        *,
        live: bool = True,
        location_code: int = DEFAULT_LOCATION_CODE,
        language_code: str = DEFAULT_LANGUAGE_CODE,
        device: str = "desktop",
        os: str = "windows",
    ) -> ApiResponse:
        endpoint = "serp/google/organic/" + ("live" if live else "task_post")
        body = [
            {
                "keyword": keyword,
                "location_code": location_code,
                "language_code": language_code,
                "device": device,
                "os": os,
            },
        ]
        if live:
            return self._cached_post(endpoint, body)
        return self._post(endpoint, body)

    def site_audit(
        self,
        domain: str,
        *,
        max_crawl_pages: int = 100,
        crawl_depth: int = 2,
    ) -> ApiResponse:
        body = [{"target": domain, "max_crawl_pages": max_crawl_pages, "crawl_depth": crawl_depth}]
        return self._post(ON_PAGE_TASK_POST_ENDPOINT, body)

    def on_page_pages(self, task_id: str, *, limit: int = 100) -> ApiResponse:
        return self._post(ON_PAGE_PAGES_ENDPOINT, [{"id": task_id, "limit": limit}])

    def backlinks_summary(self, target: str) -> ApiResponse:
        return self._cached_post(BACKLINKS_SUMMARY_ENDPOINT, [{"target": target}])

    def backlinks(self, target: str, *, limit: int = 100, mode: str = "as_is") -> ApiResponse:
        return self._cached_post(
            BACKLINKS_ENDPOINT,
            [{"target": target, "limit": limit, "mode": mode}],
        )

    def _cached_post(self, endpoint: str, body: list[dict[str, Any]]) -> ApiResponse:
        estimate = self.estimate_credits_for_endpoint(endpoint, body)
        blocked = self.ensure_credits(estimate)
        if blocked is not None:
            return blocked
        return self.request_with_cache(
            endpoint,
            body,
            "POST",
            idempotent=True,
            estimated_credits=estimate,
        )

    def _post(self, endpoint: str, body: list[dict[str, Any]]) -> ApiResponse:
        estimate = self.estimate_credits_for_endpoint(endpoint, body)
        blocked = self.ensure_credits(estimate)
        if blocked is not None:
            return blocked
        return self.make_request(endpoint, body, "POST", estimated_credits=estimate)

    def execute_request(
        self,
        endpoint: str,
        params: Any,
        method: str,
        *,
        files: dict[str, str] | None = None,
    ) -> Any:
        if not self.is_configured():
            raise ApiRequestError(
                "missing_credentials",
                "DataForSEO API credentials not provided.",
                401,
            )

        token = base64.b64encode(
            f"{self.credentials.api_key}:{self.credentials.api_secret}".encode(),
        ).decode("ascii")
        result = self._send(endpoint, params, method, headers={"Authorization": f"Basic {token}"})
        payload = result.payload if isinstance(result.payload, dict) else None
        if not result.is_success:
            message = str((payload or {}).get("status_message") or result.error or "Unknown error")
            code = "api_error" if result.status_code >= 400 else "http_error"
            raise ApiRequestError(code, message, result.status_code or None)
        if payload is None:
            raise ApiRequestError("malformed_response", "Empty or non-JSON response body.")

        status_code = payload.get("status_code")
        if status_code != OK_STATUS_CODE:
            raise ApiRequestError(
                "api_error",
                str(payload.get("status_message") or f"Unexpected status_code {status_code}"),
                result.status_code,
            )
        return payload

    def calculate_credits_used(
        self,
        endpoint: str,
        params: Any,
        response: ApiResponse,
    ) -> int | None:
        data = response.data
        if isinstance(data, dict):
            cost = data.get("cost")
            if isinstance(cost, int | float) and not isinstance(cost, bool):
                return usd_to_credits(float(cost))
        return self.estimate_credits_for_endpoint(endpoint, params, data)

    def generate_sandbox_response(self, endpoint: str, params: Any, method: str) -> Any:
        rng = _sandbox_rng(endpoint, params)
        task_id = f"sandbox-{rng.getrandbits(64):016x}"
        first = params[0] if isinstance(params, list) and params else {}
        first = first if isinstance(first, dict) else {}

        if endpoint.startswith("serp/"):
            task = _sandbox_serp_task(endpoint, first, task_id)
        elif endpoint.startswith("keywords_data/"):
            task = _sandbox_keywords_task(endpoint, params, first, task_id, rng)
        elif endpoint.startswith("on_page/"):
            task = _sandbox_on_page_task(endpoint, first, task_id, rng)
        elif endpoint.startswith("backlinks/"):
            task = _sandbox_backlinks_task(endpoint, first, task_id, rng)
        else:
            task = _sandbox_task(
                task_id,
                endpoint,
                [{"sandbox_message": f"This is a generic sandbox response for {endpoint}"}],
            )

        return {
            "version": "sandbox",
            "status_code": OK_STATUS_CODE,
            "status_message": "Ok.",
            "time": "0.0000 sec.",
            "cost": 0,
            "tasks_count": 1,
            "tasks_error": 0,
            "tasks": [task],
            "sandbox": True,
        }


def _sandbox_rng(endpoint: str, params: Any) -> random.Random:
    digest = hashlib.md5(  # noqa: S324
        json.dumps([endpoint, params], sort_keys=True, default=str).encode("utf-8"),
    ).hexdigest()
    return random.Random(int(digest, 16))  # noqa: S311


def _sandbox_task(task_id: str, endpoint: str, result: Any, data: Any = None) -> dict[str, Any]:
    return {
        "id": task_id,
        "status_code": OK_STATUS_CODE,
        "status_message": "Ok.",
        "time": "0.0000 sec.",
        "cost": 0,
        "result_count": len(result) if isinstance(result, list) else 0,
        "path": ["v3", *endpoint.split("/")],
        "data": data or {},
        "result": result,
    }


def _sandbox_serp_task(endpoint: str, first: dict[str, Any], task_id: str) -> dict[str, Any]:
    keyword = str(first.get("keyword") or "sample keyword")
    items = [
        {
            "type": "organic",
            "rank_group": rank,
            "rank_absolute": rank,
            "position": "left",
            "title": f"Sample Result {rank}",
            "url": f"https://example.com/page-{rank}",
            "description": (
                f"This is a sample description for the search result {rank}. "
                "This is sandbox data, not real results."
            ),
            "domain": "example.com",
            "breadcrumb": f"example.com › category › page-{rank}",
        }
        for rank in range(1, 11)
    ]
    result = [
        {
            "keyword": keyword,
            "se_domain": "google.com",
            "location_code": first.get("location_code", DEFAULT_LOCATION_CODE),
            "language_code": first.get("language_code", DEFAULT_LANGUAGE_CODE),
            "items_count": len(items),
            "items": items,
        },
    ]
    return _sandbox_task(
        task_id,
        endpoint,
        result,
        {"api": "serp", "function": endpoint, "se": "google", "keyword": keyword},
    )


def _sandbox_keywords_task(
    endpoint: str,
    params: Any,
    first: dict[str, Any],
    task_id: str,
    rng: random.Random,
) -> dict[str, Any]:
    if "search_volume" in endpoint:
        keywords = [
            str(item.get("keyword"))
            for item in (params if isinstance(params, list) else [])
            if isinstance(item, dict) and item.get("keyword")
        ]
        result: list[dict[str, Any]] = [
            {
                "keyword": keyword,
                "search_volume": rng.randint(100, 10_000),
                "cpc": round(rng.randint(50, 500) / 100, 2),
                "competition": round(rng.randint(1, 100) / 100, 2),
            }
            for keyword in keywords
        ]
    else:
        seed = str(first.get("keyword") or "sample")
        result = []
        for index in range(20):
            word = rng.choice(_SANDBOX_SEED_WORDS)
            phrase = f"{seed} {word}" if index % 3 == 0 else f"{word} {seed}"
            result.append(
                {
                    "keyword_data": {
                        "keyword": phrase,
                        "search_volume": rng.randint(100, 10_000),
                        "cpc": round(rng.randint(50, 500) / 100, 2),
                        "competition": round(rng.randint(1, 100) / 100, 2),
                        "keyword_difficulty": rng.randint(1, 100),
                    },
                },
            )
    return _sandbox_task(
        task_id,
        endpoint,
        result,
        {"api": "keywords_data", "function": endpoint.split("/")[2], "se": "google"},
    )


def _sandbox_on_page_task(
    endpoint: str,
    first: dict[str, Any],
    task_id: str,
    rng: random.Random,
) -> dict[str, Any]:
    if endpoint == ON_PAGE_TASK_POST_ENDPOINT:
        return _sandbox_task(task_id, endpoint, None, {"target": first.get("target")})

    limit = min(int(first.get("limit") or 10), 10)
    pages = [
        {
            "url": f"https://example.com/page-{index}",
            "status_code": 200,
            "onpage_score": round(rng.uniform(60, 100), 2),
            "meta": {"title": f"Sample Page {index}", "description": "Sandbox page."},
            "checks": {
                "no_description": rng.random() < 0.3,
                "no_image_alt": rng.random() < 0.5,
                "is_https": True,
            },
        }
        for index in range(1, limit + 1)
    ]
    result = [
        {
            "crawl_progress": "finished",
            "crawl_status": {"pages_crawled": len(pages), "pages_in_queue": 0},
            "items_count": len(pages),
            "items": pages,
        },
    ]
    return _sandbox_task(task_id, endpoint, result, {"id": first.get("id")})


def _sandbox_backlinks_task(
    endpoint: str,
    first: dict[str, Any],
    task_id: str,
    rng: random.Random,
) -> dict[str, Any]:
    target = str(first.get("target") or "example.com")
    if endpoint == BACKLINKS_ENDPOINT:
        limit = min(int(first.get("limit") or 10), 10)
        items = [
            {
                "url_from": f"https://referrer-{index}.example.org/post",
                "url_to": f"https://{target}/",
                "domain_from": f"referrer-{index}.example.org",
                "rank": rng.randint(0, 1000),
                "anchor": f"{target} link {index}",
                "dofollow": rng.random() < 0.7,
            }
            for index in range(1, limit + 1)
        ]
        result: list[dict[str, Any]] = [
            {
                "target": target,
                "total_count": len(items),
                "items_count": len(items),
                "items": items,
            },
        ]
    else:
        result = [
            {
                "target": target,
                "rank": rng.randint(0, 1000),
                "backlinks": rng.randint(100, 50_000),
                "referring_domains": rng.randint(10, 2_000),
                "referring_main_domains": rng.randint(10, 1_500),
                "referring_ips": rng.randint(10, 1_800),
                "broken_backlinks": rng.randint(0, 200),
            },
        ]
    return _sandbox_task(task_id, endpoint, result, {"target": target})
