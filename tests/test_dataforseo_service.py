from __future__ import annotations

import base64
import json

import allure
import httpx
import pytest

from ai_task_platform.api.dataforseo_service import (
    BACKLINKS_ENDPOINT,
    KEYWORDS_FOR_KEYWORDS_ENDPOINT,
    ON_PAGE_PAGES_ENDPOINT,
    DataForSEOService,
    estimate_endpoint_usd,
    usd_to_credits,
)
from ai_task_platform.api.service import ApiCredentials
from ai_task_platform.credits.ledger import CreditLedger

pytestmark = [
    allure.epic("API Services"),
    allure.feature("DataForSEO"),
]


def _service(context, credentials: ApiCredentials, **kwargs) -> DataForSEOService:
    return DataForSEOService(user_id=1, credentials=credentials, context=context, **kwargs)


def _envelope(result: list, *, status_code: int = 20000, cost: float | None = 0.05) -> dict:
    payload = {
        "status_code": status_code,
        "status_message": "Ok." if status_code == 20000 else "Invalid Field: 'keyword'.",
        "tasks": [{"id": "task-1", "status_code": status_code, "result": result}],
    }
    if cost is not None:
        payload["cost"] = cost
    return payload


@pytest.mark.parametrize(
    ("endpoint", "params", "data", "expected_usd"),
    [
        ("serp/google/organic/live", [{"keyword": "a"}], None, 2),
        ("serp/google/organic/task_post", [{"keyword": "a"}, {"keyword": "b"}], None, 2),
        ("serp/google/organic/tasks_ready", [{}], None, 1),
        ("keywords_data/google/search_volume/live", [{"keyword": "a"}], None, 0.5),
        ("on_page/task_post", [{"target": "a.com"}], None, 5),
        (
            ON_PAGE_PAGES_ENDPOINT,
            [{"id": "x"}],
            {"tasks": [{"result": [{"items": []}, {"items": []}, {"items": []}]}]},
            0.30000000000000004,
        ),
        (
            BACKLINKS_ENDPOINT,
            [{"target": "a.com"}],
            {"tasks": [{"result": [{"items": [{}] * 500}]}]},
            1.0,
        ),
        ("backlinks/summary/live", [{"target": "a.com"}], None, 1),
        ("merchant/google/products", [{}], None, 0),
    ],
)
def test_estimate_endpoint_usd(endpoint, params, data, expected_usd) -> None:
    assert estimate_endpoint_usd(endpoint, params, data) == pytest.approx(expected_usd)


def test_usd_to_credits_rounds_half_up() -> None:
    assert usd_to_credits(0.5) == 50
    assert usd_to_credits(0.005) == 1
    assert usd_to_credits(0.004) == 0
    assert usd_to_credits(2) == 200


def test_live_call_uses_basic_auth_and_reported_cost(
    service_context,
    credentials,
    ledger: CreditLedger,
) -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_envelope([{"keyword": "seo", "search_volume": 10}]))

    ledger.grant(1, 1000)
    service = _service(service_context(_handler), credentials)

    response = service.keyword_search_volume(["seo"])

    assert response.success is True
    assert response.credits_used == 5
    assert ledger.get_balance(1) == 995
    expected = base64.b64encode(b"test-key:test-secret").decode("ascii")
    assert seen[0].headers["Authorization"] == f"Basic {expected}"
    assert json.loads(seen[0].content) == [
        {"keyword": "seo", "location_code": 2840, "language_code": "en"},
    ]


def test_missing_cost_falls_back_to_table_price(service_context, credentials, ledger) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_envelope([], cost=None))

    ledger.grant(1, 1000)
    service = _service(service_context(_handler), credentials)

    response = service.backlinks_summary("example.com")

    assert response.credits_used == 100
    assert ledger.get_balance(1) == 900


def test_non_ok_body_status_is_an_error(service_context, credentials, ledger) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_envelope([], status_code=40501))

    ledger.grant(1, 1000)
    service = _service(service_context(_handler), credentials)

    response = service.keyword_suggestions("seo")

    assert response.success is False
    assert response.error is not None
    assert response.error.code == "api_error"
    assert response.error.message == "Invalid Field: 'keyword'."
    assert ledger.get_balance(1) == 1000
    assert service.cache.get_cache_stats()["total_cached_items"] == 0


def test_post_reads_are_cached(service_context, credentials, ledger) -> None:
    calls: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json=_envelope([]))

    ledger.grant(1, 10_000)
    service = _service(service_context(_handler), credentials)

    first = service.keyword_suggestions("seo", limit=10)
    second = service.keyword_suggestions("seo", limit=10)
    third = service.keyword_suggestions("seo", limit=20)

    assert (first.cached, second.cached, third.cached) == (False, True, False)
    assert calls == [f"/v3/{KEYWORDS_FOR_KEYWORDS_ENDPOINT}"] * 2


def test_requires_login_and_password(service_context, ledger) -> None:
    ledger.grant(1, 1000)
    service = _service(service_context(), ApiCredentials(api_key="login"))

    response = service.backlinks_summary("example.com")

    assert service.is_configured() is False
    assert response.error is not None
    assert response.error.code == "missing_credentials"


def test_sandbox_responses_are_deterministic(service_context, credentials, ledger) -> None:
    service = _service(service_context(), credentials, sandbox_mode=True)

    first = service.keyword_suggestions("running shoes")
    second = service.keyword_suggestions("running shoes")
    other = service.keyword_suggestions("trail shoes")

    assert first.sandbox is True
    assert first.data == second.data
    assert first.data != other.data
    assert first.data["status_code"] == 20000
    results = first.data["tasks"][0]["result"]
    assert len(results) == 20
    assert all("running shoes" in item["keyword_data"]["keyword"] for item in results)
    assert service.api_logs.count() == 0
    assert ledger.get_balance(1) == 0


def test_sandbox_on_page_and_serp_shapes(service_context, credentials) -> None:
    service = _service(service_context(), credentials, sandbox_mode=True)

    posted = service.site_audit("example.com")
    task_id = posted.data["tasks"][0]["id"]
    assert posted.data["tasks"][0]["result"] is None

    pages = service.on_page_pages(task_id, limit=5)
    items = pages.data["tasks"][0]["result"][0]["items"]
    assert len(items) == 5
    assert all(item["checks"]["is_https"] is True for item in items)

    serp = service.serp_organic("seo tools")
    assert serp.data["tasks"][0]["result"][0]["items_count"] == 10
