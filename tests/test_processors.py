from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import allure
import httpx
import pytest

from ai_task_platform.config import ApiSettings, Settings
from ai_task_platform.errors import ProcessingError
from ai_task_platform.http.client import ApiHttpClient
from ai_task_platform.runtime import Platform, build_platform
from ai_task_platform.tasks.models import TaskStatus
from ai_task_platform.tasks.processor import BaseTaskProcessor
from ai_task_platform.tasks.processors import (
    AdCopyProcessor,
    ContentGenerationProcessor,
    SeoAuditProcessor,
    audit_score,
    build_content_prompt,
    count_words,
    extract_markdown_title,
    grade_pages,
    normalize_domain,
    parse_ad_copy,
)

pytestmark = [
    allure.epic("Task Engine"),
    allure.feature("Built-in Processors"),
]


def _run(platform: Platform, task_type: str, inputs: dict, *, approve: bool = False):
    platform.ledger.grant(1, 1000)
    task = platform.engine.create_task(1, task_type, f"{task_type} task", inputs)
    if approve:
        platform.engine.approve_task(task.task_id)
    platform.engine.process_task(task.task_id)
    return platform.engine.get_task(task.task_id)


def test_builtin_processors_are_registered(sandbox_platform: Platform) -> None:
    engine = sandbox_platform.engine

    assert all(engine.has_processor(definition.key) for definition in engine.get_task_types())


def test_keyword_research_in_sandbox(sandbox_platform: Platform) -> None:
    task = _run(sandbox_platform, "keyword_research", {"seed_keyword": "running shoes"})

    assert task.status is TaskStatus.COMPLETED
    outputs = task.outputs
    assert outputs["seed_keyword"] == "running shoes"
    volumes = [item["search_volume"] for item in outputs["keywords"]]
    assert len(volumes) == 20
    assert volumes == sorted(volumes, reverse=True)
    assert outputs["stats"]["total_keywords"] == 20
    assert set(outputs["suggestions"]) == {"high_volume", "low_competition", "high_cpc"}
    assert all(
        item["search_volume"] > 1000
        for item in outputs["keywords"]
        if item["keyword"] in outputs["suggestions"]["high_volume"]
    )
    assert "generated_at" in outputs
    assert sandbox_platform.api_logs.count() == 0
    assert sandbox_platform.ledger.get_balance(1) == 995


def test_keyword_research_requires_seed(sandbox_platform: Platform) -> None:
    task = _run(sandbox_platform, "keyword_research", {})

    assert task.status is TaskStatus.FAILED
    messages = [log.message for log in sandbox_platform.engine.get_task_logs(task.task_id)]
    assert "Error processing task: Seed keyword is required." in messages


def test_content_generation_in_sandbox(sandbox_platform: Platform) -> None:
    task = _run(
        sandbox_platform,
        "content_generation",
        {"topic": "trail running", "keywords": ["trail", "shoes"], "word_count": 300},
        approve=True,
    )

    assert task.status is TaskStatus.COMPLETED
    outputs = task.outputs
    assert outputs["content"].startswith("This is a sandbox response.")
    assert outputs["title"]
    assert outputs["meta_description"]
    assert outputs["stats"]["word_count"] == count_words(outputs["content"])
    assert outputs["stats"]["reading_time"] == 1
    assert outputs["usage"]["total_tokens"] == 250


@pytest.mark.parametrize(
    ("inputs", "code"),
    [
        ({}, "missing_topic"),
        ({"topic": "x", "content_type": "poem"}, "invalid_content_type"),
        ({"topic": "x", "tone": "angry"}, "invalid_tone"),
        ({"topic": "x", "word_count": 50}, "invalid_word_count"),
        ({"topic": "x", "word_count": "many"}, "invalid_word_count"),
    ],
)
def test_content_generation_validation(sandbox_platform: Platform, inputs, code) -> None:
    processor = ContentGenerationProcessor(sandbox_platform.api_manager)

    with pytest.raises(ProcessingError) as error:
        processor.validate_inputs(inputs)

    assert error.value.code == code


def test_seo_audit_in_sandbox(sandbox_platform: Platform) -> None:
    task = _run(
        sandbox_platform,
        "seo_audit",
        {"domain": "https://Example.com/blog", "max_pages": 5},
    )

    assert task.status is TaskStatus.COMPLETED
    outputs = task.outputs
    assert outputs["domain"] == "example.com"
    assert outputs["audit_task_id"].startswith("sandbox-")
    assert outputs["crawl_complete"] is True
    assert outputs["stats"]["pages_analyzed"] == 5
    assert outputs["issues"]["critical"] == []
    assert outputs["stats"]["score"] == audit_score(outputs["issues"])
    assert len(outputs["recommendations"]) == outputs["stats"]["issues_found"]


def test_seo_audit_validation(sandbox_platform: Platform) -> None:
    processor = SeoAuditProcessor(sandbox_platform.api_manager)

    with pytest.raises(ProcessingError, match="Domain is required"):
        processor.validate_inputs({})
    with pytest.raises(ProcessingError, match="Invalid domain"):
        processor.validate_inputs({"domain": "localhost"})
    with pytest.raises(ProcessingError, match="max_pages"):
        processor.validate_inputs({"domain": "a.com", "max_pages": 5000})


def test_backlink_analysis_in_sandbox(sandbox_platform: Platform) -> None:
    task = _run(sandbox_platform, "backlink_analysis", {"domain": "example.com", "limit": 5})

    assert task.status is TaskStatus.COMPLETED
    outputs = task.outputs
    assert outputs["summary"]["backlinks"] >= 100
    ranks = [item["rank"] for item in outputs["top_backlinks"]]
    assert len(ranks) == 5
    assert ranks == sorted(ranks, reverse=True)


def test_ad_copy_in_sandbox_keeps_raw_text(sandbox_platform: Platform) -> None:
    task = _run(
        sandbox_platform,
        "ad_copy",
        {"product": "Trail shoes", "platform": "facebook", "variations": 2},
        approve=True,
    )

    assert task.status is TaskStatus.COMPLETED
    assert task.outputs["raw_content"].startswith("This is a sandbox response.")
    assert task.outputs["platform"] == "facebook"
    levels = {log.level.value for log in sandbox_platform.engine.get_task_logs(task.task_id)}
    assert "warning" in levels


def test_ad_copy_validation(sandbox_platform: Platform) -> None:
    processor = AdCopyProcessor(sandbox_platform.api_manager)

    with pytest.raises(ProcessingError):
        processor.validate_inputs({"product": "x", "platform": "tiktok"})
    with pytest.raises(ProcessingError):
        processor.validate_inputs({"product": "x", "variations": 11})
    processor.validate_inputs({"product": "x"})


def test_unconfigured_live_provider_fails_task(tmp_path: Path) -> None:
    settings = replace(Settings(db_path=tmp_path / "live.db"), api=ApiSettings())
    client = ApiHttpClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    platform = build_platform(settings, http_client=client)
    try:
        task = _run(platform, "keyword_research", {"seed_keyword": "seo"})
        messages = [log.message for log in platform.engine.get_task_logs(task.task_id)]
    finally:
        client.close()
        platform.close()

    assert task.status is TaskStatus.FAILED
    assert "Error processing task: dataforseo API credentials are not configured." in messages


def test_live_dataforseo_error_fails_task(tmp_path: Path) -> None:
    settings = replace(
        Settings(db_path=tmp_path / "live.db"),
        api=ApiSettings(dataforseo_login="login", dataforseo_password="password"),
    )
    client = ApiHttpClient(
        transport=httpx.MockTransport(
            lambda request: httpx.Response(
                200,
                json={"status_code": 40100, "status_message": "You are not authorized."},
            ),
        ),
    )
    platform = build_platform(settings, http_client=client)
    try:
        task = _run(platform, "backlink_analysis", {"domain": "example.com"})
        messages = [log.message for log in platform.engine.get_task_logs(task.task_id)]
        api_calls = platform.api_logs.count()
    finally:
        client.close()
        platform.close()

    assert task.status is TaskStatus.FAILED
    assert "Error processing task: DataForSEO API error: You are not authorized." in messages
    assert api_calls == 1


def test_comma_separated_keywords_reach_the_prompt(tmp_path: Path) -> None:
    prompts: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        prompts.append(body["messages"][-1]["content"])
        return httpx.Response(
            200,
            json={
                "model": "gpt-3.5-turbo",
                "choices": [{"message": {"content": "# Trail Guide\n\nShoes for trails."}}],
                "usage": {"prompt_tokens": 20, "completion_tokens": 20, "total_tokens": 40},
            },
        )

    settings = replace(
        Settings(db_path=tmp_path / "live.db"),
        api=ApiSettings(openai_api_key="sk-test"),
    )
    client = ApiHttpClient(transport=httpx.MockTransport(_handler))
    platform = build_platform(settings, http_client=client)
    try:
        task = _run(
            platform,
            "content_generation",
            {"topic": "seo", "keywords": "seo, marketing"},
            approve=True,
        )
    finally:
        client.close()
        platform.close()

    assert task.status is TaskStatus.COMPLETED
    assert task.outputs["title"] == "Trail Guide"
    assert "content: seo, marketing." in prompts[0]


def test_input_list_accepts_strings_and_lists() -> None:
    assert BaseTaskProcessor.input_list("seo, marketing ,") == ["seo", "marketing"]
    assert BaseTaskProcessor.input_list(["seo", " ads "]) == ["seo", "ads"]
    assert BaseTaskProcessor.input_list(("a",)) == ["a"]
    assert BaseTaskProcessor.input_list(42) == ["42"]
    assert BaseTaskProcessor.input_list(None) == []


def test_helpers() -> None:
    assert normalize_domain("HTTPS://Shop.Example.com/path?q=1") == "shop.example.com"
    assert extract_markdown_title("intro\n# Best Trail Shoes \n\nbody") == "Best Trail Shoes"
    assert extract_markdown_title("no heading") == ""
    assert count_words("It's a well-known fact, 42 times.") == 5

    prompt = build_content_prompt(
        content_type="email",
        topic="launch",
        keywords=["sale"],
        tone="casual",
        outline="",
        word_count=200,
    )
    assert prompt.startswith("Create a casual-toned email about launch. ")
    assert "sale" in prompt
    assert "compelling subject line" in prompt

    assert parse_ad_copy('Sure! {"headlines": ["A"], "descriptions": ["B", "C"]}') == (
        ["A"],
        ["B", "C"],
    )
    assert parse_ad_copy("Headline 1: Fast\n- Description: Light and quick") == (
        ["Fast"],
        ["Light and quick"],
    )


def test_grade_pages_and_score() -> None:
    pages = [
        {"url": "http://a.com/", "checks": {"is_https": False, "no_description": True}},
        {"url": "https://a.com/x", "checks": {"is_https": True, "no_image_alt": True}},
    ]

    issues = grade_pages(pages)

    assert [issue["check"] for issue in issues["critical"]] == ["is_https"]
    assert issues["critical"][0]["pages"] == ["http://a.com/"]
    assert [issue["check"] for issue in issues["high"]] == ["no_description"]
    assert [issue["check"] for issue in issues["low"]] == ["no_image_alt"]
    assert issues["medium"] == []
    assert audit_score(issues) == 100 - 10 - 5 - 1
