from __future__ import annotations

from pathlib import Path

import allure
import httpx
import pytest

from ai_task_platform.api.openai_service import (
    CHAT_MODEL_PRICING,
    OpenAIService,
    estimate_tokens,
    resolve_chat_pricing,
)

pytestmark = [
    allure.epic("API Services"),
    allure.feature("OpenAI"),
]


@pytest.fixture()
def sandbox_service(service_context, credentials) -> OpenAIService:
    return OpenAIService(
        user_id=1,
        credentials=credentials,
        context=service_context(),
        sandbox_mode=True,
    )


def test_resolve_chat_pricing_matches_dated_snapshots() -> None:
    assert resolve_chat_pricing("gpt-4") is CHAT_MODEL_PRICING["gpt-4"]
    assert resolve_chat_pricing("gpt-4-0613") is CHAT_MODEL_PRICING["gpt-4"]
    assert resolve_chat_pricing("gpt-4-turbo-2024-04-09") is CHAT_MODEL_PRICING["gpt-4-turbo"]
    assert resolve_chat_pricing("claude-3") is None


def test_estimates_follow_price_tables(sandbox_service: OpenAIService) -> None:
    assert estimate_tokens("abcdefgh") == 2
    assert sandbox_service.estimate_chat_completion_cost(
        {
            "model": "gpt-4",
            "messages": [{"role": "user", "content": "x" * 4100}],
            "max_tokens": 1000,
        },
    ) == 2 * 30 + 1 * 60
    assert sandbox_service.estimate_chat_completion_cost({"model": "unknown"}) == 0
    assert sandbox_service.estimate_image_cost({"size": "1792x1024", "n": 2}) == 160
    assert sandbox_service.estimate_image_cost({"size": "256x256"}) == 0
    assert sandbox_service.estimate_speech_cost({"model": "tts-1-hd", "input": "a" * 1001}) == 60
    assert sandbox_service.estimate_transcription_cost({}) == 20
    assert sandbox_service.estimate_transcription_cost({"duration_seconds": 61}) == 20


def test_sandbox_shapes_for_every_endpoint(sandbox_service: OpenAIService) -> None:
    image = sandbox_service.create_image({"prompt": "cat", "n": 2, "size": "1024x1792"})
    speech = sandbox_service.create_speech({"input": "hello"})
    transcript = sandbox_service.create_transcription({"file": "/missing.mp3"})
    models = sandbox_service.list_models()

    assert [item["url"] for item in image.data["data"]] == [
        "https://placehold.co/1024/1792?text=Sandbox+Image",
    ] * 2
    assert speech.data["content_type"] == "audio/mpeg"
    assert transcript.data["text"].startswith("This is a sandbox transcription.")
    assert {"gpt-4", "dall-e-3", "tts-1", "whisper-1"} <= {m["id"] for m in models.data["data"]}


def test_transcription_uploads_multipart_file(
    service_context,
    credentials,
    ledger,
    tmp_path: Path,
) -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"text": "hello world"})

    audio = tmp_path / "clip.mp3"
    audio.write_bytes(b"ID3fake")
    ledger.grant(1, 100)
    service = OpenAIService(user_id=1, credentials=credentials, context=service_context(_handler))

    response = service.create_transcription({"file": str(audio), "duration_seconds": 90})

    assert response.data == {"text": "hello world"}
    assert response.credits_used == 20
    assert b'filename="clip.mp3"' in seen[0].content
    assert seen[0].headers["content-type"].startswith("multipart/form-data")


def test_transcription_of_missing_file_is_an_error(service_context, credentials, ledger) -> None:
    ledger.grant(1, 100)
    service = OpenAIService(user_id=1, credentials=credentials, context=service_context())

    response = service.create_transcription({"file": "/does/not/exist.wav"})

    assert response.success is False
    assert response.error is not None
    assert response.error.code == "file_not_found"
    assert ledger.get_balance(1) == 100
