"""OpenAI provider: chat, images, speech and transcription with credit pricing."""

from __future__ import annotations

import base64
import hashlib
import json
import math
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ai_task_platform.api.service import (
    ApiRequestError,
    ApiResponse,
    ApiService,
    ServiceName,
)

DEFAULT_CHAT_MODEL = "gpt-3.5-turbo"
DEFAULT_MAX_TOKENS = 500
CHARS_PER_TOKEN = 4
DEFAULT_TRANSCRIPTION_MINUTES = 2
SANDBOX_CREATED_AT = 1_700_000_000


@dataclass(frozen=True, slots=True)
class ChatModelPricing:
    """Credits per 1k tokens."""

    input_per_1k: int
    output_per_1k: int
    context_window: int


CHAT_MODEL_PRICING: dict[str, ChatModelPricing] = {
    "gpt-4-turbo": ChatModelPricing(input_per_1k=10, output_per_1k=30, context_window=128_000),
    "gpt-4": ChatModelPricing(input_per_1k=30, output_per_1k=60, context_window=8_192),
    "gpt-3.5-turbo": ChatModelPricing(input_per_1k=1, output_per_1k=2, context_window=16_385),
}
IMAGE_PRICING: dict[str, dict[str, int]] = {
    "dall-e-3": {"1024x1024": 40, "1792x1024": 80, "1024x1792": 80},
}
SPEECH_PRICING_PER_1K_CHARS: dict[str, int] = {"tts-1": 15, "tts-1-hd": 30}
TRANSCRIPTION_PRICING_PER_MINUTE: dict[str, int] = {"whisper-1": 10}

CHAT_ENDPOINT = "chat/completions"
IMAGE_ENDPOINT = "images/generations"
SPEECH_ENDPOINT = "audio/speech"
TRANSCRIPTION_ENDPOINT = "audio/transcriptions"
MODELS_ENDPOINT = "models"


def resolve_chat_pricing(model: str) -> ChatModelPricing | None:
    """Exact match first, then the longest known prefix (dated snapshots)."""

    pricing = CHAT_MODEL_PRICING.get(model)
    if pricing is not None:
        return pricing
    for name in sorted(CHAT_MODEL_PRICING, key=len, reverse=True):
        if model.startswith(f"{name}-"):
            return CHAT_MODEL_PRICING[name]
    return None


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def token_cost(*, input_tokens: int, output_tokens: int, pricing: ChatModelPricing) -> int:
    return (
        math.ceil(input_tokens / 1000) * pricing.input_per_1k
        + math.ceil(output_tokens / 1000) * pricing.output_per_1k
    )


class OpenAIService(ApiService):
    service_name = ServiceName.OPENAI
    default_base_url = "https://api.openai.com/v1"

    def create_chat_completion(self, params: dict[str, Any]) -> ApiResponse:
        request = {
            "model": DEFAULT_CHAT_MODEL,
            "messages": [],
            "temperature": 0.7,
            "max_tokens": DEFAULT_MAX_TOKENS,
            **params,
        }
        estimate = self.estimate_chat_completion_cost(request)
        blocked = self.ensure_credits(estimate)
        if blocked is not None:
            return blocked
        return self.make_request(CHAT_ENDPOINT, request, "POST", estimated_credits=estimate)

    def create_image(self, params: dict[str, Any]) -> ApiResponse:
        request = {
            "model": "dall-e-3",
            "prompt": "",
            "n": 1,
            "size": "1024x1024",
            "response_format": "url",
            **params,
        }
        estimate = self.estimate_image_cost(request)
        blocked = self.ensure_credits(estimate)
        if blocked is not None:
            return blocked
        return self.make_request(IMAGE_ENDPOINT, request, "POST", estimated_credits=estimate)

    def create_speech(self, params: dict[str, Any]) -> ApiResponse:
        request = {
            "model": "tts-1",
            "input": "",
            "voice": "alloy",
            "response_format": "mp3",
            **params,
        }
        estimate = self.estimate_speech_cost(request)
        blocked = self.ensure_credits(estimate)
        if blocked is not None:
            return blocked
        return self.make_request(SPEECH_ENDPOINT, request, "POST", estimated_credits=estimate)

    def create_transcription(self, params: dict[str, Any]) -> ApiResponse:
        """Upload an audio file (multipart) referenced by `params["file"]`."""

        request = {"model": "whisper-1", "file": "", "response_format": "json", **params}
        estimate = self.estimate_transcription_cost(request)
        blocked = self.ensure_credits(estimate)
        if blocked is not None:
            return blocked
        file_path = str(request.pop("file"))
        return self.make_request(
            TRANSCRIPTION_ENDPOINT,
            request,
            "POST",
            files={"file": file_path},
            estimated_credits=estimate,
        )

    def list_models(self) -> ApiResponse:
        return self.request_with_cache(MODELS_ENDPOINT, {}, "GET")

    def estimate_chat_completion_cost(self, params: dict[str, Any]) -> int:
        pricing = resolve_chat_pricing(str(params.get("model", DEFAULT_CHAT_MODEL)))
        if pricing is None:
            return 0
        input_tokens = sum(
            estimate_tokens(str(message.get("content") or ""))
            for message in params.get("messages") or []
            if isinstance(message, dict)
        )
        output_tokens = int(params.get("max_tokens") or DEFAULT_MAX_TOKENS)
        return token_cost(input_tokens=input_tokens, output_tokens=output_tokens, pricing=pricing)

    def estimate_image_cost(self, params: dict[str, Any]) -> int:
        sizes = IMAGE_PRICING.get(str(params.get("model", "dall-e-3")), {})
        per_image = sizes.get(str(params.get("size", "1024x1024")))
        if per_image is None:
            return 0
        return per_image * int(params.get("n", 1))

    def estimate_speech_cost(self, params: dict[str, Any]) -> int:
        per_1k = SPEECH_PRICING_PER_1K_CHARS.get(str(params.get("model", "tts-1")))
        if per_1k is None:
            return 0
        return math.ceil(len(str(params.get("input", ""))) / 1000) * per_1k

    def estimate_transcription_cost(self, params: dict[str, Any]) -> int:
        per_minute = TRANSCRIPTION_PRICING_PER_MINUTE.get(str(params.get("model", "whisper-1")))
        if per_minute is None:
            return 0
        return math.ceil(_audio_minutes(params)) * per_minute

    def execute_request(
        self,
        endpoint: str,
        params: Any,
        method: str,
        *,
        files: dict[str, str] | None = None,
    ) -> Any:
        if not self.credentials.api_key:
            raise ApiRequestError("missing_credentials", "OpenAI API key not provided.", 401)

        headers = {"Authorization": f"Bearer {self.credentials.api_key}"}
        upload = _open_uploads(files) if files else None
        result = self._send(endpoint, params, method, headers=headers, files=upload)
        if not result.is_success:
            message = result.error or "Unknown API error"
            if isinstance(result.payload, dict):
                error = result.payload.get("error")
                if isinstance(error, dict) and error.get("message"):
                    message = str(error["message"])
            code = "api_error" if result.status_code >= 400 else "http_error"
            raise ApiRequestError(code, message, result.status_code or None)

        if endpoint == SPEECH_ENDPOINT and result.payload is None:
            return {
                "content_type": result.headers.get("content-type", "audio/mpeg"),
                "b64_json": base64.b64encode(result.content).decode("ascii"),
            }
        if result.payload is None:
            raise ApiRequestError("malformed_response", "Empty or non-JSON response body.")
        return result.payload

    def generate_sandbox_response(self, endpoint: str, params: Any, method: str) -> Any:
        if endpoint == CHAT_ENDPOINT:
            return _sandbox_chat_completion(params)
        if endpoint == IMAGE_ENDPOINT:
            size = str(params.get("size", "1024x1024"))
            return {
                "created": SANDBOX_CREATED_AT,
                "data": [
                    {
                        "url": f"https://placehold.co/{size.replace('x', '/')}?text=Sandbox+Image",
                        "b64_json": None,
                    }
                    for _ in range(int(params.get("n", 1)))
                ],
            }
        if endpoint == SPEECH_ENDPOINT:
            return {
                "content_type": "audio/mpeg",
                "b64_json": base64.b64encode(b"Hello, this is a sandbox response.").decode("ascii"),
            }
        if endpoint == TRANSCRIPTION_ENDPOINT:
            return {
                "text": (
                    "This is a sandbox transcription. In a real environment, this would be "
                    "the transcribed text from the audio file."
                ),
            }
        if endpoint == MODELS_ENDPOINT:
            return {
                "object": "list",
                "data": [
                    {"id": name, "object": "model", "owned_by": "openai"}
                    for name in (
                        *CHAT_MODEL_PRICING,
                        *IMAGE_PRICING,
                        *SPEECH_PRICING_PER_1K_CHARS,
                        *TRANSCRIPTION_PRICING_PER_MINUTE,
                    )
                ],
            }
        return {"message": "Sandbox mode: No specific mock response for this endpoint."}

    def calculate_credits_used(
        self,
        endpoint: str,
        params: Any,
        response: ApiResponse,
    ) -> int | None:
        if endpoint == CHAT_ENDPOINT:
            return _chat_credits(response.data)
        if endpoint == IMAGE_ENDPOINT:
            sizes = IMAGE_PRICING.get(str(params.get("model", "dall-e-3")), {})
            per_image = sizes.get(str(params.get("size", "1024x1024")))
            if per_image is None:
                return 0
            images = response.data.get("data") if isinstance(response.data, dict) else None
            return per_image * max(1, len(images) if isinstance(images, list) else 0)
        if endpoint == SPEECH_ENDPOINT:
            return self.estimate_speech_cost(params)
        if endpoint == TRANSCRIPTION_ENDPOINT:
            return self.estimate_transcription_cost(params)
        return 0


def _chat_credits(data: Any) -> int | None:
    if not isinstance(data, dict):
        return None
    usage = data.get("usage")
    model = data.get("model")
    if not isinstance(usage, dict) or not model:
        return None
    pricing = resolve_chat_pricing(str(model))
    if pricing is None:
        return 0
    return token_cost(
        input_tokens=int(usage.get("prompt_tokens") or 0),
        output_tokens=int(usage.get("completion_tokens") or 0),
        pricing=pricing,
    )


def _audio_minutes(params: dict[str, Any]) -> float:
    duration = params.get("duration_seconds")
    if duration is not None:
        return max(float(duration), 0.0) / 60
    return DEFAULT_TRANSCRIPTION_MINUTES


def _open_uploads(files: dict[str, str]) -> dict[str, tuple[str, bytes, str]]:
    uploads: dict[str, tuple[str, bytes, str]] = {}
    for field_name, raw_path in files.items():
        path = Path(raw_path)
        if not path.is_file():
            raise ApiRequestError("file_not_found", f"File not found: {raw_path}", 400)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        uploads[field_name] = (path.name, path.read_bytes(), content_type)
    return uploads


def _sandbox_chat_completion(params: dict[str, Any]) -> dict[str, Any]:
    model = str(params.get("model", DEFAULT_CHAT_MODEL))
    last_user_message = ""
    for message in reversed(params.get("messages") or []):
        if isinstance(message, dict) and message.get("role") == "user":
            last_user_message = str(message.get("content") or "")
            break

    content = "This is a sandbox response. "
    if last_user_message:
        content += f'You asked about: "{last_user_message[:50]}..." '
    content += (
        f"In a real environment, you would get an actual response from the OpenAI {model} model."
    )
    digest = hashlib.md5(  # noqa: S324
        json.dumps(params, sort_keys=True, default=str).encode("utf-8"),
    ).hexdigest()
    return {
        "id": f"sandbox-{digest[:12]}",
        "object": "chat.completion",
        "created": SANDBOX_CREATED_AT,
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            },
        ],
        "usage": {"prompt_tokens": 100, "completion_tokens": 150, "total_tokens": 250},
    }
