"""Tests for failure classification, the providers, the retry runner and the circuit breaker wrapper."""
import base64
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pybreaker
import pytest
from openai import APIStatusError

from photovault.services.circuit_breaker import build_circuit_breaker, guarded_call
from photovault.services.image_generation import ImageGenerationError, ImageGenerationRequest
from photovault.services.image_generation.failure_types import FailureType, classify_failure
from photovault.services.image_generation.providers.gemini_nano_banana import GeminiNanaBananaProvider
from photovault.services.image_generation.providers.openai import OpenAIProvider
from photovault.services.image_generation.runner import generate_with_retry

from conftest import FakeProvider

RUNNER_SETTINGS = SimpleNamespace(
    image_generation_retry_max_attempts=3,
    image_generation_retry_backoff_seconds=0.5,
    image_generation_retry_respect_retry_after=True,
)


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "http_status, detail, expected, retry",
        [
            (429, {}, FailureType.TRANSPORT_TRANSIENT, True),
            (503, {}, FailureType.TRANSPORT_TRANSIENT, True),
            (400, {}, FailureType.CLIENT_NON_RETRIABLE, False),
            (None, {"block_reason": "SAFETY"}, FailureType.PROMPT_BLOCKED, False),
            (None, {"finish_reason": "SAFETY"}, FailureType.RESPONSE_BLOCKED, True),
            (None, {"finish_reason": "IMAGE_SAFETY"}, FailureType.RESPONSE_BLOCKED_STRICT, False),
            (None, {"finish_reason": "MAX_TOKENS"}, FailureType.RESPONSE_BLOCKED_STRICT, False),
            (None, {"error": "No image in response"}, FailureType.RESPONSE_BLOCKED, False),
            (None, {}, FailureType.TRANSPORT_TRANSIENT, True),
        ],
    )
    def test_classification(self, http_status, detail, expected, retry):
        assert classify_failure(http_status, detail) == (expected, retry)


class TestRunner:
    def test_retries_transient_failures(self):
        provider = FakeProvider(fail_first=2, error=ImageGenerationError("busy", detail={"http_status": 503}))
        delays = []

        result = generate_with_retry(provider, ImageGenerationRequest(prompt="p"), RUNNER_SETTINGS, sleep=delays.append)

        assert result.provider == "fake"
        assert provider.calls == 3
        assert len(delays) == 2
        assert all(0.5 <= d <= 1.5 for d in delays)

    def test_blocked_prompt_not_retried(self):
        provider = FakeProvider(fail_first=1)
        with pytest.raises(ImageGenerationError) as exc_info:
            generate_with_retry(provider, ImageGenerationRequest(prompt="p"), RUNNER_SETTINGS, sleep=lambda _: None)
        assert provider.calls == 1
        assert exc_info.value.detail["failure_type"] == FailureType.PROMPT_BLOCKED.value

    def test_budget_exhausted(self):
        provider = FakeProvider(fail_first=10, error=ImageGenerationError("busy", detail={"http_status": 500}))
        with pytest.raises(ImageGenerationError):
            generate_with_retry(provider, ImageGenerationRequest(prompt="p"), RUNNER_SETTINGS, sleep=lambda _: None)
        assert provider.calls == 3

    def test_retry_after_is_respected(self):
        provider = FakeProvider(
            fail_first=1,
            error=ImageGenerationError("slow down", detail={"http_status": 429, "retry_after": "7"}),
        )
        delays = []
        generate_with_retry(provider, ImageGenerationRequest(prompt="p"), RUNNER_SETTINGS, sleep=delays.append)
        assert 7 <= delays[0] <= 8


def _transient():
    raise ImageGenerationError("unreachable", detail={"failure_type": FailureType.TRANSPORT_TRANSIENT.value})


def _blocked():
    raise ImageGenerationError("blocked", detail={"failure_type": FailureType.PROMPT_BLOCKED.value})


class TestCircuitBreaker:
    def test_opens_after_consecutive_transient_failures(self):
        breaker = build_circuit_breaker("test-open")
        for _ in range(4):
            with pytest.raises(ImageGenerationError):
                guarded_call(breaker, _transient)
        with pytest.raises(pybreaker.CircuitBreakerError):
            guarded_call(breaker, _transient)

        assert breaker.current_state == pybreaker.STATE_OPEN
        with pytest.raises(pybreaker.CircuitBreakerError):
            guarded_call(breaker, lambda: "never called")

    def test_content_failures_do_not_count(self):
        breaker = build_circuit_breaker("test-content")
        for _ in range(10):
            with pytest.raises(ImageGenerationError):
                guarded_call(breaker, _blocked)
        assert breaker.current_state == pybreaker.STATE_CLOSED
        assert breaker.fail_counter == 0

    def test_success_resets_failure_count(self):
        breaker = build_circuit_breaker("test-reset")
        for _ in range(3):
            with pytest.raises(ImageGenerationError):
                guarded_call(breaker, _transient)
        assert guarded_call(breaker, lambda: "ok") == "ok"
        assert breaker.fail_counter == 0


GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash-image:generateContent"


def _gemini_response(status: int, body: dict, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(status, json=body, headers=headers, request=httpx.Request("POST", GEMINI_URL))


class TestGeminiProvider:
    def _provider(self, **config):
        return GeminiNanaBananaProvider({"api_key": "test-key", **config})

    def _generate(self, provider, response):
        with patch("httpx.Client") as client_cls:
            client = client_cls.return_value.__enter__.return_value
            client.post.return_value = response
            result = provider.generate(ImageGenerationRequest(prompt="portrait", input_image=b"jpeg-bytes"))
        return result, client.post.call_args

    def test_payload_carries_prompt_and_inline_image(self):
        image = base64.standard_b64encode(b"png-bytes").decode("ascii")
        body = {"candidates": [{"finishReason": "STOP", "content": {"parts": [
            {"inlineData": {"mimeType": "image/png", "data": image}}
        ]}}]}

        result, call = self._generate(self._provider(), _gemini_response(200, body))

        assert result.image_content == b"png-bytes"
        assert result.redacted_response["candidates"][0]["content"]["parts"][0]["inlineData"]["data"] == "[REDACTED]"
        parts = call.kwargs["json"]["contents"][0]["parts"]
        assert parts[0] == {"text": "portrait"}
        assert parts[1]["inlineData"]["data"] == base64.standard_b64encode(b"jpeg-bytes").decode("ascii")
        assert call.kwargs["params"] == {"key": "test-key"}

    def test_blocked_prompt(self):
        body = {"promptFeedback": {"blockReason": "SAFETY"}}
        with pytest.raises(ImageGenerationError) as exc_info:
            self._generate(self._provider(), _gemini_response(200, body))
        assert exc_info.value.detail["block_reason"] == "SAFETY"

    def test_blocked_response_normalizes_candidate_fields(self):
        ratings = [{"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "probability": "HIGH"}]
        body = {"candidates": [{"finishReason": "IMAGE_SAFETY", "finishMessage": "unsafe", "safetyRatings": ratings}]}
        with pytest.raises(ImageGenerationError) as exc_info:
            self._generate(self._provider(), _gemini_response(200, body))
        assert exc_info.value.detail == {
            "finish_reason": "IMAGE_SAFETY",
            "finish_message": "unsafe",
            "safety_ratings": ratings,
        }
        assert str(exc_info.value) == "unsafe"

    def test_rate_limited_carries_retry_after(self):
        body = {"error": {"message": "quota exceeded"}}
        with pytest.raises(ImageGenerationError) as exc_info:
            self._generate(self._provider(), _gemini_response(429, body, {"Retry-After": "3"}))
        assert exc_info.value.detail["http_status"] == 429
        assert exc_info.value.detail["retry_after"] == "3"
        assert str(exc_info.value) == "quota exceeded"

    def test_safety_settings_from_json(self):
        provider = self._provider(safety_settings='[{"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"}]')
        payload = provider._build_payload(ImageGenerationRequest(prompt="p"))
        assert payload["safetySettings"][0]["threshold"] == "BLOCK_NONE"

    def test_unconfigured(self):
        with pytest.raises(ValueError):
            GeminiNanaBananaProvider({}).generate(ImageGenerationRequest(prompt="p"))


class TestOpenAIProvider:
    def test_status_error_is_mapped(self):
        provider = OpenAIProvider({"api_key": "sk-test"})
        provider.client = MagicMock()
        response = httpx.Response(
            429,
            headers={"retry-after": "2"},
            request=httpx.Request("POST", "https://api.openai.com/v1/images/edits"),
        )
        provider.client.images.edit.side_effect = APIStatusError("rate limited", response=response, body=None)

        with pytest.raises(ImageGenerationError) as exc_info:
            provider.generate(ImageGenerationRequest(prompt="p", input_image=b"img", input_mime_type="image/png"))

        assert exc_info.value.detail == {"http_status": 429, "retry_after": "2"}
        assert provider.client.images.edit.call_args.kwargs["image"].name == "source.png"

    def test_decodes_image(self):
        provider = OpenAIProvider({"api_key": "sk-test"})
        provider.client = MagicMock()
        provider.client.images.edit.return_value.data = [
            SimpleNamespace(b64_json=base64.b64encode(b"png-bytes").decode("ascii"))
        ]

        result = provider.generate(ImageGenerationRequest(prompt="p", input_image=b"img"))

        assert result.image_content == b"png-bytes"
        assert result.provider == "openai"
