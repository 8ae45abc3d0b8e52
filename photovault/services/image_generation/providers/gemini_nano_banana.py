"""
Gemini Nano Banana provider (Google AI generateContent image generation).
Uses generativelanguage.googleapis.com with api_key.
A 200 OK without an image is never a silent success; detail carries normalized fields for the runner.
"""
import base64
import json
import logging
from typing import Any

import httpx

from photovault.services.image_generation.base import (
    ImageGenerationError,
    ImageGenerationProvider,
    ImageGenerationRequest,
    ImageGenerationResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.3
MAX_PRODUCTION_TEMPERATURE = 0.5

# generateContent candidate field -> normalized detail key read by the runner
_CANDIDATE_FIELDS = (
    ("finishReason", "finish_reason"),
    ("finishMessage", "finish_message"),
    ("safetyRatings", "safety_ratings"),
)


def _error_detail(result: Any) -> dict[str, Any]:
    """Normalized failure fields of a generateContent response (or error body)."""
    if not isinstance(result, dict):
        return {}
    detail: dict[str, Any] = {}
    feedback = result.get("promptFeedback") or {}
    if feedback:
        detail["prompt_feedback"] = feedback
        if feedback.get("blockReason"):
            detail["block_reason"] = feedback["blockReason"]
    candidates = result.get("candidates") or []
    first = candidates[0] if candidates else {}
    for field, key in _CANDIDATE_FIELDS:
        if field in first:
            detail[key] = first[field]
    return detail


def _redact_inline_data(value: Any) -> Any:
    """Copy of a response with every inline image payload replaced, safe to keep in logs."""
    if isinstance(value, dict):
        if "data" in value and "mimeType" in value:
            return {"mimeType": value["mimeType"], "data": "[REDACTED]"}
        return {k: _redact_inline_data(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact_inline_data(v) for v in value]
    return value


def _parse_safety_settings(value: Any) -> list[dict[str, Any]]:
    """Parse safety_settings from config (list of {category, threshold} or JSON string)."""
    if not value:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            return parsed if isinstance(parsed, list) else []
        except json.JSONDecodeError:
            return []
    return []


class GeminiNanaBananaProvider(ImageGenerationProvider):
    """Gemini image generation via Google AI generateContent API."""

    name = "gemini"

    def __init__(self, config: dict) -> None:
        super().__init__(config)
        self.api_key = (config.get("api_key") or "").strip()
        endpoint = (config.get("api_endpoint") or "https://generativelanguage.googleapis.com").rstrip("/")
        self.base_url = f"{endpoint}/v1beta/models"
        self.timeout = float(config.get("timeout", 120.0))
        self.model_name = (config.get("model") or "gemini-2.5-flash-image").strip()

    def is_available(self) -> bool:
        return bool(self.api_key)

    def get_supported_models(self) -> list[str]:
        return [
            "gemini-2.5-flash-image",
            "gemini-2.5-flash-image-preview",
        ]

    def _build_payload(self, request: ImageGenerationRequest) -> dict[str, Any]:
        temperature = request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE
        temperature = min(max(0.0, float(temperature)), MAX_PRODUCTION_TEMPERATURE)

        parts: list[dict] = [{"text": request.prompt}]
        if request.input_image:
            parts.append({
                "inlineData": {
                    "mimeType": request.input_mime_type or "image/jpeg",
                    "data": base64.standard_b64encode(request.input_image).decode("ascii"),
                },
            })

        generation_config: dict[str, Any] = {
            "responseModalities": ["IMAGE"],
            "temperature": temperature,
        }
        if request.seed is not None:
            generation_config["seed"] = int(request.seed)
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }
        safety_settings = _parse_safety_settings(self.config.get("safety_settings"))
        if safety_settings:
            payload["safetySettings"] = safety_settings
        return payload

    def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        if not self.is_available():
            raise ValueError("Gemini provider not configured (missing api_key)")

        model = (request.model or self.model_name).strip() or self.model_name
        url = f"{self.base_url}/{model}:generateContent"

        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(url, params={"key": self.api_key}, json=self._build_payload(request))
                resp.raise_for_status()
                result = resp.json()
        except httpx.HTTPStatusError as e:
            try:
                err_body = e.response.json()
            except ValueError:
                err_body = {}
            detail = _error_detail(err_body)
            detail["http_status"] = e.response.status_code
            if e.response.status_code == 429:
                retry_after = e.response.headers.get("Retry-After")
                if retry_after is not None:
                    detail["retry_after"] = retry_after
            msg = (err_body.get("error") or {}).get("message", str(e)) if isinstance(err_body, dict) else str(e)
            raise ImageGenerationError(msg, detail=detail) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ImageGenerationError(str(e), detail={}) from e

        # Block at request level (no candidates)
        prompt_feedback = result.get("promptFeedback", {})
        if prompt_feedback.get("blockReason"):
            raise ImageGenerationError(prompt_feedback["blockReason"], detail=_error_detail(result))

        candidates = result.get("candidates") or []
        if not candidates:
            raise ImageGenerationError("No candidates in Gemini response", detail=_error_detail(result))

        c0 = candidates[0]
        finish_reason = c0.get("finishReason", "")
        if finish_reason and finish_reason != "STOP":
            finish_message = c0.get("finishMessage", finish_reason)
            raise ImageGenerationError(finish_message or finish_reason, detail=_error_detail(result))

        image_b64: str | None = None
        mime_type = "image/png"
        for part in (c0.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and isinstance(inline.get("data"), str):
                image_b64 = inline["data"]
                mime_type = inline.get("mimeType") or inline.get("mime_type") or mime_type
                break

        if not image_b64:
            raise ImageGenerationError("No image in Gemini response", detail=_error_detail(result))

        return ImageGenerationResponse(
            image_content=base64.standard_b64decode(image_b64),
            model=model,
            provider=self.name,
            mime_type=mime_type,
            redacted_response=_redact_inline_data(result),
        )
