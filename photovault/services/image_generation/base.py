"""
Provider contract for photo generation: one request in, one image (or ImageGenerationError) out.
Retries, classification and the circuit breaker live in runner.py, never in a provider.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class ImageGenerationRequest:
    """One image-to-image call: prompt plus the user's source photo."""
    prompt: str
    input_image: bytes | None = None
    input_mime_type: str = "image/jpeg"
    model: str | None = None  # provider default when unset
    size: str | None = None
    temperature: float | None = None
    seed: int | None = None


@dataclass
class ImageGenerationResponse:
    image_content: bytes
    model: str
    provider: str
    mime_type: str = "image/png"
    redacted_response: dict[str, Any] | None = None  # provider payload without image bytes


class ImageGenerationError(Exception):
    """
    A single provider call failed.

    detail carries normalized keys (http_status, retry_after, block_reason,
    finish_reason, ...) that the runner classifies into a FailureType.
    """

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


class ImageGenerationProvider(ABC):
    name: str = "base"

    def __init__(self, config: dict) -> None:
        self.config = config

    @abstractmethod
    def is_available(self) -> bool:
        """True when credentials are present; the factory refuses unavailable providers."""

    @abstractmethod
    def get_supported_models(self) -> list[str]:
        ...

    @abstractmethod
    def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        """Produce one image or raise ImageGenerationError."""
