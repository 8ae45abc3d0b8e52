"""
Image generation with multi-provider support.
"""
from .base import (
    ImageGenerationError,
    ImageGenerationProvider,
    ImageGenerationRequest,
    ImageGenerationResponse,
)
from .factory import ImageProviderFactory
from .failure_types import FailureType, classify_failure
from .runner import generate_with_retry

__all__ = [
    "ImageGenerationProvider",
    "ImageGenerationRequest",
    "ImageGenerationResponse",
    "ImageGenerationError",
    "ImageProviderFactory",
    "generate_with_retry",
    "FailureType",
    "classify_failure",
]
