"""
Factory for creating image generation providers based on configuration.
"""
import logging
from typing import Optional

from photovault.services.image_generation.base import ImageGenerationProvider
from photovault.services.image_generation.providers.gemini_nano_banana import GeminiNanaBananaProvider
from photovault.services.image_generation.providers.openai import OpenAIProvider

logger = logging.getLogger(__name__)


class ImageProviderFactory:
    """Factory for creating image generation providers."""

    PROVIDERS = {
        "gemini": GeminiNanaBananaProvider,
        "openai": OpenAIProvider,
    }

    @classmethod
    def create(cls, provider_name: str, config: dict) -> ImageGenerationProvider:
        """
        Create provider instance by name.

        Raises:
            ValueError: If provider name is unknown
        """
        provider_class = cls.PROVIDERS.get(provider_name.lower())

        if not provider_class:
            available = ", ".join(cls.PROVIDERS.keys())
            raise ValueError(
                f"Unknown provider: {provider_name}. "
                f"Available providers: {available}"
            )

        logger.info("image_provider_created", extra={"provider": provider_name})
        provider = provider_class(config)

        if not provider.is_available():
            logger.warning("image_provider_not_configured", extra={"provider": provider_name})

        return provider

    @classmethod
    def create_from_settings(cls, settings, provider_override: Optional[str] = None) -> ImageGenerationProvider:
        """Create provider from application settings (settings.image_provider unless overridden)."""
        provider_name = (provider_override or "").strip() or settings.image_provider

        if provider_name == "openai":
            config = {
                "api_key": settings.openai_api_key,
                "timeout": settings.openai_request_timeout,
                "model": settings.openai_image_model,
            }
        elif provider_name == "gemini":
            config = {
                "api_key": settings.gemini_api_key,
                "api_endpoint": settings.gemini_api_endpoint,
                "timeout": settings.gemini_timeout,
                "model": settings.gemini_image_model,
                "safety_settings": settings.gemini_safety_settings,
            }
        else:
            raise ValueError(f"Provider {provider_name} not supported in settings")

        return cls.create(provider_name, config)
