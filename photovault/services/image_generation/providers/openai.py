"""
OpenAI gpt-image provider (image edits with the source photo as reference).
"""
import base64
import io

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from photovault.services.image_generation.base import (
    ImageGenerationError,
    ImageGenerationProvider,
    ImageGenerationRequest,
    ImageGenerationResponse,
)

_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


class OpenAIProvider(ImageGenerationProvider):
    """OpenAI image generation provider."""

    name = "openai"

    def __init__(self, config: dict):
        super().__init__(config)
        self.api_key = config.get("api_key")
        self.timeout = config.get("timeout", 120.0)
        self.model_name = config.get("model") or "gpt-image-1"

        if self.api_key:
            self.client = OpenAI(api_key=self.api_key, timeout=self.timeout)
        else:
            self.client = None

    def is_available(self) -> bool:
        """Check if OpenAI is configured."""
        return bool(self.api_key and self.client)

    def get_supported_models(self) -> list[str]:
        return ["gpt-image-1"]

    def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        if not self.is_available():
            raise ValueError("OpenAI provider not configured")
        if not request.input_image:
            raise ValueError("OpenAI provider requires an input image")

        model = request.model or self.model_name
        image_file = io.BytesIO(request.input_image)
        image_file.name = f"source.{_EXTENSIONS.get(request.input_mime_type, 'jpg')}"
        try:
            response = self.client.images.edit(
                model=model,
                image=image_file,
                prompt=request.prompt,
                size=request.size or "1024x1024",
                n=1,
            )
        except APIStatusError as e:
            detail = {"http_status": e.status_code}
            retry_after = e.response.headers.get("retry-after") if e.response is not None else None
            if retry_after is not None:
                detail["retry_after"] = retry_after
            raise ImageGenerationError(str(e), detail=detail) from e
        except (APIConnectionError, APITimeoutError) as e:
            raise ImageGenerationError(str(e), detail={}) from e

        data = response.data[0] if response.data else None
        if data is None or not data.b64_json:
            raise ImageGenerationError("No image in OpenAI response", detail={"finish_reason": "NO_IMAGE"})

        return ImageGenerationResponse(
            image_content=base64.b64decode(data.b64_json),
            model=model,
            provider=self.name,
            mime_type="image/png",
        )
