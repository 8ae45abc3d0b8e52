"""
Image helpers for uploads and generated outputs (Pillow).
"""
import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

_FORMAT_MIME = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}
_MIME_EXT = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


def extension_for(mime_type: str) -> str:
    return _MIME_EXT.get((mime_type or "").lower(), "bin")


def sniff_mime_type(data: bytes) -> str | None:
    """MIME type of an image Pillow can decode, else None."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            return _FORMAT_MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return None


def optimize_output(data: bytes, mime_type: str, max_width: int, quality: int) -> tuple[bytes, str]:
    """
    Shrink a generated image to at most max_width and re-encode as JPEG.
    Returns the original bytes and mime type when Pillow cannot process the input.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            if img.width > max_width:
                height = max(1, round(img.height * max_width / img.width))
                img = img.resize((max_width, height), Image.LANCZOS)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            out = io.BytesIO()
            img.save(out, format="JPEG", quality=quality, optimize=True)
            return out.getvalue(), "image/jpeg"
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("image_optimize_failed", extra={"error": str(e)})
        return data, mime_type
