"""
PhotoService: writes generated images to object storage and keeps one PhotoSet
row per generation. Reads hand out freshly signed URLs, never stored ones.
"""
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from photovault.core.config import settings
from photovault.core.errors import InvalidRequest, NotFound, StorageFailure
from photovault.models.photo_set import PhotoSet
from photovault.storage.base import ObjectNotFound, Storage, StorageError
from photovault.utils.images import extension_for, optimize_output, sniff_mime_type
from photovault.utils.metrics import storage_failures_total

logger = logging.getLogger(__name__)

# (bytes, mime_type) -> (bytes, mime_type)
ImageTransform = Callable[[bytes, str], tuple[bytes, str]]


def default_transform(data: bytes, mime_type: str) -> tuple[bytes, str]:
    return optimize_output(data, mime_type, settings.output_max_width, settings.output_jpeg_quality)


@dataclass
class GeneratedImage:
    data: bytes
    mime_type: str = "image/png"


@dataclass
class PhotoSetView:
    id: str
    theme: str
    credits_used: int
    created_at: datetime
    refs: list[str] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)


def photos_prefix(account_id: str, photo_set_id: str | None = None) -> str:
    base = f"users/{account_id}/photos"
    return f"{base}/{photo_set_id}" if photo_set_id else base


def uploads_prefix(account_id: str) -> str:
    return f"users/{account_id}/uploads"


class PhotoService:
    def __init__(
        self,
        db: Session,
        storage: Storage,
        transform: ImageTransform | None = default_transform,
        url_ttl_seconds: int | None = None,
    ):
        self.db = db
        self.storage = storage
        self.transform = transform
        self.url_ttl_seconds = url_ttl_seconds or settings.signed_url_ttl_seconds

    def store(
        self,
        account_id: str,
        theme: str,
        credits_used: int,
        outputs: list[GeneratedImage],
        source_image_ref: str | None = None,
    ) -> PhotoSet:
        photo_set_id, refs = self.write_outputs(account_id, outputs)
        return self.record(photo_set_id, account_id, theme, credits_used, refs, source_image_ref)

    def write_outputs(self, account_id: str, outputs: list[GeneratedImage]) -> tuple[str, list[str]]:
        """
        Write outputs under users/{account}/photos/{set}/image_{i}.{ext}; returns the new set id and refs.
        Raises StorageFailure on the first failed write; objects already written stay behind.
        """
        photo_set_id = str(uuid4())
        prefix = photos_prefix(account_id, photo_set_id)
        refs: list[str] = []
        for index, output in enumerate(outputs):
            data, mime_type = output.data, output.mime_type
            if self.transform is not None:
                data, mime_type = self.transform(data, mime_type)
            path = f"{prefix}/image_{index}.{extension_for(mime_type)}"
            try:
                refs.append(self.storage.put(path, data, mime_type))
            except StorageError as e:
                storage_failures_total.labels(operation="put").inc()
                logger.error(
                    "photo_store_failed",
                    extra={"account_id": account_id, "photo_set_id": photo_set_id, "ref": path, "error": str(e)},
                )
                raise StorageFailure("Failed to store generated photos") from e
        return photo_set_id, refs

    def record(
        self,
        photo_set_id: str,
        account_id: str,
        theme: str,
        credits_used: int,
        refs: list[str],
        source_image_ref: str | None = None,
    ) -> PhotoSet:
        """Commit the PhotoSet row for objects already written by write_outputs."""
        photo_set = PhotoSet(
            id=photo_set_id,
            account_id=account_id,
            theme=theme,
            source_image_ref=source_image_ref,
            output_refs=refs,
            credits_used=credits_used,
        )
        self.db.add(photo_set)
        self.db.commit()
        self.db.refresh(photo_set)
        logger.info(
            "photo_set_stored",
            extra={"account_id": account_id, "photo_set_id": photo_set_id, "count": len(refs), "theme": theme},
        )
        return photo_set

    def list(self, account_id: str, limit: int = 50) -> list[PhotoSetView]:
        rows = (
            self.db.query(PhotoSet)
            .filter(PhotoSet.account_id == account_id)
            .order_by(PhotoSet.created_at.desc())
            .limit(limit)
            .all()
        )
        return [self.to_view(row) for row in rows]

    def get(self, photo_set_id: str, account_id: str) -> PhotoSetView:
        return self.to_view(self._get_owned(photo_set_id, account_id))

    def delete(self, photo_set_id: str, account_id: str) -> None:
        photo_set = self._get_owned(photo_set_id, account_id)
        prefix = photos_prefix(account_id, photo_set_id)
        try:
            removed = self.storage.delete_prefix(prefix)
        except StorageError as e:
            storage_failures_total.labels(operation="delete").inc()
            logger.warning(
                "photo_objects_delete_failed",
                extra={"account_id": account_id, "photo_set_id": photo_set_id, "prefix": prefix, "error": str(e)},
            )
            removed = 0
        self.db.delete(photo_set)
        self.db.commit()
        logger.info(
            "photo_set_deleted",
            extra={"account_id": account_id, "photo_set_id": photo_set_id, "count": removed},
        )

    def to_view(self, photo_set: PhotoSet) -> PhotoSetView:
        refs = list(photo_set.output_refs or [])
        return PhotoSetView(
            id=photo_set.id,
            theme=photo_set.theme,
            credits_used=photo_set.credits_used,
            created_at=photo_set.created_at,
            refs=refs,
            urls=[self.storage.signed_url(ref, self.url_ttl_seconds) for ref in refs],
        )

    # ------------------------------------------------------------------
    # Source uploads
    # ------------------------------------------------------------------

    def save_upload(self, account_id: str, data: bytes, filename: str, content_type: str | None = None) -> str:
        """Validate and store a source photo; returns its storage reference."""
        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in settings.allowed_extensions_set:
            raise InvalidRequest(
                f"Unsupported file type. Allowed: {', '.join(sorted(settings.allowed_extensions_set))}"
            )
        if not data:
            raise InvalidRequest("Empty file")
        max_bytes = settings.max_file_size_mb * 1024 * 1024
        if len(data) > max_bytes:
            raise InvalidRequest(f"File too large. Max {settings.max_file_size_mb} MB")
        mime_type = sniff_mime_type(data)
        if mime_type is None:
            raise InvalidRequest("File is not a readable image")

        path = f"{uploads_prefix(account_id)}/{uuid4()}.{extension_for(mime_type)}"
        try:
            ref = self.storage.put(path, data, mime_type)
        except StorageError as e:
            storage_failures_total.labels(operation="put").inc()
            raise StorageFailure("Failed to store upload") from e
        logger.info("upload_stored", extra={"account_id": account_id, "ref": ref})
        return ref

    def load_source(self, account_id: str, ref: str) -> tuple[bytes, str]:
        """Bytes and mime type of an upload owned by account_id."""
        if not ref or not ref.startswith(uploads_prefix(account_id) + "/") or ".." in ref:
            raise NotFound("Source image not found")
        try:
            data = self.storage.get(ref)
        except ObjectNotFound as e:
            raise NotFound("Source image not found") from e
        except StorageError as e:
            raise StorageFailure("Failed to read source image") from e
        return data, sniff_mime_type(data) or "image/jpeg"

    def _get_owned(self, photo_set_id: str, account_id: str) -> PhotoSet:
        photo_set = (
            self.db.query(PhotoSet)
            .filter(PhotoSet.id == photo_set_id, PhotoSet.account_id == account_id)
            .one_or_none()
        )
        if photo_set is None:
            raise NotFound("Photo set not found")
        return photo_set
