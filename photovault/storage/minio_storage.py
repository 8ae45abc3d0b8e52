"""
S3-compatible bucket storage (MinIO, R2, S3) via the minio client.
"""
import io
import logging
from datetime import timedelta

from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error

from photovault.storage.base import ObjectNotFound, Storage, StorageError, normalize_path

logger = logging.getLogger(__name__)


class MinioStorage(Storage):
    def __init__(self, client: Minio, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings) -> "MinioStorage":
        client = Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
        )
        return cls(client, settings.minio_bucket)

    def put(self, path: str, data: bytes, content_type: str) -> str:
        ref = normalize_path(path)
        try:
            self.client.put_object(
                self.bucket,
                ref,
                io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except S3Error as e:
            raise StorageError(f"Failed to write {ref}: {e}") from e
        return ref

    def get(self, ref: str) -> bytes:
        response = None
        try:
            response = self.client.get_object(self.bucket, normalize_path(ref))
            return response.read()
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject"):
                raise ObjectNotFound(ref) from e
            raise StorageError(f"Failed to read {ref}: {e}") from e
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    def delete_prefix(self, prefix: str) -> int:
        key_prefix = normalize_path(prefix) + "/"
        try:
            names = [
                obj.object_name
                for obj in self.client.list_objects(self.bucket, prefix=key_prefix, recursive=True)
            ]
            errors = list(self.client.remove_objects(self.bucket, [DeleteObject(n) for n in names]))
        except S3Error as e:
            raise StorageError(f"Failed to delete {prefix}: {e}") from e
        if errors:
            raise StorageError(f"Failed to delete {len(errors)} object(s) under {prefix}")
        return len(names)

    def signed_url(self, ref: str, ttl_seconds: int) -> str:
        return self.client.presigned_get_object(
            self.bucket,
            normalize_path(ref),
            expires=timedelta(seconds=ttl_seconds),
        )
