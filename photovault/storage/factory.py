from photovault.storage.base import Storage
from photovault.storage.local import LocalStorage


def build_storage(settings) -> Storage:
    backend = (settings.storage_backend or "local").lower()
    if backend == "local":
        return LocalStorage(
            base_path=settings.storage_base_path,
            signing_secret=settings.effective_storage_secret,
            public_base_url=settings.public_base_url,
        )
    if backend == "minio":
        from photovault.storage.minio_storage import MinioStorage

        return MinioStorage.from_settings(settings)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}. Available: local, minio")
