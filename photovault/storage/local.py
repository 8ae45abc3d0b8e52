"""
Filesystem storage under settings.storage_base_path.
Signed URLs are itsdangerous tokens checked by the /files route.
"""
import logging
import os
import shutil
import time
from urllib.parse import quote

from itsdangerous import BadSignature, URLSafeSerializer

from photovault.storage.base import ObjectNotFound, Storage, StorageError, normalize_path

logger = logging.getLogger(__name__)

SIGNING_SALT = "photovault-file-access"


class LocalStorage(Storage):
    def __init__(self, base_path: str, signing_secret: str, public_base_url: str) -> None:
        self.base_path = os.path.abspath(base_path)
        self.public_base_url = public_base_url.rstrip("/")
        self._serializer = URLSafeSerializer(signing_secret, salt=SIGNING_SALT)

    def _full_path(self, ref: str) -> str:
        return os.path.join(self.base_path, *normalize_path(ref).split("/"))

    def put(self, path: str, data: bytes, content_type: str) -> str:
        ref = normalize_path(path)
        full_path = self._full_path(ref)
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write {ref}: {e}") from e
        return ref

    def get(self, ref: str) -> bytes:
        full_path = self._full_path(ref)
        if not os.path.isfile(full_path):
            raise ObjectNotFound(ref)
        with open(full_path, "rb") as f:
            return f.read()

    def delete_prefix(self, prefix: str) -> int:
        target = self._full_path(prefix)
        if os.path.isfile(target):
            os.unlink(target)
            return 1
        if not os.path.isdir(target):
            return 0
        removed = sum(len(files) for _, _, files in os.walk(target))
        try:
            shutil.rmtree(target)
        except OSError as e:
            raise StorageError(f"Failed to delete {prefix}: {e}") from e
        return removed

    def signed_url(self, ref: str, ttl_seconds: int) -> str:
        token = self._serializer.dumps({"ref": normalize_path(ref), "exp": int(time.time()) + ttl_seconds})
        return f"{self.public_base_url}/files/{quote(ref)}?token={token}"

    def verify_token(self, ref: str, token: str) -> bool:
        """True when token was minted for ref and has not expired."""
        try:
            payload = self._serializer.loads(token)
        except BadSignature:
            return False
        if not isinstance(payload, dict):
            return False
        try:
            same_ref = payload.get("ref") == normalize_path(ref)
        except StorageError:
            return False
        return same_ref and int(payload.get("exp", 0)) >= int(time.time())
