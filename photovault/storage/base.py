from abc import ABC, abstractmethod


class StorageError(Exception):
    """Raised by storage backends when an object operation fails."""


class ObjectNotFound(StorageError):
    pass


class Storage(ABC):
    """Object storage collaborator. References are opaque strings owned by the backend."""

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str) -> str:
        """Write an object; returns its reference."""
        raise NotImplementedError

    @abstractmethod
    def get(self, ref: str) -> bytes:
        """Read an object. Raises ObjectNotFound if it does not exist."""
        raise NotImplementedError

    @abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under prefix; returns how many were removed."""
        raise NotImplementedError

    @abstractmethod
    def signed_url(self, ref: str, ttl_seconds: int) -> str:
        """Mint a time-limited read URL for ref."""
        raise NotImplementedError

    def close(self) -> None:
        pass


def normalize_path(path: str) -> str:
    """Storage keys are always relative: leading slashes are dropped, empty and ".." paths rejected."""
    cleaned = path.replace("\\", "/").lstrip("/")
    parts = [p for p in cleaned.split("/") if p not in ("", ".")]
    if not parts or any(p == ".." for p in parts):
        raise StorageError(f"Invalid storage path: {path!r}")
    return "/".join(parts)
