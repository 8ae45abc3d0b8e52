"""Shared fixtures: SQLite sessions and in-process doubles for storage, provider and Stripe."""
import io
import os
import threading
import time

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-0123456789abcdef")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STORAGE_BACKEND", "local")

import pytest
from PIL import Image

from photovault.core.config import settings
from photovault.db.base import Base
from photovault.db.session import build_engine, build_session_factory
from photovault.models.account import Account
from photovault.services.credits.service import CreditService
from photovault.services.image_generation.base import (
    ImageGenerationError,
    ImageGenerationProvider,
    ImageGenerationRequest,
    ImageGenerationResponse,
)
from photovault.services.themes.service import ThemeService
from photovault.storage.base import ObjectNotFound, Storage, StorageError

import photovault.models  # noqa: F401


def make_png(width: int = 64, height: int = 48, color=(200, 120, 40)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="PNG")
    return out.getvalue()


class MemoryStorage(Storage):
    def __init__(self, fail_on_put: bool = False, fail_on_delete: bool = False):
        self.objects: dict[str, bytes] = {}
        self.fail_on_put = fail_on_put
        self.fail_on_delete = fail_on_delete

    def put(self, path: str, data: bytes, content_type: str) -> str:
        if self.fail_on_put and "/photos/" in path:
            raise StorageError("bucket unavailable")
        self.objects[path] = data
        return path

    def get(self, ref: str) -> bytes:
        if ref not in self.objects:
            raise ObjectNotFound(ref)
        return self.objects[ref]

    def delete_prefix(self, prefix: str) -> int:
        if self.fail_on_delete:
            raise StorageError("bucket unavailable")
        doomed = [ref for ref in self.objects if ref.startswith(prefix + "/")]
        for ref in doomed:
            del self.objects[ref]
        return len(doomed)

    def signed_url(self, ref: str, ttl_seconds: int) -> str:
        return f"https://storage.test/{ref}?ttl={ttl_seconds}"


class FakeProvider(ImageGenerationProvider):
    """Fails the first `fail_first` calls, hangs the first `hang_first` calls until released.

    Successful calls take `delay` seconds.
    """

    name = "fake"

    def __init__(self, fail_first: int = 0, hang_first: int = 0, error: ImageGenerationError | None = None,
                 delay: float = 0.0):
        super().__init__({})
        self.delay = delay
        self.fail_first = fail_first
        self.hang_first = hang_first
        self.error = error
        self.calls = 0
        self.prompts: list[str] = []
        self.release = threading.Event()
        self._lock = threading.Lock()
        self._image = make_png(1600, 1200)

    def is_available(self) -> bool:
        return True

    def get_supported_models(self) -> list[str]:
        return ["fake-image"]

    def generate(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        with self._lock:
            self.calls += 1
            call = self.calls
            self.prompts.append(request.prompt)
        if call <= self.hang_first:
            self.release.wait(10)
            raise ImageGenerationError("released after test", detail={"finish_reason": "OTHER"})
        if call <= self.hang_first + self.fail_first:
            raise self.error or ImageGenerationError("blocked", detail={"block_reason": "SAFETY"})
        if self.delay:
            time.sleep(self.delay)
        return ImageGenerationResponse(image_content=self._image, model="fake-image", provider=self.name)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    ThemeService(session).seed_defaults()
    yield session
    session.close()


@pytest.fixture
def make_account(db):
    def _make(credits: int = 0, email: str | None = None) -> Account:
        account = Account(email=email or f"user{db.query(Account).count()}@example.com")
        db.add(account)
        db.commit()
        if credits:
            CreditService(db).credit(account.id, credits, reason="test funding")
        db.refresh(account)
        return account

    return _make


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def test_settings():
    return settings.model_copy(
        update={
            "generation_call_timeout": 5.0,
            "image_generation_retry_max_attempts": 1,
            "image_generation_retry_backoff_seconds": 0.0,
        }
    )
