"""
ServiceContainer: long-lived clients built once per process and closed on shutdown.
Request handlers get short-lived services (bound to a DB session) built from it.
"""
import logging

import pybreaker
import redis
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from photovault.db.base import Base
from photovault.db.session import build_engine, build_session_factory
from photovault.services.circuit_breaker import build_circuit_breaker
from photovault.services.image_generation import ImageGenerationProvider, ImageProviderFactory
from photovault.services.payments.gateway import StripeGateway
from photovault.storage.base import Storage
from photovault.storage.factory import build_storage

logger = logging.getLogger(__name__)


class ServiceContainer:
    def __init__(
        self,
        engine: Engine,
        storage: Storage,
        provider: ImageGenerationProvider,
        gateway: StripeGateway,
        redis_client: redis.Redis | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ):
        self.engine = engine
        self.session_factory: sessionmaker = build_session_factory(engine)
        self.storage = storage
        self.provider = provider
        self.gateway = gateway
        self.redis = redis_client
        self.breaker = breaker or build_circuit_breaker("image_provider", redis_client)

    @classmethod
    def from_settings(cls, settings) -> "ServiceContainer":
        redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True) if settings.redis_url else None
        return cls(
            engine=build_engine(settings.database_url),
            storage=build_storage(settings),
            provider=ImageProviderFactory.create_from_settings(settings),
            gateway=StripeGateway.from_settings(settings),
            redis_client=redis_client,
        )

    def create_schema(self) -> None:
        """Create missing tables (production schemas are managed by migrations)."""
        import photovault.models  # noqa: F401 - registers tables on Base.metadata

        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.storage.close()
        if self.redis is not None:
            self.redis.close()
        self.engine.dispose()
        logger.info("service_container_closed")
