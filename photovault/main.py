"""
Main FastAPI application for the PhotoVault API.
Serves auth, account, generation, photos, billing, webhooks, health and metrics.
"""
import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from photovault.api.routes import account, auth, billing, files, generate, health, photos, themes
from photovault.core.config import settings
from photovault.core.container import ServiceContainer
from photovault.core.errors import ServiceError
from photovault.core.logging import configure_logging
from photovault.services.themes.service import ThemeService
from photovault.utils.metrics import router as metrics_router

logger = logging.getLogger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = getattr(app.state, "container", None)
    owns_container = container is None
    if owns_container:
        configure_logging()
        container = ServiceContainer.from_settings(settings)
        app.state.container = container
    container.create_schema()
    db = container.session_factory()
    try:
        ThemeService(db).seed_defaults()
    finally:
        db.close()
    logger.info("app_started", extra={"provider": settings.image_provider})
    try:
        yield
    finally:
        if owns_container:
            container.close()


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    app = FastAPI(
        title="PhotoVault API",
        description="Credit-metered AI photo generation",
        version="1.0.0",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    # CORS
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    if not origins:
        origins = ["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        started = time.monotonic()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "http_request",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return response

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.warning("service_error", extra={"path": request.url.path, "error": exc.code})
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Routers
    app.include_router(health.router, tags=["health"])
    app.include_router(auth.router)
    app.include_router(account.router)
    app.include_router(themes.router)
    app.include_router(generate.router)
    app.include_router(photos.router)
    app.include_router(billing.router)
    app.include_router(files.router)
    app.include_router(metrics_router)
    return app


app = create_app()
