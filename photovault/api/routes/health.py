from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from photovault.api.deps import get_container
from photovault.core.container import ServiceContainer
from photovault.db.session import get_db


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(
    response: Response,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """Readiness probe - returns 503 if dependencies are unavailable."""
    try:
        db.execute(text("SELECT 1"))
        if container.redis is not None:
            container.redis.ping()
        return {"status": "ready"}
    except (SQLAlchemyError, redis.RedisError) as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e)}
