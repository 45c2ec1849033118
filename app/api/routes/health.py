"""Liveness, readiness (database, blob store, optional Redis)."""
from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import get_storage
from app.core.config import settings
from app.db.session import Database, get_database
from app.storage.base import Storage


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(
    response: Response,
    database: Database = Depends(get_database),
    storage: Storage = Depends(get_storage),
) -> dict:
    """Readiness probe - 503 with the failing dependency named."""
    checks = {}
    try:
        with database.session_scope() as db:
            db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        checks["database"] = str(e)

    try:
        storage.check()
        checks["storage"] = "ok"
    except OSError as e:
        checks["storage"] = str(e)

    if settings.redis_url:
        try:
            redis.Redis.from_url(settings.redis_url, socket_connect_timeout=2).ping()
            checks["redis"] = "ok"
        except redis.RedisError as e:
            checks["redis"] = str(e)

    if any(status != "ok" for status in checks.values()):
        response.status_code = 503
        return {"status": "not_ready", "checks": checks}
    return {"status": "ready", "checks": checks}
