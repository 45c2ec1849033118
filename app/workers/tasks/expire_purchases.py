"""
Celery beat task: move pending purchases past expires_at to 'expired'.
Confirmation re-checks expiry itself; the sweep only keeps stale rows out of the pending set.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from app.core.celery_app import celery_app
from app.core.config import settings
from app.db.session import Database
from app.services.purchases.service import PurchaseService

logger = logging.getLogger(__name__)


@celery_app.task(
    name="app.workers.tasks.expire_purchases.expire_stale_purchases",
    time_limit=60,
    soft_time_limit=55,
)
def expire_stale_purchases() -> dict:
    try:
        with Database(settings.database_url) as database, database.session_scope() as db:
            expired = PurchaseService(db).expire_stale()
    except SQLAlchemyError as e:
        logger.exception("expire_stale_purchases_failed", extra={"error": str(e)})
        return {"ok": False, "error": str(e)}
    return {"ok": True, "expired_count": expired}
