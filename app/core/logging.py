import json
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone

from app.core.config import settings

# Per-request chatter from these is noise next to the domain events
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "celery.app.trace")


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, event name and whitelisted extras."""

    EXTRA_FIELDS = (
        "user_id", "request_id", "path", "method", "status_code",
        "key", "key_class", "product_id", "purchase_id", "transaction_hash",
        "notification_id", "category", "reason", "deleted", "count", "error",
        "breaker_name", "old_state", "new_state",
    )

    def __init__(self, env: str | None = None) -> None:
        super().__init__()
        self.env = env or settings.app_env

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "env": self.env,
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload.update(
            (field, getattr(record, field))
            for field in self.EXTRA_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    """Install the JSON handler(s) on the root logger. Safe to call more than once."""
    formatter = JsonFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(
            RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
            )
        )
    for handler in handlers:
        handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = handlers
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
