"""
Execution: deliver(db, storage, key, external_id) -> Delivery.
Classify -> authorize -> open stream. Решение о доступе принимается полностью
до открытия потока; при отказе ни один байт не отдаётся.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.core.errors import ForbiddenError, NotFoundError, UnauthenticatedError
from app.models.product import KeyClass
from app.paywall.access import authorize
from app.paywall.catalog import classify
from app.paywall.models import Delivery, DenyReason
from app.storage.base import BlobNotFoundError, Storage
from app.utils.metrics import blob_missing_total, content_deliveries_total

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"
DEFAULT_IMAGE_TYPE = "image/jpeg"
IMAGE_TYPES = {
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "avif": "image/avif",
}


def image_content_type(key: str) -> str:
    _, dot, ext = key.rpartition(".")
    if not dot:
        return DEFAULT_IMAGE_TYPE
    return IMAGE_TYPES.get(ext.lower(), DEFAULT_IMAGE_TYPE)


def disposition_filename(key: str) -> str:
    """Keys are "<prefix>_<originalFilename>": the name is what follows the last underscore."""
    return key.rsplit("_", 1)[-1]


def deliver(
    db: Session,
    storage: Storage,
    key: str,
    external_id: str | None,
    *,
    only_class: KeyClass | None = None,
) -> Delivery:
    entry = classify(db, key)
    if entry is None or (only_class is not None and entry.key_class is not only_class):
        content_deliveries_total.labels(key_class="unknown", outcome="not_found").inc()
        raise NotFoundError("File not found")

    decision = authorize(db, external_id, entry)
    if not decision.granted:
        content_deliveries_total.labels(key_class=entry.key_class.value, outcome=decision.reason.value).inc()
        logger.info(
            "delivery_denied",
            extra={"key": key, "product_id": entry.product_id, "reason": decision.reason.value},
        )
        if decision.reason in (DenyReason.UNAUTHENTICATED, DenyReason.UNKNOWN_USER):
            raise UnauthenticatedError()
        raise ForbiddenError()

    try:
        stream = storage.open_stream(key)
    except BlobNotFoundError:
        # Cataloged key without a backing object: upstream inconsistency
        blob_missing_total.inc()
        content_deliveries_total.labels(key_class=entry.key_class.value, outcome="blob_missing").inc()
        logger.error(
            "blob_missing_for_cataloged_key",
            extra={"key": key, "product_id": entry.product_id, "key_class": entry.key_class.value},
        )
        raise NotFoundError("File not found") from None

    media_type = image_content_type(key) if only_class is KeyClass.IMAGE else OCTET_STREAM
    content_deliveries_total.labels(key_class=entry.key_class.value, outcome="granted").inc()
    logger.info(
        "delivery_granted",
        extra={"key": key, "product_id": entry.product_id, "reason": decision.reason.value},
    )
    return Delivery(
        stream=stream,
        media_type=media_type,
        filename=disposition_filename(key),
        key_class=entry.key_class,
    )
