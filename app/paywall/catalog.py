"""
Catalog lookup: content key -> (product, key class).
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.product import KeyClass, Product, ProductFile
from app.paywall.models import CatalogEntry

logger = logging.getLogger(__name__)

# Public classes first: a key that (against the write-time unique constraint)
# shows up in several classes must never end up behind an entitlement check.
CLASS_PRECEDENCE = (KeyClass.IMAGE, KeyClass.PREVIEW, KeyClass.DIGITAL)


def classify(db: Session, key: str) -> CatalogEntry | None:
    """Find the product referencing key. None if no product does."""
    rows = (
        db.query(ProductFile, Product)
        .join(Product, Product.id == ProductFile.product_id)
        .filter(ProductFile.key == key)
        .all()
    )
    if not rows:
        return None

    rows = sorted(rows, key=lambda row: CLASS_PRECEDENCE.index(KeyClass(row[0].kind)))
    if len(rows) > 1:
        logger.warning(
            "catalog_key_ambiguous",
            extra={"key": key, "count": len(rows), "key_class": rows[0][0].kind},
        )

    file, product = rows[0]
    return CatalogEntry(
        key=key,
        key_class=KeyClass(file.kind),
        product_id=product.id,
        product_name=product.name,
        creator_id=product.creator_id,
        file_name=file.file_name,
    )
