"""
Шлюз доступа к контенту (внутренняя библиотека).
Classify (catalog), decision (access) и execution (delivery) разделены;
контракт между ними — CatalogEntry и AccessDecision.
"""
from app.paywall.access import authorize, has_purchased
from app.paywall.catalog import classify
from app.paywall.delivery import deliver, disposition_filename, image_content_type
from app.paywall.models import (
    AccessDecision,
    CatalogEntry,
    Delivery,
    Deny,
    DenyReason,
    Grant,
    GrantReason,
)

__all__ = [
    "AccessDecision",
    "CatalogEntry",
    "Delivery",
    "Deny",
    "DenyReason",
    "Grant",
    "GrantReason",
    "authorize",
    "classify",
    "deliver",
    "disposition_filename",
    "has_purchased",
    "image_content_type",
]
