"""
Entitlement: authorize(db, external_id, entry) -> Grant | Deny.
Порядок: публичные классы -> личность -> аккаунт -> автор -> завершённая покупка.
Автор проверяется до запроса покупок.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.purchase import Purchase, PurchaseItem, PurchaseStatus
from app.models.user import User
from app.paywall.models import AccessDecision, CatalogEntry, Deny, DenyReason, Grant, GrantReason

logger = logging.getLogger(__name__)


def authorize(db: Session, external_id: str | None, entry: CatalogEntry) -> AccessDecision:
    if entry.key_class.is_public:
        return Grant(reason=GrantReason.PUBLIC)

    if not external_id:
        return Deny(reason=DenyReason.UNAUTHENTICATED)

    user = db.query(User).filter(User.external_id == external_id).one_or_none()
    if user is None:
        return Deny(reason=DenyReason.UNKNOWN_USER)

    if user.id == entry.creator_id:
        return Grant(reason=GrantReason.CREATOR, user_id=user.id)

    if has_purchased(db, user.id, entry.product_id):
        return Grant(reason=GrantReason.PURCHASED, user_id=user.id)

    return Deny(reason=DenyReason.NOT_PURCHASED)


def has_purchased(db: Session, user_id: str, product_id: str) -> bool:
    """True if user owns a completed purchase with a line item for product_id."""
    query = (
        db.query(Purchase.id)
        .join(PurchaseItem, PurchaseItem.purchase_id == Purchase.id)
        .filter(
            Purchase.buyer_id == user_id,
            Purchase.status == PurchaseStatus.COMPLETED.value,
            PurchaseItem.product_id == product_id,
        )
    )
    return bool(db.query(query.exists()).scalar())
