from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_settlement_verifier
from app.db.session import get_db
from app.models.purchase import Purchase
from app.models.user import User
from app.schemas.purchases import (
    PurchaseConfirmIn,
    PurchaseHistoryOut,
    PurchaseInitiateIn,
    PurchaseItemOut,
    PurchaseOut,
)
from app.services.purchases.service import HISTORY_PAGE_DEFAULT, HISTORY_PAGE_MAX, PurchaseService
from app.services.settlement.verifier import SettlementVerifier
from app.services.users.service import current_user


router = APIRouter(prefix="/purchase", tags=["purchase"])


def _purchase_out(purchase: Purchase) -> PurchaseOut:
    return PurchaseOut(
        purchase_id=purchase.id,
        status=purchase.status,
        items=[
            PurchaseItemOut(product_id=item.product_id, seller_id=item.seller_id, price=item.price)
            for item in purchase.items
        ],
        total_amount=purchase.total_amount,
        platform_fee=purchase.platform_fee,
        transaction_hash=purchase.transaction_hash,
        expires_at=purchase.expires_at,
        completed_at=purchase.completed_at,
    )


@router.post("/initiate", response_model=PurchaseOut)
def initiate_purchase(
    body: PurchaseInitiateIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
) -> PurchaseOut:
    purchase = PurchaseService(db).initiate(user, body.items, body.buyer_wallet)
    return _purchase_out(purchase)


@router.post("/confirm", response_model=PurchaseOut)
def confirm_purchase(
    body: PurchaseConfirmIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    verifier: SettlementVerifier = Depends(get_settlement_verifier),
) -> PurchaseOut:
    purchase = PurchaseService(db, verifier=verifier).confirm(user, body.purchase_id, body.transaction_hash)
    return _purchase_out(purchase)


@router.get("/history", response_model=PurchaseHistoryOut)
def purchase_history(
    page: int = Query(1),
    limit: int = Query(HISTORY_PAGE_DEFAULT),
    status: str | None = Query(None),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
) -> PurchaseHistoryOut:
    purchases, total = PurchaseService(db).history(user, page=page, limit=limit, status=status)
    return PurchaseHistoryOut(
        purchases=[_purchase_out(p) for p in purchases],
        page=max(1, page),
        limit=min(max(1, limit), HISTORY_PAGE_MAX),
        total=total,
    )
