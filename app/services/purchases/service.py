"""
PurchaseService — покупки и подтверждение on-chain оплаты.

Ответственности:
- initiate(): pending-покупка с позициями, комиссией и сроком жизни
- confirm(): проверка settlement-транзакции и атомарный переход pending -> completed
- expire_stale(): перевод просроченных pending -> expired (Celery beat)

Все переходы статуса — один условный UPDATE "... WHERE status = 'pending'",
никогда не read-then-write: из двух параллельных confirm успешен ровно один.
"""
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from app.models.product import Product
from app.models.purchase import Purchase, PurchaseItem, PurchaseStatus
from app.models.user import User
from app.paywall.access import has_purchased
from app.services.notifications.service import NotificationService
from app.services.settlement.verifier import SettlementOutcome, SettlementUnavailableError, SettlementVerifier
from app.utils.metrics import purchase_confirmations_total, purchases_expired_total

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
WALLET_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
PURCHASE_ID_MAX_LEN = 100
MAX_ITEMS = 50
HISTORY_PAGE_DEFAULT = 20
HISTORY_PAGE_MAX = 100

REJECTION_MESSAGES = {
    SettlementOutcome.NOT_FOUND: "Transaction not found or not yet confirmed",
    SettlementOutcome.REVERTED: "Transaction failed or was reverted",
    SettlementOutcome.SENDER_MISMATCH: "Transaction was not sent from the buyer wallet",
    SettlementOutcome.WRONG_CONTRACT: "Transaction is not a marketplace purchase",
    SettlementOutcome.NOT_ON_CHAIN: "Purchase not found on blockchain",
    SettlementOutcome.BUYER_MISMATCH: "Buyer address mismatch",
    SettlementOutcome.AMOUNT_MISMATCH: "Purchase amount mismatch",
    SettlementOutcome.REFUNDED: "This purchase has been refunded",
}


class PurchaseService:
    def __init__(
        self,
        db: Session,
        verifier: SettlementVerifier | None = None,
        notifications: NotificationService | None = None,
    ):
        self.db = db
        self.verifier = verifier
        self.notifications = notifications or NotificationService(db)

    # ------------------------------------------------------------------
    # Initiate
    # ------------------------------------------------------------------

    def initiate(self, buyer: User, product_ids: list[str], buyer_wallet: str) -> Purchase:
        if not buyer_wallet or not WALLET_RE.match(buyer_wallet):
            raise ValidationError("Invalid wallet address", field="buyerWallet")
        if not product_ids or len(product_ids) > MAX_ITEMS:
            raise ValidationError(f"items must contain 1 to {MAX_ITEMS} products", field="items")
        if len(set(product_ids)) != len(product_ids):
            raise ValidationError("Duplicate products in items", field="items")

        products = self.db.query(Product).filter(Product.id.in_(product_ids)).all()
        by_id = {p.id: p for p in products}
        if len(by_id) != len(product_ids) or any(p.published_at is None for p in products):
            raise ValidationError("Some products not found or not available", field="items")
        if any(p.creator_id == buyer.id for p in products):
            raise ValidationError("You cannot buy your own product", field="items")

        owned = [pid for pid in product_ids if has_purchased(self.db, buyer.id, pid)]
        if owned:
            raise ConflictError(f"You already own some of these products: {', '.join(owned)}", field="items")

        subtotal = sum(int(by_id[pid].price) for pid in product_ids)
        platform_fee = subtotal * settings.platform_fee_bps // 10_000
        now = datetime.now(timezone.utc)
        purchase = Purchase(
            id=f"purchase_{secrets.token_urlsafe(12)}",
            buyer_id=buyer.id,
            buyer_wallet=buyer_wallet,
            status=PurchaseStatus.PENDING.value,
            total_amount=subtotal + platform_fee,
            platform_fee=platform_fee,
            expires_at=now + timedelta(minutes=settings.purchase_expiry_minutes),
            created_at=now,
        )
        purchase.items = [
            PurchaseItem(
                position=position,
                product_id=pid,
                seller_id=by_id[pid].creator_id,
                price=int(by_id[pid].price),
            )
            for position, pid in enumerate(product_ids)
        ]
        self.db.add(purchase)
        self.db.commit()
        self.db.refresh(purchase)
        logger.info(
            "purchase_initiated",
            extra={"purchase_id": purchase.id, "user_id": buyer.id, "count": len(product_ids)},
        )
        return purchase

    # ------------------------------------------------------------------
    # Confirm
    # ------------------------------------------------------------------

    def confirm(self, buyer: User, purchase_id: str, transaction_hash: str) -> Purchase:
        if not purchase_id or len(purchase_id) > PURCHASE_ID_MAX_LEN:
            raise ValidationError("Invalid purchase id", field="purchaseId")
        if not transaction_hash or not TX_HASH_RE.match(transaction_hash):
            raise ValidationError("Invalid transaction hash", field="transactionHash")
        # Hex is case-insensitive: one on-chain transaction, one stored spelling
        transaction_hash = transaction_hash.lower()

        purchase = (
            self.db.query(Purchase)
            .filter(Purchase.id == purchase_id, Purchase.buyer_id == buyer.id)
            .one_or_none()
        )
        if purchase is None:
            purchase_confirmations_total.labels(outcome="not_found").inc()
            raise NotFoundError("Purchase not found")

        # Hash reuse is a conflict whatever the state of this purchase
        reused = (
            self.db.query(Purchase.id)
            .filter(Purchase.transaction_hash == transaction_hash, Purchase.id != purchase.id)
            .first()
        )
        if reused is not None:
            purchase_confirmations_total.labels(outcome="conflict").inc()
            logger.warning(
                "purchase_tx_hash_reused",
                extra={"purchase_id": purchase.id, "transaction_hash": transaction_hash},
            )
            raise ConflictError("Transaction hash already used", field="transactionHash")

        if purchase.status != PurchaseStatus.PENDING.value:
            purchase_confirmations_total.labels(outcome="conflict").inc()
            raise ConflictError(f"Purchase is already {purchase.status}")

        now = datetime.now(timezone.utc)
        if self._transition(purchase.id, PurchaseStatus.EXPIRED, Purchase.expires_at <= now):
            purchase_confirmations_total.labels(outcome="expired").inc()
            logger.info("purchase_expired", extra={"purchase_id": purchase.id})
            raise ValidationError("Purchase has expired. Please initiate a new purchase.", field="purchaseId")

        try:
            check = self._verifier().verify(
                transaction_hash, purchase.id, purchase.buyer_wallet, purchase.total_amount
            )
        except SettlementUnavailableError as e:
            purchase_confirmations_total.labels(outcome="upstream_error").inc()
            raise UpstreamError("Could not verify the transaction, try again later") from e

        if not check.verified:
            purchase_confirmations_total.labels(outcome="failed").inc()
            logger.info(
                "purchase_settlement_rejected",
                extra={"purchase_id": purchase.id, "transaction_hash": transaction_hash, "reason": check.outcome.value},
            )
            if check.is_final_failure:
                self._transition_recording_hash(purchase.id, PurchaseStatus.FAILED, transaction_hash)
            raise ValidationError(REJECTION_MESSAGES[check.outcome], field="transactionHash")

        completed = self._transition_recording_hash(
            purchase.id,
            PurchaseStatus.COMPLETED,
            transaction_hash,
            completed_at=now,
        )
        if not completed:
            purchase_confirmations_total.labels(outcome="conflict").inc()
            raise ConflictError("Purchase is no longer pending")

        purchase_confirmations_total.labels(outcome="completed").inc()
        self.db.refresh(purchase)
        logger.info(
            "purchase_completed",
            extra={"purchase_id": purchase.id, "user_id": buyer.id, "transaction_hash": transaction_hash},
        )
        self._notify_completed(buyer, purchase)
        return purchase

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history(
        self,
        buyer: User,
        page: int = 1,
        limit: int = HISTORY_PAGE_DEFAULT,
        status: str | None = None,
    ) -> tuple[list[Purchase], int]:
        """Caller's purchases, newest first. Out-of-range paging is clamped, unknown status ignored."""
        page = max(1, page)
        limit = min(max(1, limit), HISTORY_PAGE_MAX)
        query = self.db.query(Purchase).filter(Purchase.buyer_id == buyer.id)
        if status in {s.value for s in PurchaseStatus}:
            query = query.filter(Purchase.status == status)
        total = query.count()
        purchases = (
            query.order_by(Purchase.created_at.desc(), Purchase.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return purchases, total

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def expire_stale(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        result = self.db.execute(
            update(Purchase)
            .where(Purchase.status == PurchaseStatus.PENDING.value, Purchase.expires_at <= now)
            .values(status=PurchaseStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        expired = result.rowcount or 0
        if expired:
            purchases_expired_total.inc(expired)
            logger.info("purchases_expired", extra={"count": expired})
        return expired

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _verifier(self) -> SettlementVerifier:
        if self.verifier is None:
            self.verifier = SettlementVerifier()
        return self.verifier

    def _transition(self, purchase_id: str, to: PurchaseStatus, *conditions, **values) -> bool:
        """pending -> `to` if and only if the row is still pending (and conditions hold)."""
        result = self.db.execute(
            update(Purchase)
            .where(Purchase.id == purchase_id, Purchase.status == PurchaseStatus.PENDING.value, *conditions)
            .values(status=to.value, **values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def _transition_recording_hash(self, purchase_id: str, to: PurchaseStatus, transaction_hash: str, **values) -> bool:
        try:
            return self._transition(purchase_id, to, transaction_hash=transaction_hash, **values)
        except IntegrityError:
            # Unique transaction_hash: another purchase recorded it concurrently
            self.db.rollback()
            raise ConflictError("Transaction hash already used", field="transactionHash") from None

    def _notify_completed(self, buyer: User, purchase: Purchase) -> None:
        product_ids = [item.product_id for item in purchase.items]
        try:
            names = dict(self.db.query(Product.id, Product.name).filter(Product.id.in_(product_ids)).all())
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("purchase_notify_failed", extra={"purchase_id": purchase.id, "error": str(e)})
            return
        for item in purchase.items:
            self.notifications.handle_purchase_event(buyer, item.seller_id, names.get(item.product_id, "a product"))
