"""
Purchase model. transaction_hash is unique: one on-chain settlement can complete
at most one purchase. Status only moves pending -> completed / failed / expired.
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.db.base import Base


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not PurchaseStatus.PENDING


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    buyer_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    buyer_wallet = Column(String, nullable=True)
    status = Column(String, nullable=False, default=PurchaseStatus.PENDING.value, index=True)
    total_amount = Column(BigInteger, nullable=False)  # USDC micro units
    platform_fee = Column(BigInteger, nullable=False, default=0)
    transaction_hash = Column(String, unique=True, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "PurchaseItem",
        order_by="PurchaseItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def status_enum(self) -> PurchaseStatus:
        return PurchaseStatus(self.status)


class PurchaseItem(Base):
    __tablename__ = "purchase_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    purchase_id = Column(String, ForeignKey("purchases.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String, ForeignKey("products.id"), nullable=False, index=True)
    seller_id = Column(String, ForeignKey("users.id"), nullable=False)
    price = Column(BigInteger, nullable=False)
