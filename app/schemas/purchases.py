from datetime import datetime

from pydantic import Field

from app.schemas.base import CamelModel


class PurchaseInitiateIn(CamelModel):
    items: list[str] = Field(..., description="Product ids")
    buyer_wallet: str


class PurchaseConfirmIn(CamelModel):
    purchase_id: str
    transaction_hash: str


class PurchaseItemOut(CamelModel):
    product_id: str
    seller_id: str
    price: int


class PurchaseOut(CamelModel):
    purchase_id: str
    status: str
    items: list[PurchaseItemOut]
    total_amount: int
    platform_fee: int
    transaction_hash: str | None = None
    expires_at: datetime
    completed_at: datetime | None = None


class PurchaseHistoryOut(CamelModel):
    purchases: list[PurchaseOut]
    page: int
    limit: int
    total: int
