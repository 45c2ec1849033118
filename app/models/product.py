"""
Product and its content keys.
A key (blob store object name, "<prefix>_<originalFilename>") is unique across
product_files, so it belongs to exactly one product and exactly one class.
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String

from app.db.base import Base


class KeyClass(str, Enum):
    DIGITAL = "digital"  # gated: creator or buyer only
    PREVIEW = "preview"  # public
    IMAGE = "image"  # public

    @property
    def is_public(self) -> bool:
        return self is not KeyClass.DIGITAL


class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    creator_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(BigInteger, nullable=False, default=0)  # USDC micro units (6 decimals)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class ProductFile(Base):
    __tablename__ = "product_files"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    product_id = Column(String, ForeignKey("products.id"), nullable=False, index=True)
    key = Column(String, nullable=False, unique=True)
    kind = Column(String, nullable=False)  # KeyClass value
    file_name = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)

    @property
    def key_class(self) -> KeyClass:
        return KeyClass(self.kind)
