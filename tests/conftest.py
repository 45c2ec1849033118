"""Shared fixtures: in-memory SQLite, tmp blob store, fake settlement verifier, TestClient."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("IDENTITY_JWT_SECRET", "test-secret-for-identity-tokens")
os.environ["REDIS_URL"] = ""

from datetime import datetime, timedelta, timezone  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.db.session import Database  # noqa: E402
from app.main import create_app  # noqa: E402
from app.models.product import KeyClass, Product, ProductFile  # noqa: E402
from app.models.purchase import Purchase, PurchaseItem, PurchaseStatus  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.auth.identity import IdentityVerifier  # noqa: E402
from app.services.settlement.verifier import SettlementCheck, SettlementOutcome, SettlementVerifier  # noqa: E402
from app.storage.local import LocalStorage  # noqa: E402

BUYER_WALLET = "0x" + "ab" * 20
TX_HASH = "0xdead" + "0" * 60


@pytest.fixture
def database():
    database = Database("sqlite://").start()
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    with database.session_scope() as session:
        yield session


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(base_path=str(tmp_path / "blobs"), chunk_size=4)


@pytest.fixture
def verifier():
    verifier = MagicMock(spec=SettlementVerifier)
    verifier.verify.return_value = SettlementCheck(outcome=SettlementOutcome.VERIFIED, block_number=1)
    return verifier


@pytest.fixture
def identity():
    return IdentityVerifier("test-secret-for-identity-tokens")


@pytest.fixture
def client(database, storage, verifier, identity):
    app = create_app(database=database, storage=storage, settlement_verifier=verifier, identity_verifier=identity)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(identity):
    def _headers(external_id: str) -> dict:
        return {"Authorization": f"Bearer {identity.issue(external_id)}"}

    return _headers


class Factory:
    """Row builders bound to a session."""

    def __init__(self, db):
        self.db = db

    def user(self, external_id: str, username: str | None = None, wallet_address: str | None = None) -> User:
        user = User(external_id=external_id, username=username or external_id, wallet_address=wallet_address)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def product(
        self,
        creator: User,
        *,
        name: str = "Song",
        price: int = 1_000_000,
        files: dict[str, KeyClass] | None = None,
        published: bool = True,
    ) -> Product:
        product = Product(
            creator_id=creator.id,
            name=name,
            price=price,
            published_at=datetime.now(timezone.utc) if published else None,
        )
        self.db.add(product)
        self.db.flush()
        for key, key_class in (files or {}).items():
            self.db.add(
                ProductFile(product_id=product.id, key=key, kind=key_class.value, file_name=key.rsplit("_", 1)[-1])
            )
        self.db.commit()
        self.db.refresh(product)
        return product

    def purchase(
        self,
        buyer: User,
        products: list[Product],
        *,
        status: PurchaseStatus = PurchaseStatus.PENDING,
        expires_in: timedelta = timedelta(minutes=15),
        transaction_hash: str | None = None,
    ) -> Purchase:
        purchase = Purchase(
            buyer_id=buyer.id,
            buyer_wallet=BUYER_WALLET,
            status=status.value,
            total_amount=sum(p.price for p in products),
            platform_fee=0,
            transaction_hash=transaction_hash,
            expires_at=datetime.now(timezone.utc) + expires_in,
        )
        purchase.items = [
            PurchaseItem(position=i, product_id=p.id, seller_id=p.creator_id, price=p.price)
            for i, p in enumerate(products)
        ]
        self.db.add(purchase)
        self.db.commit()
        self.db.refresh(purchase)
        return purchase


@pytest.fixture
def make(db):
    return Factory(db)
