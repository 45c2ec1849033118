"""Tests for PurchaseService — initiate validation, confirm state machine, expiry sweep."""
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from app.core.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from app.db.session import Database
from app.models.notification import Notification
from app.models.product import KeyClass, Product
from app.models.purchase import Purchase, PurchaseItem, PurchaseStatus
from app.models.user import User
from app.paywall import authorize, classify
from app.services.purchases.service import PurchaseService
from app.services.settlement.verifier import SettlementCheck, SettlementOutcome, SettlementUnavailableError

WALLET = "0x" + "ab" * 20
TX_HASH = "0xdead" + "0" * 60
OTHER_TX_HASH = "0xbeef" + "1" * 60


def _check(outcome: SettlementOutcome) -> SettlementCheck:
    return SettlementCheck(outcome=outcome)


@pytest.fixture
def parties(make):
    creator = make.user("creator", username="maker")
    buyer = make.user("buyer", username="fan")
    product = make.product(creator, name="Song", price=2_000_000, files={"abc_song.mp3": KeyClass.DIGITAL})
    return creator, buyer, product


class TestInitiate:
    def test_creates_pending_purchase_with_fee(self, db, parties):
        creator, buyer, product = parties

        purchase = PurchaseService(db).initiate(buyer, [product.id], WALLET)

        assert purchase.status == PurchaseStatus.PENDING.value
        assert purchase.id.startswith("purchase_")
        assert purchase.platform_fee == 100_000  # 5% of 2 USDC
        assert purchase.total_amount == 2_100_000
        assert [(i.product_id, i.seller_id, i.price) for i in purchase.items] == [(product.id, creator.id, 2_000_000)]
        assert purchase.transaction_hash is None

    @pytest.mark.parametrize("wallet", ["", "0x123", "ab" * 21, "0x" + "zz" * 20])
    def test_rejects_bad_wallet(self, db, parties, wallet):
        _, buyer, product = parties
        with pytest.raises(ValidationError) as exc_info:
            PurchaseService(db).initiate(buyer, [product.id], wallet)
        assert exc_info.value.field == "buyerWallet"

    def test_rejects_empty_and_duplicate_items(self, db, parties):
        _, buyer, product = parties
        service = PurchaseService(db)
        with pytest.raises(ValidationError):
            service.initiate(buyer, [], WALLET)
        with pytest.raises(ValidationError):
            service.initiate(buyer, [product.id, product.id], WALLET)

    def test_rejects_unknown_or_unpublished(self, db, make, parties):
        creator, buyer, _ = parties
        draft = make.product(creator, name="Draft", published=False)
        with pytest.raises(ValidationError):
            PurchaseService(db).initiate(buyer, ["missing"], WALLET)
        with pytest.raises(ValidationError):
            PurchaseService(db).initiate(buyer, [draft.id], WALLET)

    def test_rejects_own_product(self, db, parties):
        creator, _, product = parties
        with pytest.raises(ValidationError):
            PurchaseService(db).initiate(creator, [product.id], WALLET)

    def test_rejects_already_owned(self, db, make, parties):
        _, buyer, product = parties
        make.purchase(buyer, [product], status=PurchaseStatus.COMPLETED, transaction_hash=OTHER_TX_HASH)
        with pytest.raises(ConflictError):
            PurchaseService(db).initiate(buyer, [product.id], WALLET)


class TestConfirm:
    def _service(self, db, outcome=SettlementOutcome.VERIFIED):
        verifier = MagicMock()
        verifier.verify.return_value = _check(outcome)
        return PurchaseService(db, verifier=verifier), verifier

    def test_success_completes_and_grants_access(self, db, make, parties):
        creator, buyer, product = parties
        purchase = make.purchase(buyer, [product])
        service, verifier = self._service(db)

        confirmed = service.confirm(buyer, purchase.id, TX_HASH)

        assert confirmed.status == PurchaseStatus.COMPLETED.value
        assert confirmed.transaction_hash == TX_HASH
        assert confirmed.completed_at is not None
        verifier.verify.assert_called_once_with(TX_HASH, purchase.id, purchase.buyer_wallet, purchase.total_amount)
        assert authorize(db, "buyer", classify(db, "abc_song.mp3")).granted

        messages = {n.user_id: n.message for n in db.query(Notification).all()}
        assert messages[buyer.id] == "You purchased Song"
        assert messages[creator.id].startswith("Woohh! You made a sale @fan bought Song")

    @pytest.mark.parametrize(
        "purchase_id,tx_hash,field",
        [
            ("", TX_HASH, "purchaseId"),
            ("x" * 101, TX_HASH, "purchaseId"),
            ("p1", "0xdead", "transactionHash"),
            ("p1", "dead" + "0" * 62, "transactionHash"),
        ],
    )
    def test_input_validation(self, db, parties, purchase_id, tx_hash, field):
        _, buyer, _ = parties
        service, verifier = self._service(db)
        with pytest.raises(ValidationError) as exc_info:
            service.confirm(buyer, purchase_id, tx_hash)
        assert exc_info.value.field == field
        verifier.verify.assert_not_called()

    def test_other_buyers_purchase_is_not_found(self, db, make, parties):
        _, buyer, product = parties
        purchase = make.purchase(buyer, [product])
        intruder = make.user("intruder")
        service, _ = self._service(db)
        with pytest.raises(NotFoundError):
            service.confirm(intruder, purchase.id, TX_HASH)

    def test_hash_reuse_is_conflict(self, db, make, parties):
        creator, buyer, product = parties
        other = make.product(creator, name="Other")
        make.purchase(buyer, [other], status=PurchaseStatus.COMPLETED, transaction_hash=TX_HASH)
        purchase = make.purchase(buyer, [product])
        service, verifier = self._service(db)

        with pytest.raises(ConflictError):
            service.confirm(buyer, purchase.id, TX_HASH)
        verifier.verify.assert_not_called()
        db.refresh(purchase)
        assert purchase.status == PurchaseStatus.PENDING.value

    @pytest.mark.parametrize("status", [PurchaseStatus.COMPLETED, PurchaseStatus.FAILED, PurchaseStatus.EXPIRED])
    def test_hash_reuse_conflicts_whatever_the_holder_status(self, db, make, parties, status):
        creator, buyer, product = parties
        other = make.product(creator, name="Other")
        make.purchase(buyer, [other], status=status, transaction_hash=TX_HASH)
        purchase = make.purchase(buyer, [product])
        service, verifier = self._service(db)

        with pytest.raises(ConflictError) as exc_info:
            service.confirm(buyer, purchase.id, TX_HASH)
        assert exc_info.value.field == "transactionHash"
        verifier.verify.assert_not_called()
        db.refresh(purchase)
        assert purchase.status == PurchaseStatus.PENDING.value
        assert purchase.transaction_hash is None

    def test_hash_stored_lower_case(self, db, make, parties):
        _, buyer, product = parties
        purchase = make.purchase(buyer, [product])
        service, verifier = self._service(db)

        confirmed = service.confirm(buyer, purchase.id, "0x" + TX_HASH[2:].upper())

        assert confirmed.transaction_hash == TX_HASH
        assert verifier.verify.call_args.args[0] == TX_HASH

    def test_case_variant_hash_reuse_is_conflict(self, db, make, parties):
        creator, buyer, product = parties
        other = make.product(creator, name="Other")
        first = make.purchase(buyer, [other])
        second = make.purchase(buyer, [product])
        service, verifier = self._service(db)
        service.confirm(buyer, first.id, TX_HASH)

        with pytest.raises(ConflictError):
            service.confirm(buyer, second.id, "0x" + TX_HASH[2:].upper())
        assert verifier.verify.call_count == 1
        db.refresh(second)
        assert second.status == PurchaseStatus.PENDING.value
        assert not authorize(db, "buyer", classify(db, "abc_song.mp3")).granted
        assert purchase.status == PurchaseStatus.PENDING.value

    def test_reconfirm_completed_is_conflict(self, db, make, parties):
        _, buyer, product = parties
        purchase = make.purchase(buyer, [product])
        service, verifier = self._service(db)
        service.confirm(buyer, purchase.id, TX_HASH)
        notifications_before = db.query(Notification).count()

        with pytest.raises(ConflictError):
            service.confirm(buyer, purchase.id, TX_HASH)
        assert verifier.verify.call_count == 1
        assert db.query(Notification).count() == notifications_before

    def test_expired_purchase(self, db, make, parties):
        _, buyer, product = parties
        purchase = make.purchase(buyer, [product], expires_in=timedelta(minutes=-1))
        service, verifier = self._service(db)

        with pytest.raises(ValidationError):
            service.confirm(buyer, purchase.id, TX_HASH)
        verifier.verify.assert_not_called()
        db.refresh(purchase)
        assert purchase.status == PurchaseStatus.EXPIRED.value
        assert not authorize(db, "buyer", classify(db, "abc_song.mp3")).granted

    @pytest.mark.parametrize(
        "outcome",
        [
            SettlementOutcome.REVERTED,
            SettlementOutcome.SENDER_MISMATCH,
            SettlementOutcome.WRONG_CONTRACT,
            SettlementOutcome.REFUNDED,
        ],
    )
    def test_final_settlement_failure_marks_failed(self, db, make, parties, outcome):
        _, buyer, product = parties
        purchase = make.purchase(buyer, [product])
        service, _ = self._service(db, outcome)

        with pytest.raises(ValidationError):
            service.confirm(buyer, purchase.id, TX_HASH)
        db.refresh(purchase)
        assert purchase.status == PurchaseStatus.FAILED.value
        assert purchase.transaction_hash == TX_HASH

    @pytest.mark.parametrize(
        "outcome",
        [
            SettlementOutcome.NOT_FOUND,
            SettlementOutcome.NOT_ON_CHAIN,
            SettlementOutcome.BUYER_MISMATCH,
            SettlementOutcome.AMOUNT_MISMATCH,
        ],
    )
    def test_unmatched_settlement_leaves_pending(self, db, make, parties, outcome):
        _, buyer, product = parties
        purchase = make.purchase(buyer, [product])
        service, _ = self._service(db, outcome)

        with pytest.raises(ValidationError):
            service.confirm(buyer, purchase.id, TX_HASH)
        db.refresh(purchase)
        assert purchase.status == PurchaseStatus.PENDING.value
        assert purchase.transaction_hash is None

    def test_settlement_unavailable_is_upstream_error(self, db, make, parties):
        _, buyer, product = parties
        purchase = make.purchase(buyer, [product])
        verifier = MagicMock()
        verifier.verify.side_effect = SettlementUnavailableError("down")

        with pytest.raises(UpstreamError):
            PurchaseService(db, verifier=verifier).confirm(buyer, purchase.id, TX_HASH)
        db.refresh(purchase)
        assert purchase.status == PurchaseStatus.PENDING.value

    def test_fan_out_notifies_each_seller(self, db, make, parties):
        creator, buyer, product = parties
        other_creator = make.user("other-creator")
        other = make.product(other_creator, name="Beat", price=1_000_000)
        purchase = make.purchase(buyer, [product, other])
        service, _ = self._service(db)

        service.confirm(buyer, purchase.id, TX_HASH)

        sales = {n.user_id: n.message for n in db.query(Notification).filter(Notification.category == "sale")}
        assert set(sales) == {creator.id, other_creator.id}
        assert sales[other_creator.id].endswith("bought Beat")
        assert db.query(Notification).filter(Notification.user_id == buyer.id).count() == 2


class TestHistory:
    def _aged(self, db, purchase, minutes_ago):
        purchase.created_at = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
        db.commit()
        return purchase

    def test_newest_first_and_only_own_rows(self, db, make, parties):
        _, buyer, product = parties
        old = self._aged(db, make.purchase(buyer, [product]), 30)
        new = self._aged(db, make.purchase(buyer, [product]), 1)
        make.purchase(make.user("someone"), [product])

        purchases, total = PurchaseService(db).history(buyer)

        assert total == 2
        assert [p.id for p in purchases] == [new.id, old.id]

    def test_paging(self, db, make, parties):
        _, buyer, product = parties
        rows = [self._aged(db, make.purchase(buyer, [product]), minutes) for minutes in (5, 4, 3)]

        second_page, total = PurchaseService(db).history(buyer, page=2, limit=2)

        assert total == 3
        assert [p.id for p in second_page] == [rows[0].id]

    def test_status_filter(self, db, make, parties):
        _, buyer, product = parties
        done = make.purchase(buyer, [product], status=PurchaseStatus.COMPLETED, transaction_hash=TX_HASH)
        make.purchase(buyer, [product])

        purchases, total = PurchaseService(db).history(buyer, status="completed")
        assert total == 1
        assert purchases[0].id == done.id

        _, unfiltered = PurchaseService(db).history(buyer, status="bogus")
        assert unfiltered == 2

    def test_out_of_range_paging_is_clamped(self, db, make, parties):
        _, buyer, product = parties
        make.purchase(buyer, [product])

        purchases, total = PurchaseService(db).history(buyer, page=0, limit=1000)
        assert total == 1
        assert len(purchases) == 1


class TestExpireStale:
    def test_only_past_due_pending_rows_expire(self, db, make, parties):
        _, buyer, product = parties
        stale = make.purchase(buyer, [product], expires_in=timedelta(minutes=-5))
        fresh = make.purchase(buyer, [product])
        done = make.purchase(
            buyer, [product], status=PurchaseStatus.COMPLETED, expires_in=timedelta(minutes=-5), transaction_hash=TX_HASH
        )

        assert PurchaseService(db).expire_stale() == 1

        db.expire_all()
        assert db.get(Purchase, stale.id).status == PurchaseStatus.EXPIRED.value
        assert db.get(Purchase, fresh.id).status == PurchaseStatus.PENDING.value
        assert db.get(Purchase, done.id).status == PurchaseStatus.COMPLETED.value

    def test_explicit_now(self, db, make, parties):
        _, buyer, product = parties
        make.purchase(buyer, [product])
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        assert PurchaseService(db).expire_stale(now=later) == 1


class TestConcurrentConfirm:
    """Two confirms of the same pending purchase race past the status check; one UPDATE wins."""

    def test_exactly_one_wins(self, file_database, seed_race):
        purchase_id, buyer_id = seed_race
        barrier = threading.Barrier(2, timeout=10)
        results: list = []
        lock = threading.Lock()

        def verify(tx_hash, purchase_id, wallet, total_amount):
            barrier.wait()
            return _check(SettlementOutcome.VERIFIED)

        def worker():
            with file_database.session_scope() as db:
                verifier = MagicMock()
                verifier.verify.side_effect = verify
                buyer = db.get(User, buyer_id)
                try:
                    PurchaseService(db, verifier=verifier).confirm(buyer, purchase_id, TX_HASH)
                    outcome = "completed"
                except ConflictError:
                    outcome = "conflict"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(results) == ["completed", "conflict"]
        with file_database.session_scope() as db:
            purchase = db.get(Purchase, purchase_id)
            assert purchase.status == PurchaseStatus.COMPLETED.value
            # Fan-out ran once: one purchase + one sale notification
            assert db.query(Notification).count() == 2


@pytest.fixture
def file_database(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'race.db'}").start()
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def seed_race(file_database):
    with file_database.session_scope() as db:
        creator = User(external_id="creator", username="maker")
        buyer = User(external_id="buyer", username="fan")
        db.add_all([creator, buyer])
        db.flush()
        product = Product(creator_id=creator.id, name="Song", price=1_000_000, published_at=datetime.now(timezone.utc))
        db.add(product)
        db.flush()
        purchase = Purchase(
            buyer_id=buyer.id,
            buyer_wallet=WALLET,
            status=PurchaseStatus.PENDING.value,
            total_amount=1_050_000,
            platform_fee=50_000,
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=15),
        )
        purchase.items = [PurchaseItem(position=0, product_id=product.id, seller_id=creator.id, price=1_000_000)]
        db.add(purchase)
        db.commit()
        return purchase.id, buyer.id
