"""
Settlement verification: checks a claimed transaction hash against the chain
through a JSON-RPC node.

1. eth_getTransactionReceipt: the transaction is mined, succeeded, was sent by
   the buyer's wallet and called the marketplace contract.
2. eth_call verifyPurchase(purchaseId) on the marketplace contract: the purchase
   exists on-chain for this buyer and amount and was not refunded.

Sync httpx client, guarded by the "settlement_rpc" circuit breaker.
"""
import logging
import time
from enum import Enum
from typing import Any

import httpx
import pybreaker
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector
from pydantic import BaseModel

from app.core.config import settings
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import settlement_rpc_duration_seconds, settlement_rpc_requests_total

logger = logging.getLogger(__name__)

VERIFY_PURCHASE_SELECTOR = function_signature_to_4byte_selector("verifyPurchase(string)")
# exists, buyer, totalAmount, timestamp, refunded
VERIFY_PURCHASE_OUTPUT = ["bool", "address", "uint256", "uint256", "bool"]


class SettlementUnavailableError(Exception):
    """RPC node unreachable, erroring, or breaker open."""


class SettlementOutcome(str, Enum):
    VERIFIED = "verified"
    NOT_FOUND = "not_found"  # not mined yet or unknown hash
    REVERTED = "reverted"
    SENDER_MISMATCH = "sender_mismatch"
    WRONG_CONTRACT = "wrong_contract"  # transaction did not call the marketplace
    NOT_ON_CHAIN = "not_on_chain"  # contract has no record of the purchase id
    BUYER_MISMATCH = "buyer_mismatch"
    AMOUNT_MISMATCH = "amount_mismatch"
    REFUNDED = "refunded"


# Outcomes after which the purchase can never complete with this hash
FINAL_FAILURES = frozenset(
    {
        SettlementOutcome.REVERTED,
        SettlementOutcome.SENDER_MISMATCH,
        SettlementOutcome.WRONG_CONTRACT,
        SettlementOutcome.REFUNDED,
    }
)


class OnChainPurchase(BaseModel):
    exists: bool
    buyer: str
    total_amount: int
    timestamp: int
    refunded: bool

    model_config = {"frozen": True}


class SettlementCheck(BaseModel):
    outcome: SettlementOutcome
    block_number: int | None = None
    on_chain: OnChainPurchase | None = None

    model_config = {"frozen": True}

    @property
    def verified(self) -> bool:
        return self.outcome is SettlementOutcome.VERIFIED

    @property
    def is_final_failure(self) -> bool:
        return self.outcome in FINAL_FAILURES


class SettlementVerifier:
    def __init__(
        self,
        rpc_url: str | None = None,
        *,
        contract_address: str | None = None,
        amount_tolerance: int | None = None,
        timeout: float | None = None,
        check_sender: bool | None = None,
        client: httpx.Client | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self.rpc_url = rpc_url or settings.settlement_rpc_url
        self.contract_address = (contract_address or settings.settlement_contract_address).lower()
        self.amount_tolerance = (
            settings.settlement_amount_tolerance if amount_tolerance is None else amount_tolerance
        )
        self.timeout = timeout if timeout is not None else settings.settlement_rpc_timeout
        self.check_sender = settings.settlement_check_sender if check_sender is None else check_sender
        self._client = client
        self._breaker = breaker or get_circuit_breaker("settlement_rpc")
        self._request_id = 0

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _rpc(self, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        start = time.time()
        status = "error"
        try:
            resp = self.client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
            if body.get("error"):
                raise SettlementUnavailableError(f"{method}: {body['error']}")
            status = "success"
            return body.get("result")
        finally:
            settlement_rpc_requests_total.labels(method=method, status=status).inc()
            settlement_rpc_duration_seconds.labels(method=method).observe(time.time() - start)

    def _call(self, method: str, params: list) -> Any:
        try:
            return self._breaker.call(self._rpc, method, params)
        except pybreaker.CircuitBreakerError as e:
            logger.warning("settlement_breaker_open", extra={"error": method})
            raise SettlementUnavailableError("settlement RPC circuit open") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("settlement_rpc_failed", extra={"error": f"{method}: {e}"})
            raise SettlementUnavailableError(str(e)) from e

    def fetch_purchase(self, purchase_id: str) -> OnChainPurchase:
        """verifyPurchase(purchaseId) on the marketplace contract."""
        data = "0x" + (VERIFY_PURCHASE_SELECTOR + encode(["string"], [purchase_id])).hex()
        result = self._call("eth_call", [{"to": self.contract_address, "data": data}, "latest"])
        try:
            exists, buyer, total_amount, timestamp, refunded = decode(
                VERIFY_PURCHASE_OUTPUT, bytes.fromhex((result or "0x")[2:])
            )
        except (DecodingError, ValueError) as e:
            # Empty or malformed return data: wrong address or node trouble, never "no purchase"
            raise SettlementUnavailableError(f"verifyPurchase: undecodable result {result!r}") from e
        return OnChainPurchase(
            exists=exists,
            buyer=buyer,
            total_amount=total_amount,
            timestamp=timestamp,
            refunded=refunded,
        )

    def verify(
        self,
        transaction_hash: str,
        purchase_id: str,
        buyer_wallet: str | None,
        total_amount: int,
    ) -> SettlementCheck:
        """Check that transaction_hash settled purchase_id for buyer_wallet and total_amount."""
        receipt = self._call("eth_getTransactionReceipt", [transaction_hash])
        if not receipt:
            return SettlementCheck(outcome=SettlementOutcome.NOT_FOUND)

        block_number = _hex_to_int(receipt.get("blockNumber"))
        if _hex_to_int(receipt.get("status")) != 1:
            return SettlementCheck(outcome=SettlementOutcome.REVERTED, block_number=block_number)

        if self.check_sender and buyer_wallet:
            sender = (receipt.get("from") or "").lower()
            if sender != buyer_wallet.lower():
                return SettlementCheck(outcome=SettlementOutcome.SENDER_MISMATCH, block_number=block_number)

        if (receipt.get("to") or "").lower() != self.contract_address:
            return SettlementCheck(outcome=SettlementOutcome.WRONG_CONTRACT, block_number=block_number)

        on_chain = self.fetch_purchase(purchase_id)
        outcome = SettlementOutcome.VERIFIED
        if not on_chain.exists:
            outcome = SettlementOutcome.NOT_ON_CHAIN
        elif buyer_wallet and on_chain.buyer.lower() != buyer_wallet.lower():
            outcome = SettlementOutcome.BUYER_MISMATCH
        elif abs(on_chain.total_amount - int(total_amount)) > self.amount_tolerance:
            outcome = SettlementOutcome.AMOUNT_MISMATCH
        elif on_chain.refunded:
            outcome = SettlementOutcome.REFUNDED

        if outcome is not SettlementOutcome.VERIFIED:
            logger.info(
                "settlement_purchase_rejected",
                extra={"purchase_id": purchase_id, "transaction_hash": transaction_hash, "reason": outcome.value},
            )
        return SettlementCheck(outcome=outcome, block_number=block_number, on_chain=on_chain)


def _hex_to_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value, 16)
    except (TypeError, ValueError):
        return None
