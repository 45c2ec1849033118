from fastapi import Request

from app.services.settlement.verifier import SettlementVerifier
from app.storage.base import Storage


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_settlement_verifier(request: Request) -> SettlementVerifier:
    return request.app.state.settlement_verifier
