"""
DTO paywall: CatalogEntry (вход authorize), Grant / Deny (AccessDecision), Delivery.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Iterator, Literal, Union

from pydantic import BaseModel, Field

from app.models.product import KeyClass


# ----- Результат classify: чей ключ и какого класса -----


class CatalogEntry(BaseModel):
    """Key classified against the catalog: owning product and key class."""

    key: str
    key_class: KeyClass
    product_id: str
    product_name: str
    creator_id: str
    file_name: str | None = None

    model_config = {"frozen": True}


# ----- Решение доступа (чистая логика + один запрос покупок) -----


class GrantReason(str, Enum):
    PUBLIC = "public"
    CREATOR = "creator"
    PURCHASED = "purchased"


class DenyReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    UNKNOWN_USER = "unknown_user"
    NOT_PURCHASED = "not_purchased"


class Grant(BaseModel):
    kind: Literal["grant"] = "grant"
    reason: GrantReason
    user_id: str | None = Field(None, description="Resolved account id; None for public keys")

    model_config = {"frozen": True}

    @property
    def granted(self) -> bool:
        return True


class Deny(BaseModel):
    kind: Literal["deny"] = "deny"
    reason: DenyReason

    model_config = {"frozen": True}

    @property
    def granted(self) -> bool:
        return False


AccessDecision = Annotated[Union[Grant, Deny], Field(discriminator="kind")]


# ----- Результат deliver: поток + заголовки для ответа -----


@dataclass(frozen=True)
class Delivery:
    stream: Iterator[bytes]
    media_type: str
    filename: str
    key_class: KeyClass

    @property
    def headers(self) -> dict[str, str]:
        return {"Content-Disposition": f'inline; filename="{self.filename}"'}
