from datetime import datetime

from app.schemas.base import CamelModel


class UserUpsertIn(CamelModel):
    username: str | None = None
    wallet_address: str | None = None


class UserOut(CamelModel):
    id: str
    external_id: str
    username: str | None = None
    wallet_address: str | None = None
    is_creator: bool = False
    created_at: datetime
