"""
Content delivery: GET /files/{key} (identity when the key is gated), GET /images/{key} (public).
The DB session is closed before streaming starts; no store resources are held while bytes flow.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from app.api.deps import get_storage
from app.db.session import Database, get_database
from app.models.product import KeyClass
from app.paywall import deliver
from app.services.auth.identity import optional_identity
from app.storage.base import Storage


router = APIRouter(tags=["files"])


@router.get("/files/{key}")
def get_file(
    key: str,
    identity: str | None = Depends(optional_identity),
    database: Database = Depends(get_database),
    storage: Storage = Depends(get_storage),
) -> StreamingResponse:
    with database.session_scope() as db:
        delivery = deliver(db, storage, key, identity)
    return StreamingResponse(delivery.stream, media_type=delivery.media_type, headers=delivery.headers)


@router.get("/images/{key}")
def get_image(
    key: str,
    database: Database = Depends(get_database),
    storage: Storage = Depends(get_storage),
) -> StreamingResponse:
    with database.session_scope() as db:
        delivery = deliver(db, storage, key, None, only_class=KeyClass.IMAGE)
    return StreamingResponse(delivery.stream, media_type=delivery.media_type, headers=delivery.headers)
