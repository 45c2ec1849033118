from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.user import User
from app.schemas.users import UserOut, UserUpsertIn
from app.services.auth.identity import require_identity
from app.services.users.service import UserService, current_user


router = APIRouter(prefix="/users", tags=["users"])


def _user_out(service: UserService, user: User) -> UserOut:
    return UserOut(
        id=user.id,
        external_id=user.external_id,
        username=user.username,
        wallet_address=user.wallet_address,
        is_creator=service.is_creator(user),
        created_at=user.created_at,
    )


@router.post("/me", response_model=UserOut)
def upsert_me(
    body: UserUpsertIn,
    identity: str = Depends(require_identity),
    db: Session = Depends(get_db),
) -> UserOut:
    """Create the caller's account on first contact; update username / wallet afterwards."""
    service = UserService(db)
    user = service.get_or_create_user(identity, username=body.username, wallet_address=body.wallet_address)
    return _user_out(service, user)


@router.get("/me", response_model=UserOut)
def get_me(user: User = Depends(current_user), db: Session = Depends(get_db)) -> UserOut:
    return _user_out(UserService(db), user)
