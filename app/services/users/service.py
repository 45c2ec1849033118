import logging
import re

from fastapi import Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import UnauthenticatedError, ValidationError
from app.db.session import get_db
from app.models.product import Product
from app.models.user import User
from app.services.auth.identity import require_identity

logger = logging.getLogger(__name__)

WALLET_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_external_id(self, external_id: str) -> User | None:
        return self.db.query(User).filter(User.external_id == external_id).one_or_none()

    def get_or_create_user(
        self,
        external_id: str,
        username: str | None = None,
        wallet_address: str | None = None,
    ) -> User:
        if wallet_address is not None and not WALLET_RE.match(wallet_address):
            raise ValidationError("Invalid wallet address", field="walletAddress")

        user = self.get_by_external_id(external_id)
        if user:
            if username is not None or wallet_address is not None:
                if username is not None:
                    user.username = username
                if wallet_address is not None:
                    user.wallet_address = wallet_address
                self.db.add(user)
                self.db.commit()
                self.db.refresh(user)
            return user
        user = User(external_id=external_id, username=username, wallet_address=wallet_address)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent first request for the same account
            self.db.rollback()
            existing = self.get_by_external_id(external_id)
            if existing is None:
                raise
            return existing
        self.db.refresh(user)
        logger.info("user_created", extra={"user_id": user.id})
        return user

    def is_creator(self, user: User) -> bool:
        return self.db.query(Product.id).filter(Product.creator_id == user.id).first() is not None


def current_user(
    identity: str = Depends(require_identity),
    db: Session = Depends(get_db),
) -> User:
    """Known account for the bearer token; unknown accounts are unauthenticated."""
    user = UserService(db).get_by_external_id(identity)
    if user is None:
        raise UnauthenticatedError("Unknown user")
    return user
