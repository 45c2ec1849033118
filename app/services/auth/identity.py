"""
Identity verification: bearer token -> stable account identifier ("sub" claim).
The tokens are issued by the external auth provider; this module only verifies them.
"""
import logging
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.core.config import settings
from app.core.errors import UnauthenticatedError

logger = logging.getLogger("auth")

bearer_scheme = HTTPBearer(auto_error=False)


class IdentityVerifier:
    def __init__(
        self,
        secret: str | None = None,
        *,
        algorithm: str | None = None,
        audience: str | None = None,
        issuer: str | None = None,
    ) -> None:
        self._secret = secret or settings.identity_jwt_secret
        self.algorithm = algorithm or settings.identity_jwt_algorithm
        self.audience = audience if audience is not None else settings.identity_jwt_audience
        self.issuer = issuer if issuer is not None else settings.identity_jwt_issuer

    def verify(self, token: str) -> str:
        """Return the account identifier or raise UnauthenticatedError."""
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as e:
            logger.info("identity_token_rejected", extra={"error": type(e).__name__})
            raise UnauthenticatedError("Invalid or expired token") from e
        subject = claims.get("sub")
        if not subject:
            raise UnauthenticatedError("Invalid or expired token")
        return str(subject)

    def issue(self, subject: str, expires_in: timedelta = timedelta(hours=1)) -> str:
        """Mint a token for subject (local development and tests)."""
        now = datetime.now(timezone.utc)
        claims = {"sub": subject, "iat": now, "exp": now + expires_in}
        if self.audience:
            claims["aud"] = self.audience
        if self.issuer:
            claims["iss"] = self.issuer
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)


def get_identity_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.identity_verifier


def optional_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> str | None:
    """Account id when a bearer token is supplied; a bad token is still a 401."""
    if credentials is None or not credentials.credentials:
        return None
    return verifier.verify(credentials.credentials)


def require_identity(identity: str | None = Depends(optional_identity)) -> str:
    if identity is None:
        raise UnauthenticatedError("Authentication token required")
    return identity
