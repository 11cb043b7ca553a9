"""Identity of the calling user, taken from the auth provider's access token."""

import logging
from typing import Optional, Protocol

from jose import JWTError, jwt
from pydantic import BaseModel

from app.config import settings
from app.exceptions import AuthenticationException

logger = logging.getLogger(__name__)


class CurrentUser(BaseModel):
    """Authenticated caller."""

    id: str
    email: Optional[str] = None


class IdentityProvider(Protocol):
    """Resolves a bearer token to the user it was issued for."""

    def get_current_user(self, token: str) -> CurrentUser: ...


class JWTIdentityProvider:
    """Verifies HS256 access tokens signed with the auth provider's shared secret."""

    def __init__(
        self,
        secret: Optional[str] = None,
        audience: Optional[str] = None,
        algorithm: Optional[str] = None,
    ):
        self.secret = secret if secret is not None else settings.auth_jwt_secret
        self.audience = audience if audience is not None else settings.auth_jwt_audience
        self.algorithm = algorithm or settings.auth_jwt_algorithm

    def get_current_user(self, token: str) -> CurrentUser:
        """
        Decode and verify an access token.

        Args:
            token: Raw JWT from the Authorization header

        Returns:
            The user named by the ``sub`` claim

        Raises:
            AuthenticationException: If the token is missing, invalid or expired
        """
        if not token:
            raise AuthenticationException("Missing access token")
        if not self.secret:
            raise AuthenticationException("Token verification is not configured")

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience or None,
                options={"verify_aud": bool(self.audience)},
            )
        except JWTError as e:
            logger.info(f"Rejected access token: {e}")
            raise AuthenticationException("Invalid or expired token") from e

        subject = payload.get("sub")
        if not subject:
            raise AuthenticationException("Token has no subject")
        return CurrentUser(id=str(subject), email=payload.get("email"))
