"""
Bearer token verification.

Turns a signed token into the identity it was issued for. Issuing tokens
is handled elsewhere; this only checks signature, expiry and the identity
claim.
"""

from typing import Any, Dict, Optional

import jwt
import structlog

from ...core.config import Settings

logger = structlog.get_logger(__name__)


class AuthenticationError(Exception):
    """Raised when a token is missing, malformed, expired or forged."""

    def __init__(self, message: str = "Invalid token"):
        self.message = message
        super().__init__(message)


class TokenVerifier:
    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        identity_claim: str = "userId",
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.identity_claim = identity_claim

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenVerifier":
        return cls(
            secret=settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            identity_claim=settings.JWT_IDENTITY_CLAIM,
        )

    def decode(self, token: str) -> Dict[str, Any]:
        """Verify a token and return its claims."""
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as e:
            logger.info("Expired token rejected")
            raise AuthenticationError("Token expired") from e
        except jwt.InvalidTokenError as e:
            logger.info("Invalid token rejected", error=str(e))
            raise AuthenticationError("Invalid token") from e

    def verify(self, token: Optional[str]) -> str:
        """
        Return the identity carried by ``token``.

        Raises:
            AuthenticationError: If the token is absent or not valid
        """
        if not token:
            raise AuthenticationError("No authentication token, access denied")

        claims = self.decode(token)
        identity = claims.get(self.identity_claim)
        if identity is None or identity == "":
            raise AuthenticationError("Invalid token")
        return str(identity)
