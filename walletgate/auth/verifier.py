"""
Bearer token verification against the identity issuer's signing key.
"""

import logging
from typing import Optional, Sequence

import jwt

from walletgate.config import settings

from .models import AuthError, InvalidTokenError, VerifiedIdentity


logger = logging.getLogger(__name__)


class IdentityVerifier:
    """
    Verifies identity tokens issued for this application.

    Tokens are JWTs signed by the identity issuer (ES256 by default). A token
    is accepted only when its signature, expiry, issuer and audience all
    check out; the `sub` claim is the stable user identifier.

    Usage:
        verifier = get_identity_verifier()
        identity = await verifier.verify(token)
        identity.user_id  # "did:privy:..."
    """

    def __init__(
        self,
        verification_key: Optional[str] = None,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        algorithms: Optional[Sequence[str]] = None,
    ):
        self.verification_key = verification_key if verification_key is not None else settings.identity_verification_key
        self.issuer = issuer if issuer is not None else settings.identity_issuer
        self.audience = audience if audience is not None else settings.resolved_audience
        self.algorithms = list(algorithms or settings.identity_algorithms)

    async def verify(self, token: str) -> VerifiedIdentity:
        """
        Verify a bearer token and return the identity it asserts.

        Raises InvalidTokenError for any token that must not be trusted.
        """
        if not self.verification_key:
            raise AuthError("Identity verification key is not configured")
        if not token:
            raise InvalidTokenError("Token required")

        try:
            payload = jwt.decode(
                token,
                self.verification_key,
                algorithms=self.algorithms,
                audience=self.audience or None,
                issuer=self.issuer or None,
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidTokenError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}")

        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise InvalidTokenError("Token has no subject")

        logger.debug(f"Verified identity token for {user_id}")
        return VerifiedIdentity(
            user_id=user_id,
            session_id=payload.get("sid"),
            issuer=payload.get("iss"),
            expires_at=payload.get("exp"),
        )


_identity_verifier: Optional[IdentityVerifier] = None


def get_identity_verifier() -> IdentityVerifier:
    """Get the singleton identity verifier instance."""
    global _identity_verifier
    if _identity_verifier is None:
        _identity_verifier = IdentityVerifier()
    return _identity_verifier
