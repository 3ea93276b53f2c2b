from .models import AuthError, InvalidTokenError, VerifiedIdentity
from .verifier import IdentityVerifier, get_identity_verifier

__all__ = [
    "AuthError",
    "InvalidTokenError",
    "VerifiedIdentity",
    "IdentityVerifier",
    "get_identity_verifier",
]
