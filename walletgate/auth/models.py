"""
Identity verification models and exceptions.
"""

from typing import Optional
from pydantic import BaseModel


class AuthError(Exception):
    """Base authentication error."""
    pass


class InvalidTokenError(AuthError):
    """Bearer token is missing, malformed, expired, or fails verification."""
    pass


class VerifiedIdentity(BaseModel):
    """Identity established from a verified bearer token."""
    user_id: str
    session_id: Optional[str] = None
    issuer: Optional[str] = None
    expires_at: Optional[int] = None
