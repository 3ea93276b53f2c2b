"""
Authorization proofs for privileged custody calls.

A proof is an ECDSA P-256 / SHA-256 signature over the canonical JSON
description of exactly one upstream request:

    {"version": 1, "method": "POST", "url": "<absolute url>",
     "body": {...}, "headers": {"privy-app-id": "<app id>"}}

Canonical JSON here means sorted object keys and no insignificant
whitespace. The DER signature is sent base64 encoded.

Which key signs is a deployment-wide choice made once at startup:

- static:  one configured authorization key shared by every session; wallets
           are created owned by the user id.
- session: a fresh keypair per session; the public key is registered as the
           owner of wallets created during that session.
"""

import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from walletgate.config import settings


logger = logging.getLogger(__name__)

PROOF_VERSION = 1
WALLET_AUTH_PREFIX = "wallet-auth:"


class CredentialError(Exception):
    """Authorization key is missing or unusable."""
    pass


def canonicalize(payload: Any) -> bytes:
    """
    Canonical JSON bytes: sorted keys, compact separators, UTF-8.

    Not full RFC 8785: keys sort by code point rather than UTF-16 units and
    floats use Python's repr. Descriptors built here only carry strings and
    small integers, where the two agree.
    """
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def build_request_descriptor(
    method: str,
    url: str,
    body: Dict[str, Any],
    app_id: str,
) -> Dict[str, Any]:
    """Describe one upstream call for signing."""
    return {
        "version": PROOF_VERSION,
        "method": method.upper(),
        "url": url,
        "body": body,
        "headers": {"privy-app-id": app_id},
    }


class AuthorizationSigner:
    """Holds one P-256 private key and signs request descriptors with it."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey):
        if not isinstance(private_key, ec.EllipticCurvePrivateKey) or not isinstance(
            private_key.curve, ec.SECP256R1
        ):
            raise CredentialError("Authorization key must be a P-256 (secp256r1) private key")
        self._private_key = private_key

    @classmethod
    def generate(cls) -> "AuthorizationSigner":
        return cls(ec.generate_private_key(ec.SECP256R1()))

    @classmethod
    def from_encoded(cls, value: str) -> "AuthorizationSigner":
        """
        Load a key from PEM or from the `wallet-auth:<base64 PKCS8 DER>` form.
        """
        value = (value or "").strip()
        if not value:
            raise CredentialError("Authorization key is empty")

        try:
            if value.startswith("-----BEGIN"):
                key = serialization.load_pem_private_key(value.encode("utf-8"), password=None)
            else:
                if value.startswith(WALLET_AUTH_PREFIX):
                    value = value[len(WALLET_AUTH_PREFIX):]
                der = base64.b64decode(value, validate=True)
                key = serialization.load_der_private_key(der, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CredentialError(f"Could not load authorization key: {e}")

        return cls(key)

    @property
    def public_key(self) -> str:
        """Base64 SPKI DER of the public key, the form registered as a wallet owner."""
        der = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return base64.b64encode(der).decode("ascii")

    def sign(self, descriptor: Dict[str, Any]) -> str:
        signature = self._private_key.sign(canonicalize(descriptor), ec.ECDSA(hashes.SHA256()))
        return base64.b64encode(signature).decode("ascii")


class CredentialStrategy(ABC):
    """Chooses the signing key for a session and the owner of new wallets."""

    mode: str

    @abstractmethod
    def signer_for_session(self) -> AuthorizationSigner:
        pass

    @abstractmethod
    def wallet_owner(self, identity: str, signer: AuthorizationSigner) -> Dict[str, str]:
        pass


class StaticKeyStrategy(CredentialStrategy):
    mode = "static"

    def __init__(self, signer: AuthorizationSigner):
        self._signer = signer

    def signer_for_session(self) -> AuthorizationSigner:
        return self._signer

    def wallet_owner(self, identity: str, signer: AuthorizationSigner) -> Dict[str, str]:
        return {"user_id": identity}


class SessionKeyStrategy(CredentialStrategy):
    mode = "session"

    def signer_for_session(self) -> AuthorizationSigner:
        return AuthorizationSigner.generate()

    def wallet_owner(self, identity: str, signer: AuthorizationSigner) -> Dict[str, str]:
        return {"public_key": signer.public_key}


def build_credential_strategy(
    mode: Optional[str] = None,
    authorization_key: Optional[str] = None,
) -> CredentialStrategy:
    mode = (mode or settings.signing_credential_mode).strip().lower()
    if mode == SessionKeyStrategy.mode:
        logger.info("Using per-session authorization keys")
        return SessionKeyStrategy()
    if mode == StaticKeyStrategy.mode:
        key = authorization_key if authorization_key is not None else settings.authorization_private_key
        if not key:
            raise CredentialError("AUTHORIZATION_PRIVATE_KEY must be set when signing_credential_mode is 'static'")
        logger.info("Using static authorization key")
        return StaticKeyStrategy(AuthorizationSigner.from_encoded(key))
    raise CredentialError(f"Unknown signing credential mode {mode!r}")


_credential_strategy: Optional[CredentialStrategy] = None


def get_credential_strategy() -> CredentialStrategy:
    """Get the process-wide credential strategy, built on first use."""
    global _credential_strategy
    if _credential_strategy is None:
        _credential_strategy = build_credential_strategy()
    return _credential_strategy
