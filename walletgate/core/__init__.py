"""
Session protocol core.

- SessionGateway: connection upgrade, identity check, session lifetime
- WalletResolver: find-or-create of the session's custodial wallet
- SigningRelay: client requests relayed as authorized custody calls
- SessionRegistry: in-memory, lock-guarded table of live sessions

Usage:
    from walletgate.core import get_session_gateway

    gateway = get_session_gateway()
    await gateway.serve(websocket, token)
"""

from .credentials import (
    AuthorizationSigner,
    CredentialError,
    CredentialStrategy,
    SessionKeyStrategy,
    StaticKeyStrategy,
    build_credential_strategy,
    build_request_descriptor,
    canonicalize,
    get_credential_strategy,
)
from .gateway import SessionGateway, get_session_gateway
from .relay import SIGN_PERSONAL_MESSAGE, RelayError, SigningRelay
from .resolver import ResolutionResult, WalletResolver
from .session import (
    InvalidTransitionError,
    ResolutionInProgressError,
    Session,
    SessionError,
    SessionNotReadyError,
    SessionRegistry,
    SessionState,
)

__all__ = [
    "AuthorizationSigner",
    "CredentialError",
    "CredentialStrategy",
    "SessionKeyStrategy",
    "StaticKeyStrategy",
    "build_credential_strategy",
    "build_request_descriptor",
    "canonicalize",
    "get_credential_strategy",
    "SessionGateway",
    "get_session_gateway",
    "SIGN_PERSONAL_MESSAGE",
    "RelayError",
    "SigningRelay",
    "ResolutionResult",
    "WalletResolver",
    "InvalidTransitionError",
    "ResolutionInProgressError",
    "Session",
    "SessionError",
    "SessionNotReadyError",
    "SessionRegistry",
    "SessionState",
]
