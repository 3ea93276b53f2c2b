import asyncio
import base64
import json
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from walletgate.auth import InvalidTokenError, VerifiedIdentity
from walletgate.core.credentials import AuthorizationSigner, build_request_descriptor, canonicalize
from walletgate.providers.custody import (
    AUTHORIZATION_SIGNATURE_HEADER,
    CustodyConfig,
    CustodyProvider,
)


APP_ID = "test-app-id"
APP_SECRET = "test-app-secret"
BASE_URL = "https://custody.test/v1"
USER_ID = "did:privy:user-1"
SIGNATURE = "0xdead" + "00" * 61 + "beef"


class FakeConnection:
    """Stands in for a websocket: records every JSON envelope sent."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.closed = False

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.closed:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent.append(data)


class StubVerifier:
    def __init__(self, tokens: Optional[Dict[str, str]] = None) -> None:
        self.tokens = tokens if tokens is not None else {"good-token": USER_ID}
        self.calls: List[str] = []

    async def verify(self, token: str) -> VerifiedIdentity:
        self.calls.append(token)
        if token not in self.tokens:
            raise InvalidTokenError("Invalid token: signature verification failed")
        return VerifiedIdentity(user_id=self.tokens[token])


def public_key_of(signer: AuthorizationSigner) -> ec.EllipticCurvePublicKey:
    return serialization.load_der_public_key(base64.b64decode(signer.public_key))


class CustodyStub:
    """
    In-memory custody service behind httpx.MockTransport.

    Wallet RPC calls are accepted only when the authorization signature
    header verifies against `authorized_signer` for the exact request made.
    """

    def __init__(self, authorized_signer: Optional[AuthorizationSigner] = None) -> None:
        self.authorized_signer = authorized_signer
        self.linked_accounts: Dict[str, List[Dict[str, Any]]] = {}
        self.wallets: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.bodies: List[Dict[str, Any]] = []
        self.fail: Dict[Tuple[str, str], int] = {}
        self.user_lookup_delay: float = 0.0
        self.created = 0

    # -- fixtures -----------------------------------------------------------

    def add_wallet(
        self,
        user_id: str,
        wallet_id: str = "wallet-1",
        address: str = "0x1111111111111111111111111111111111111111",
        chain_type: str = "ethereum",
        owner_id: Optional[str] = USER_ID,
    ) -> None:
        self.linked_accounts.setdefault(user_id, []).append(
            {"type": "wallet", "id": wallet_id, "address": address, "chain_type": chain_type}
        )
        self.wallets[wallet_id] = {
            "id": wallet_id,
            "address": address,
            "chain_type": chain_type,
            "owner_id": owner_id,
        }

    def count(self, method: str, prefix: str = "") -> int:
        return sum(1 for m, p in self.calls if m == method and p.startswith(prefix))

    def provider(self) -> CustodyProvider:
        return CustodyProvider(
            CustodyConfig(base_url=BASE_URL, app_id=APP_ID, app_secret=APP_SECRET),
            transport=httpx.MockTransport(self.handler),
        )

    # -- transport ----------------------------------------------------------

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path)
        if path.startswith("/v1"):
            path = path[len("/v1"):]
        self.calls.append((request.method, path))
        body = json.loads(request.content) if request.content else None
        if body is not None:
            self.bodies.append(body)

        if not request.headers.get("authorization", "").startswith("Basic "):
            return httpx.Response(401, json={"error": "Missing app credentials"})
        if request.headers.get("privy-app-id") != APP_ID:
            return httpx.Response(401, json={"error": "Unknown app"})

        for (method, prefix), status in self.fail.items():
            if request.method == method and path.startswith(prefix):
                return httpx.Response(status, json={"error": "upstream failure"})

        parts = path.strip("/").split("/")

        if request.method == "GET" and parts[0] == "users":
            if self.user_lookup_delay:
                await asyncio.sleep(self.user_lookup_delay)
            user_id = "/".join(parts[1:])
            return httpx.Response(
                200,
                json={"id": user_id, "linked_accounts": self.linked_accounts.get(user_id, [])},
            )

        if parts[0] != "wallets":
            return httpx.Response(404, json={"error": "not found"})

        if request.method == "POST" and len(parts) == 1:
            self.created += 1
            wallet_id = f"wallet-new-{self.created}"
            owner = body["owner"]
            record = {
                "id": wallet_id,
                "address": f"0x{self.created:040x}",
                "chain_type": body["chain_type"],
                "owner_id": owner.get("user_id") or owner.get("public_key"),
            }
            self.wallets[wallet_id] = record
            return httpx.Response(200, json=record)

        wallet = self.wallets.get(parts[1])
        if wallet is None:
            return httpx.Response(404, json={"error": "wallet not found"})

        if request.method == "GET" and len(parts) == 2:
            return httpx.Response(200, json=wallet)

        if request.method == "PATCH" and len(parts) == 2:
            wallet["owner_id"] = body["owner"]["user_id"]
            return httpx.Response(200, json=wallet)

        if request.method == "POST" and parts[2:] == ["rpc"]:
            if not self._proof_is_valid(request, body):
                return httpx.Response(401, json={"error": "Invalid authorization signature"})
            return httpx.Response(
                200,
                json={"method": "personal_sign", "data": {"signature": SIGNATURE, "encoding": "hex"}},
            )

        return httpx.Response(405, json={"error": "method not allowed"})

    def _proof_is_valid(self, request: httpx.Request, body: Dict[str, Any]) -> bool:
        header = request.headers.get(AUTHORIZATION_SIGNATURE_HEADER)
        if not header or self.authorized_signer is None:
            return False
        descriptor = build_request_descriptor(request.method, str(request.url), body, APP_ID)
        try:
            public_key_of(self.authorized_signer).verify(
                base64.b64decode(header, validate=True),
                canonicalize(descriptor),
                ec.ECDSA(hashes.SHA256()),
            )
        except (InvalidSignature, ValueError):
            return False
        return True


@pytest.fixture
def signer() -> AuthorizationSigner:
    return AuthorizationSigner.generate()


@pytest.fixture
def custody_stub(signer) -> CustodyStub:
    return CustodyStub(authorized_signer=signer)


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()
