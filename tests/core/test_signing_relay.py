"""
Tests for relaying signing requests to the custody service.
"""

import httpx
import pytest

from walletgate.core.credentials import AuthorizationSigner
from walletgate.core.protocol import RequestEnvelope
from walletgate.core.relay import (
    RelayError,
    SigningRelay,
    build_personal_sign_body,
    decode_hex_payload,
)
from walletgate.core.session import Session, SessionRegistry
from walletgate.providers.custody import CustodyConfig, CustodyProvider

from conftest import SIGNATURE, USER_ID

HELLO_WORLD_HEX = "0x48656c6c6f20776f726c64"


class MalformedProofSigner(AuthorizationSigner):
    def sign(self, descriptor):
        return "not-a-signature"


async def _ready_session(connection, signer, wallet_id="wallet-1") -> Session:
    registry = SessionRegistry()
    session = await registry.register(
        Session(connection=connection, identity=USER_ID, signer=signer, connection_id="c1")
    )
    await registry.mark_ready(session, wallet_id, "0xaaa")
    return session


def _request(method="signPersonalMessage", params=None, request_id=7) -> RequestEnvelope:
    return RequestEnvelope(id=request_id, method=method, params=[HELLO_WORLD_HEX] if params is None else params)


@pytest.mark.asyncio
async def test_signs_hello_world_with_fresh_proof(custody_stub, signer, connection):
    custody_stub.add_wallet(USER_ID)
    session = await _ready_session(connection, signer)
    relay = SigningRelay(custody_stub.provider())

    response = await relay.handle_request(session, _request(request_id="req-1"))

    assert response == {"id": "req-1", "result": SIGNATURE, "jsonrpc": "2.0"}
    assert custody_stub.calls[-1] == ("POST", "/wallets/wallet-1/rpc")
    assert custody_stub.bodies[-1] == {
        "method": "personal_sign",
        "params": {"message": "Hello world", "encoding": "utf-8"},
    }


@pytest.mark.asyncio
async def test_proof_from_unregistered_key_surfaces_upstream_401(custody_stub, connection):
    custody_stub.add_wallet(USER_ID)
    session = await _ready_session(connection, AuthorizationSigner.generate())
    relay = SigningRelay(custody_stub.provider())

    response = await relay.handle_request(session, _request(request_id=3))

    assert response["id"] == 3
    assert "result" not in response
    assert response["error"].startswith("Sign failed:")
    assert "401" in response["error"]


@pytest.mark.asyncio
async def test_malformed_proof_surfaces_correlated_error(custody_stub, signer, connection):
    custody_stub.add_wallet(USER_ID)
    bad_signer = MalformedProofSigner(signer._private_key)
    session = await _ready_session(connection, bad_signer)
    relay = SigningRelay(custody_stub.provider())

    response = await relay.handle_request(session, _request(request_id="x"))

    assert response["id"] == "x"
    assert "401" in response["error"]


@pytest.mark.asyncio
async def test_request_before_resolution_is_rejected(custody_stub, signer, connection):
    session = Session(connection=connection, identity=USER_ID, signer=signer)
    relay = SigningRelay(custody_stub.provider())

    response = await relay.handle_request(session, _request(request_id=11))

    assert response == {"id": 11, "error": "Session not initialized", "jsonrpc": "2.0"}
    assert custody_stub.calls == []


@pytest.mark.asyncio
async def test_unknown_method_echoes_request_id(custody_stub, signer, connection):
    session = await _ready_session(connection, signer)
    relay = SigningRelay(custody_stub.provider())

    response = await relay.handle_request(session, _request(method="eth_sendTransaction", request_id="abc"))

    assert response == {"id": "abc", "error": "Unknown method: eth_sendTransaction", "jsonrpc": "2.0"}
    assert custody_stub.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("method", [5, None, ["signPersonalMessage"]])
async def test_non_string_method_is_unknown(custody_stub, signer, connection, method):
    session = await _ready_session(connection, signer)
    relay = SigningRelay(custody_stub.provider())

    response = await relay.handle_request(session, RequestEnvelope(id=7, method=method, params=[]))

    assert response["id"] == 7
    assert response["error"] == f"Unknown method: {method}"
    assert custody_stub.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [[], "0x00", [123], ["0xzz"], ["0x123"]])
async def test_malformed_params_are_rejected(custody_stub, signer, connection, params):
    session = await _ready_session(connection, signer)
    relay = SigningRelay(custody_stub.provider())

    response = await relay.handle_request(session, _request(params=params, request_id=5))

    assert response["id"] == 5
    assert "error" in response
    assert custody_stub.calls == []


@pytest.mark.asyncio
async def test_upstream_response_without_signature_is_an_error(signer, connection):
    provider = CustodyProvider(
        CustodyConfig(base_url="https://custody.test/v1", app_id="a", app_secret="s"),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"data": {}})),
    )
    session = await _ready_session(connection, signer)

    response = await SigningRelay(provider).handle_request(session, _request(request_id=1))

    assert response["error"] == "Sign failed: custody response carried no signature"


def test_decode_hex_payload_accepts_prefixed_and_bare_hex():
    assert decode_hex_payload(HELLO_WORLD_HEX) == b"Hello world"
    assert decode_hex_payload("48656C6C6F") == b"Hello"
    assert decode_hex_payload("0x") == b""


@pytest.mark.parametrize("value", [None, 42, "0x1", "0xgg", "0x4865 6c6c6f ", "0x48\n65", "0x+1"])
def test_decode_hex_payload_rejects_bad_input(value):
    with pytest.raises(RelayError):
        decode_hex_payload(value)


def test_non_utf8_payload_is_forwarded_as_hex():
    body = build_personal_sign_body(b"\xff\xfe\x00")

    assert body == {"method": "personal_sign", "params": {"message": "0xfffe00", "encoding": "hex"}}
