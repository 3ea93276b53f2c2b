"""
Signing relay: turns client requests into authorized custody RPC calls.
"""

import logging
import re
from typing import Any, Awaitable, Callable, Dict

from walletgate.providers.custody import CustodyError, CustodyProvider

from .credentials import build_request_descriptor
from .protocol import RequestEnvelope, error_envelope, result_envelope
from .session import Session, SessionNotReadyError


logger = logging.getLogger(__name__)

SIGN_PERSONAL_MESSAGE = "signPersonalMessage"

HEX_DIGITS = re.compile(r"[0-9a-fA-F]*")


class RelayError(Exception):
    """Per-request failure reported to the client as a correlated error."""
    pass


def decode_hex_payload(value: Any) -> bytes:
    """Decode a `0x`-prefixed (or bare) hex string."""
    if not isinstance(value, str):
        raise RelayError("Message must be a hex string")
    hex_body = value[2:] if value[:2].lower() == "0x" else value
    if not HEX_DIGITS.fullmatch(hex_body):
        raise RelayError("Message is not valid hex")
    if len(hex_body) % 2:
        raise RelayError("Message hex must have an even number of digits")
    return bytes.fromhex(hex_body)


def build_personal_sign_body(message: bytes) -> Dict[str, Any]:
    try:
        params = {"message": message.decode("utf-8"), "encoding": "utf-8"}
    except UnicodeDecodeError:
        params = {"message": "0x" + message.hex(), "encoding": "hex"}
    return {"method": "personal_sign", "params": params}


def extract_signature(result: Dict[str, Any]) -> str:
    data = result.get("data")
    signature = data.get("signature") if isinstance(data, dict) else None
    if signature is None:
        signature = result.get("signature")
    if not isinstance(signature, str) or not signature:
        raise RelayError("Sign failed: custody response carried no signature")
    return signature


class SigningRelay:
    """
    Dispatches client requests to method handlers; many may be in flight at once.

    Every upstream call is authorized with a proof computed fresh over that
    call's own method, URL, body and app header.
    """

    def __init__(self, custody: CustodyProvider):
        self.custody = custody
        self._handlers: Dict[str, Callable[[Session, Any], Awaitable[Any]]] = {
            SIGN_PERSONAL_MESSAGE: self.sign_personal_message,
        }

    async def handle_request(self, session: Session, request: RequestEnvelope) -> Dict[str, Any]:
        handler = self._handlers.get(request.method) if isinstance(request.method, str) else None
        if handler is None:
            logger.info(f"Unknown method {request.method!r} on session {session.connection_id}")
            return error_envelope(request.id, f"Unknown method: {request.method}")

        try:
            result = await handler(session, request.params)
        except (RelayError, SessionNotReadyError) as e:
            return error_envelope(request.id, str(e))
        return result_envelope(request.id, result)

    async def sign_personal_message(self, session: Session, params: Any) -> str:
        wallet_id = session.require_ready()

        if not isinstance(params, list) or not params:
            raise RelayError("signPersonalMessage expects [hexMessage]")
        message = decode_hex_payload(params[0])

        body = build_personal_sign_body(message)
        url = self.custody.url_for(self.custody.rpc_path(wallet_id))
        descriptor = build_request_descriptor("POST", url, body, self.custody.app_id)
        proof = session.signer.sign(descriptor)

        try:
            result = await self.custody.wallet_rpc(wallet_id, body, authorization_signature=proof)
        except CustodyError as e:
            logger.warning(f"Sign request for wallet {wallet_id} failed: {e}")
            raise RelayError(f"Sign failed: {e}")

        signature = extract_signature(result)
        logger.info(f"Signed personal message with wallet {wallet_id}")
        return signature
