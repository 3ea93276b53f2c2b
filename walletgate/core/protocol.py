"""
Client-facing message envelopes.

Every envelope carries the JSON-RPC style version tag. Unsolicited server
pushes use well-known ids ("welcome", "wallet_found", "wallet_created",
"error"); responses to client requests echo the request id unchanged.
"""

import json
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, ValidationError


JSONRPC_VERSION = "2.0"

WELCOME_ID = "welcome"
WALLET_FOUND_ID = "wallet_found"
WALLET_CREATED_ID = "wallet_created"
ERROR_ID = "error"


class ProtocolError(ValueError):
    """Inbound message is not a usable request envelope."""
    pass


class RequestEnvelope(BaseModel):
    """Client to server request."""
    model_config = ConfigDict(extra="ignore")

    id: Any = None
    method: Any = None
    params: Any = None


def parse_request(raw: str) -> RequestEnvelope:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid JSON: {e}")
    if not isinstance(data, dict):
        raise ProtocolError("Request must be a JSON object")
    try:
        return RequestEnvelope.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid request: {e.errors()[0]['msg']}")


def result_envelope(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"id": request_id, "result": result, "jsonrpc": JSONRPC_VERSION}


def error_envelope(request_id: Any, error: str) -> Dict[str, Any]:
    return {"id": request_id, "error": error, "jsonrpc": JSONRPC_VERSION}


def welcome_envelope(user_id: str) -> Dict[str, Any]:
    return {
        "id": WELCOME_ID,
        "message": "Connected to wallet gateway! Authentication successful.",
        "user": user_id,
        "jsonrpc": JSONRPC_VERSION,
    }


def wallet_envelope(wallet_id: str, address: str, is_new: bool) -> Dict[str, Any]:
    if is_new:
        message = "New wallet created."
    else:
        message = "Connected to existing wallet."
    return {
        "id": WALLET_CREATED_ID if is_new else WALLET_FOUND_ID,
        "result": {
            "walletId": wallet_id,
            "address": address,
            "isNew": is_new,
            "message": message,
        },
        "jsonrpc": JSONRPC_VERSION,
    }


def error_notification(error: str) -> Dict[str, Any]:
    return error_envelope(ERROR_ID, error)
