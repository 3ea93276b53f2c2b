"""
Websocket endpoint for the session protocol.

    ws(s)://<host>/ws?token=<identity token>

Plain HTTP requests to the same path are not upgrades and get 400.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket
from fastapi.responses import PlainTextResponse

from ..core.gateway import SessionGateway, get_session_gateway

router = APIRouter()


@router.get("/ws", response_class=PlainTextResponse, status_code=400)
@router.get("/ws/", response_class=PlainTextResponse, status_code=400, include_in_schema=False)
async def expected_websocket() -> PlainTextResponse:
    """Reject non-upgrade requests to the websocket endpoint."""
    return PlainTextResponse("Expected websocket", status_code=400)


@router.websocket("/ws")
@router.websocket("/ws/")
async def session_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(default=None),
    gateway: SessionGateway = Depends(get_session_gateway),
):
    await gateway.serve(websocket, token)
