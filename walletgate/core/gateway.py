"""
Session gateway: owns every websocket connection from upgrade to close.

Per connection:

1. Reject requests without a token (401).
2. Verify the token. By default this happens before the upgrade is
   accepted, so a bad token never opens a channel. In pipelined mode the
   upgrade is accepted first and a failed verification is reported on the
   channel before it is closed.
3. Register a session, send the welcome envelope, then start wallet
   resolution in the background.
4. Relay each inbound message concurrently until the client goes away.
5. Remove the session, whatever phase it was in.
"""

import asyncio
import uuid
from typing import Any, Coroutine, Optional, Set

import structlog
from starlette.responses import PlainTextResponse
from starlette.websockets import WebSocket, WebSocketDisconnect

from walletgate.auth import AuthError, IdentityVerifier, get_identity_verifier
from walletgate.config import settings
from walletgate.providers.custody import CustodyProvider, get_custody_provider

from .credentials import CredentialStrategy, get_credential_strategy
from .protocol import (
    ProtocolError,
    error_envelope,
    error_notification,
    parse_request,
    welcome_envelope,
)
from .relay import SigningRelay
from .resolver import WalletResolver
from .session import Session, SessionRegistry


logger = structlog.stdlib.get_logger("gateway")

POLICY_VIOLATION = 1008


class SessionGateway:
    """
    Binds one connection to one verified identity and one resolved wallet.

    The registry, resolver and relay are shared by all connections served by
    this gateway.
    """

    def __init__(
        self,
        verifier: IdentityVerifier,
        custody: CustodyProvider,
        credentials: CredentialStrategy,
        registry: Optional[SessionRegistry] = None,
        chain_type: Optional[str] = None,
        verify_before_accept: Optional[bool] = None,
    ):
        self.verifier = verifier
        self.custody = custody
        self.credentials = credentials
        self.registry = registry or SessionRegistry()
        self.resolver = WalletResolver(custody, credentials, self.registry, chain_type=chain_type)
        self.relay = SigningRelay(custody)
        if verify_before_accept is None:
            verify_before_accept = settings.verify_before_accept
        self.verify_before_accept = verify_before_accept
        self._inflight: Set[asyncio.Task] = set()

    @property
    def active_sessions(self) -> int:
        return len(self.registry)

    async def serve(self, websocket: WebSocket, token: Optional[str]) -> None:
        connection_id = uuid.uuid4().hex[:12]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(connection_id=connection_id)

        if not token:
            logger.info("connection_rejected", reason="missing_token")
            await self._deny(websocket, 401, "Token required")
            return

        if self.verify_before_accept:
            try:
                identity = await self.verifier.verify(token)
            except AuthError as e:
                logger.info("connection_rejected", reason="invalid_token", error=str(e))
                await self._deny(websocket, 401, str(e))
                return
            await websocket.accept()
        else:
            await websocket.accept()
            try:
                identity = await self.verifier.verify(token)
            except AuthError as e:
                logger.info("connection_rejected", reason="invalid_token", error=str(e), pipelined=True)
                await websocket.send_json(error_notification(f"Authentication failed: {e}"))
                await websocket.close(code=POLICY_VIOLATION)
                return

        session = Session(
            connection=websocket,
            identity=identity.user_id,
            signer=self.credentials.signer_for_session(),
            connection_id=connection_id,
        )
        await self.registry.register(session)
        structlog.contextvars.bind_contextvars(user_id=identity.user_id)
        logger.info("session_opened", credential_mode=self.credentials.mode)

        try:
            await session.send(welcome_envelope(identity.user_id))
            self._spawn(self._resolve(session))
            await self._receive_loop(session)
        finally:
            await self.registry.remove(websocket)
            logger.info("session_closed", state=session.state.value, wallet_id=session.wallet_id)

    async def _receive_loop(self, session: Session) -> None:
        websocket = session.connection
        while True:
            try:
                message = await websocket.receive()
            except WebSocketDisconnect:
                return
            except Exception:
                logger.exception("connection_error")
                return

            if message["type"] == "websocket.disconnect":
                return

            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            if raw is None:
                continue
            self._spawn(self._dispatch(session, raw))

    async def _dispatch(self, session: Session, raw: str) -> None:
        request_id: Any = None
        try:
            request = parse_request(raw)
            request_id = request.id
            response = await self.relay.handle_request(session, request)
        except ProtocolError as e:
            response = error_envelope(request_id, str(e))
        except Exception as e:
            logger.exception("message_handler_error", request_id=request_id)
            response = error_envelope(request_id, f"Internal server error: {e}")

        if not self.registry.is_live(session):
            logger.info("response_dropped", request_id=request_id)
            return
        await session.send(response)

    async def _resolve(self, session: Session) -> None:
        try:
            await self.resolver.resolve(session)
        except Exception as e:
            logger.exception("wallet_resolution_error")
            if self.registry.is_live(session):
                await session.send(error_notification(f"Wallet resolution error: {e}"))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _deny(self, websocket: WebSocket, status_code: int, detail: str) -> None:
        try:
            await websocket.send_denial_response(PlainTextResponse(detail, status_code=status_code))
        except RuntimeError:
            # Server lacks the websocket denial extension; closing before
            # accept yields a plain 403 instead.
            await websocket.close(code=POLICY_VIOLATION)

    async def drain(self) -> None:
        """Wait for background resolutions and relays still in flight."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)


_session_gateway: Optional[SessionGateway] = None


def get_session_gateway() -> SessionGateway:
    """Get the process-wide gateway, wiring the default collaborators on first use."""
    global _session_gateway
    if _session_gateway is None:
        _session_gateway = SessionGateway(
            verifier=get_identity_verifier(),
            custody=get_custody_provider(),
            credentials=get_credential_strategy(),
        )
    return _session_gateway
