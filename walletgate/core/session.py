"""
Per-connection session state and the registry that owns it.

A session moves through two states and never back:

    AWAITING_WALLET --(wallet resolved)--> READY

The registry is the only place sessions are inserted, transitioned, or
removed; every mutation happens under its lock so concurrent connections see
a consistent table.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from starlette.websockets import WebSocketDisconnect

from .credentials import AuthorizationSigner


logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Base exception for session state errors."""
    pass


class SessionNotReadyError(SessionError):
    """Session has no resolved wallet yet."""
    pass


class InvalidTransitionError(SessionError):
    """Requested state change is not allowed from the current state."""

    def __init__(self, from_state: "SessionState", to_state: "SessionState"):
        super().__init__(f"Invalid session transition: {from_state.value} -> {to_state.value}")
        self.from_state = from_state
        self.to_state = to_state


class ResolutionInProgressError(SessionError):
    """Wallet resolution was already started for this session."""
    pass


class SessionState(str, Enum):
    AWAITING_WALLET = "awaiting_wallet"
    READY = "ready"


@dataclass
class Session:
    """Server-side state bound to one open connection."""
    connection: Any
    identity: str
    signer: AuthorizationSigner
    connection_id: str = ""
    state: SessionState = SessionState.AWAITING_WALLET
    wallet_id: Optional[str] = None
    wallet_address: Optional[str] = None
    resolution_started: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    TRANSITIONS = {
        SessionState.AWAITING_WALLET: {SessionState.READY},
        SessionState.READY: set(),
    }

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY

    def can_transition_to(self, state: SessionState) -> bool:
        return state in self.TRANSITIONS.get(self.state, set())

    def require_ready(self) -> str:
        """Return the resolved wallet id or raise SessionNotReadyError."""
        if not self.is_ready or not self.wallet_id:
            raise SessionNotReadyError("Session not initialized")
        return self.wallet_id

    async def send(self, envelope: Dict[str, Any]) -> bool:
        """
        Push one JSON envelope to the client.

        Sends are serialized per connection. Returns False when the channel is
        already gone; the envelope is dropped.
        """
        async with self._send_lock:
            try:
                await self.connection.send_json(envelope)
                return True
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.info(f"Dropping envelope {envelope.get('id')!r} for closed connection {self.connection_id}: {e}")
                return False


class SessionRegistry:
    """
    Process-wide table of live sessions keyed by connection handle.

    Sessions exist only in memory and only while their connection is open.
    """

    def __init__(self) -> None:
        self._sessions: Dict[Any, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, handle: Any) -> bool:
        return handle in self._sessions

    def get(self, handle: Any) -> Optional[Session]:
        return self._sessions.get(handle)

    def is_live(self, session: Session) -> bool:
        """True while `session` is still the registered session for its connection."""
        return self._sessions.get(session.connection) is session

    async def register(self, session: Session) -> Session:
        async with self._lock:
            if session.connection in self._sessions:
                raise SessionError(f"Connection {session.connection_id} already has a session")
            self._sessions[session.connection] = session
        logger.debug(f"Registered session {session.connection_id} for {session.identity}")
        return session

    async def begin_resolution(self, session: Session) -> None:
        """Mark wallet resolution as started; at most once per session."""
        async with self._lock:
            if session.resolution_started:
                raise ResolutionInProgressError(
                    f"Wallet resolution already started for session {session.connection_id}"
                )
            session.resolution_started = True

    async def mark_ready(self, session: Session, wallet_id: str, address: str) -> bool:
        """
        Record the resolved wallet and move the session to READY.

        Returns False when the session was removed in the meantime; the
        result is then discarded.
        """
        async with self._lock:
            if self._sessions.get(session.connection) is not session:
                return False
            if not session.can_transition_to(SessionState.READY):
                raise InvalidTransitionError(session.state, SessionState.READY)
            session.wallet_id = wallet_id
            session.wallet_address = address
            session.state = SessionState.READY
        return True

    async def remove(self, handle: Any) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.pop(handle, None)
        if session is not None:
            logger.debug(f"Removed session {session.connection_id}")
        return session
