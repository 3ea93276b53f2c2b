"""
Wallet resolution: find the identity's canonical wallet or create one.

Runs once per session, in the background, while the connection is already
usable. The outcome is pushed to the client as a notification.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from walletgate.config import settings
from walletgate.providers.custody import CustodyError, CustodyProvider, CustodyWallet

from .credentials import CredentialStrategy
from .protocol import error_notification, wallet_envelope
from .session import Session, SessionRegistry


logger = logging.getLogger(__name__)


@dataclass
class ResolutionResult:
    wallet_id: str
    address: str
    is_new: bool
    claimed: bool = False


class WalletResolver:
    """
    Ensures exactly one canonical wallet per (identity, chain type).

    An existing linked wallet is always reused. If it has no owner yet it is
    claimed for the identity; first claim wins. Only when the identity has no
    wallet on the chain is a new one created.
    """

    def __init__(
        self,
        custody: CustodyProvider,
        credentials: CredentialStrategy,
        registry: SessionRegistry,
        chain_type: Optional[str] = None,
    ):
        self.custody = custody
        self.credentials = credentials
        self.registry = registry
        self.chain_type = chain_type or settings.chain_type

    async def resolve(self, session: Session) -> Optional[ResolutionResult]:
        """
        Resolve the session's wallet and notify the client.

        Upstream failures are reported on the session channel and leave the
        session waiting for a wallet. Returns None in that case, and when the
        session closed before resolution finished.
        """
        await self.registry.begin_resolution(session)

        try:
            result = await self._find_or_create(session)
        except CustodyError as e:
            logger.error(f"Wallet resolution failed for {session.identity}: {e}")
            if self.registry.is_live(session):
                await session.send(error_notification(f"Wallet resolution failed: {e}"))
            return None

        if not await self.registry.mark_ready(session, result.wallet_id, result.address):
            logger.info(
                f"Session {session.connection_id} closed before wallet {result.wallet_id} was resolved; dropping"
            )
            return None

        logger.info(
            f"Resolved wallet {result.wallet_id} for {session.identity} "
            f"(new={result.is_new}, claimed={result.claimed})"
        )
        await session.send(wallet_envelope(result.wallet_id, result.address, result.is_new))
        return result

    async def _find_or_create(self, session: Session) -> ResolutionResult:
        wallets = await self.custody.find_wallets(session.identity, self.chain_type)
        if wallets:
            wallet = wallets[0]
            if len(wallets) > 1:
                logger.warning(
                    f"{session.identity} has {len(wallets)} {self.chain_type} wallets; using {wallet.wallet_id}"
                )
            claimed = await self._claim_if_unowned(session, wallet)
            return ResolutionResult(
                wallet_id=wallet.wallet_id,
                address=wallet.address,
                is_new=False,
                claimed=claimed,
            )

        owner = self.credentials.wallet_owner(session.identity, session.signer)
        wallet = await self.custody.create_wallet(self.chain_type, owner)
        return ResolutionResult(wallet_id=wallet.wallet_id, address=wallet.address, is_new=True)

    async def _claim_if_unowned(self, session: Session, wallet: CustodyWallet) -> bool:
        """Bind an unowned wallet to the session identity. Returns True if a claim was issued."""
        owner_id = wallet.owner_id
        if not wallet.owner_known:
            try:
                owner_id = (await self.custody.get_wallet(wallet.wallet_id)).owner_id
            except CustodyError as e:
                logger.warning(f"Could not fetch details of wallet {wallet.wallet_id}; skipping claim: {e}")
                return False

        if owner_id is not None:
            return False

        # No mutual exclusion with other sessions claiming the same wallet.
        await self.custody.update_wallet_owner(wallet.wallet_id, {"user_id": session.identity})
        return True
