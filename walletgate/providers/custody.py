"""
Custody Service Provider.

HTTP client for the custodial wallet service that holds key material and
executes signing operations on request.

Features:
- Linked-account lookup for a user
- Wallet creation and owner claim
- Wallet RPC (personal_sign) carrying a per-call authorization signature

Every call carries the deployment's static application credentials
(Basic auth over app id + secret, plus the app id header).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .base import Provider
from ..config import settings

logger = logging.getLogger(__name__)

APP_ID_HEADER = "privy-app-id"
AUTHORIZATION_SIGNATURE_HEADER = "privy-authorization-signature"


class CustodyError(Exception):
    """Custody service returned a non-success status or an unusable payload."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CustodyNotConfiguredError(CustodyError):
    """Application credentials for the custody service are missing."""
    pass


@dataclass
class CustodyConfig:
    base_url: str
    app_id: str
    app_secret: str


@dataclass
class CustodyWallet:
    """A wallet record owned by the custody service."""
    wallet_id: str
    address: str
    chain_type: Optional[str] = None
    owner_id: Optional[str] = None
    # False when the payload did not say anything about ownership
    owner_known: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CustodyWallet":
        return cls(
            wallet_id=data.get("id") or data.get("wallet_id") or "",
            address=data.get("address") or "",
            chain_type=data.get("chain_type"),
            owner_id=data.get("owner_id"),
            owner_known="owner_id" in data,
        )


class CustodyProvider(Provider):
    """
    Provider for custodial wallet operations.

    Usage:
        provider = get_custody_provider()

        wallets = await provider.find_wallets("did:privy:abc", chain_type="ethereum")
        if not wallets:
            wallet = await provider.create_wallet("ethereum", {"user_id": "did:privy:abc"})

        result = await provider.wallet_rpc(
            wallet.wallet_id,
            {"method": "personal_sign", "params": {"message": "hi", "encoding": "utf-8"}},
            authorization_signature=signature,
        )
    """

    name = "custody"
    timeout_s = 30

    def __init__(
        self,
        config: Optional[CustodyConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_s: Optional[float] = None,
    ) -> None:
        self._config = config or CustodyConfig(
            base_url=settings.custody_base_url,
            app_id=settings.custody_app_id,
            app_secret=settings.custody_app_secret,
        )
        self._transport = transport
        if timeout_s is not None:
            self.timeout_s = timeout_s
        else:
            self.timeout_s = settings.custody_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def app_id(self) -> str:
        return self._config.app_id

    async def ready(self) -> bool:
        return bool(self._config.base_url and self._config.app_id and self._config.app_secret)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Custody service not configured"}
        return {"status": "configured", "base_url": self._config.base_url}

    def url_for(self, path: str) -> str:
        """Absolute URL for a custody API path."""
        return f"{self._config.base_url.rstrip('/')}{path}"

    # =========================================================================
    # Users
    # =========================================================================

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        """Fetch a user with their linked accounts."""
        result = await self._request("GET", f"/users/{quote(user_id, safe='')}")
        if not isinstance(result, dict):
            raise CustodyError("Invalid custody response for user lookup")
        return result

    async def find_wallets(self, user_id: str, chain_type: str) -> List[CustodyWallet]:
        """Linked wallets of a user on one chain family, in the order the service lists them."""
        user = await self.get_user(user_id)
        accounts = user.get("linked_accounts") or []
        wallets: List[CustodyWallet] = []
        for account in accounts:
            if not isinstance(account, dict):
                continue
            if account.get("type") != "wallet" or account.get("chain_type") != chain_type:
                continue
            wallet = CustodyWallet.from_api(account)
            if wallet.wallet_id and wallet.address:
                wallets.append(wallet)
        return wallets

    # =========================================================================
    # Wallets
    # =========================================================================

    async def get_wallet(self, wallet_id: str) -> CustodyWallet:
        """Fetch wallet details, including its current owner."""
        result = await self._request("GET", f"/wallets/{wallet_id}")
        if not isinstance(result, dict):
            raise CustodyError("Invalid custody response for wallet details")
        return CustodyWallet.from_api(result)

    async def create_wallet(self, chain_type: str, owner: Dict[str, Any]) -> CustodyWallet:
        """Create a new wallet on `chain_type` owned by `owner`."""
        payload = {"chain_type": chain_type, "owner": owner}
        logger.info(f"Creating {chain_type} wallet with owner type {', '.join(owner)}")
        result = await self._request("POST", "/wallets", json=payload)
        if not isinstance(result, dict) or not result.get("id") or not result.get("address"):
            raise CustodyError("Invalid custody response for wallet creation")
        return CustodyWallet.from_api(result)

    async def update_wallet_owner(self, wallet_id: str, owner: Dict[str, Any]) -> Dict[str, Any]:
        """Claim an unowned wallet for `owner`."""
        logger.info(f"Setting owner of wallet {wallet_id}")
        result = await self._request("PATCH", f"/wallets/{wallet_id}", json={"owner": owner})
        return result if isinstance(result, dict) else {}

    async def wallet_rpc(
        self,
        wallet_id: str,
        body: Dict[str, Any],
        authorization_signature: str,
    ) -> Dict[str, Any]:
        """Execute a wallet RPC authorized by a per-call signature."""
        result = await self._request(
            "POST",
            self.rpc_path(wallet_id),
            json=body,
            headers={AUTHORIZATION_SIGNATURE_HEADER: authorization_signature},
        )
        if not isinstance(result, dict):
            raise CustodyError("Invalid custody response for wallet rpc")
        return result

    @staticmethod
    def rpc_path(wallet_id: str) -> str:
        return f"/wallets/{wallet_id}/rpc"

    # =========================================================================
    # HTTP Client
    # =========================================================================

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        if not await self.ready():
            raise CustodyNotConfiguredError("Custody service is not configured")

        if not self._client or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_s,
                auth=httpx.BasicAuth(self._config.app_id, self._config.app_secret),
                headers={APP_ID_HEADER: self._config.app_id},
                transport=self._transport,
            )

        url = self.url_for(path)
        try:
            response = await self._client.request(method, url, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise CustodyError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            logger.warning(f"Custody {method} {path} returned {response.status_code}")
            raise CustodyError(
                f"{method} {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise CustodyError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
                body=response.text,
            ) from e


_custody_provider: Optional[CustodyProvider] = None


def get_custody_provider() -> CustodyProvider:
    global _custody_provider
    if _custody_provider is None:
        _custody_provider = CustodyProvider()
    return _custody_provider
