from abc import ABC, abstractmethod
from typing import Any, Dict


class Provider(ABC):
    """
    Base interface for external services the gateway calls out to.

    Providers report readiness for `/health` and own any pooled connections,
    which are released by `aclose()` at shutdown.
    """

    name: str
    timeout_s: float = 10

    @abstractmethod
    async def ready(self) -> bool:
        """True when the provider has the configuration it needs to serve calls"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Status summary safe to expose publicly (no secrets)"""
        pass

    async def aclose(self) -> None:
        """Release pooled connections, if any"""
        return None
