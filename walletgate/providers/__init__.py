from .base import Provider
from .custody import (
    CustodyConfig,
    CustodyError,
    CustodyNotConfiguredError,
    CustodyProvider,
    CustodyWallet,
    get_custody_provider,
)

__all__ = [
    "Provider",
    "CustodyConfig",
    "CustodyError",
    "CustodyNotConfiguredError",
    "CustodyProvider",
    "CustodyWallet",
    "get_custody_provider",
]
