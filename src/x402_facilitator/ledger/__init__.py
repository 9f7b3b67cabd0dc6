from .bases import AuthorizationDomain, LedgerClient
from .networks import NetworkConfig, NetworkRegistry, TokenConfig

__all__ = [
    "AuthorizationDomain",
    "LedgerClient",
    "NetworkConfig",
    "NetworkRegistry",
    "TokenConfig",
]
