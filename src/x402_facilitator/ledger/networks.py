"""
Network and Token Registry

Provides an explicit registry of supported EVM networks and ERC-3009 tokens.
A registry is constructed once at startup (``NetworkRegistry.default()``) and
handed to the engines and ledger clients that need it; there is no
process-wide mutable table.

The registry answers three questions for the core:
    - which networks does this facilitator support (``supported``)
    - which RPC endpoint serves a network (``rpc_url``)
    - which EIP-712 domain a token's authorizations are signed under
      (``resolve_domain``)
"""

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from ..engine.exceptions import ConfigurationError
from ..schemas.networks import chain_id_of, to_caip2
from .bases import AuthorizationDomain

_EVM_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")

DEFAULT_DOMAIN_NAME = "USD Coin"
DEFAULT_DOMAIN_VERSION = "2"


class TokenConfig(BaseModel):
    """ERC-3009 token configuration."""
    symbol: str
    address: str = Field(..., description="Token contract address")
    name: str = Field(..., description="EIP-712 domain name")
    version: str = Field(..., description="EIP-712 domain version")
    decimals: int = Field(6, ge=0, description="Token decimals")

    @field_validator("address")
    @classmethod
    def check_address(cls, v: str) -> str:
        if not _EVM_ADDRESS.match(v):
            raise ValueError(f"Invalid EVM token address: '{v}'")
        return v


class NetworkConfig(BaseModel):
    """EVM network configuration."""
    caip2: str
    chain_id: int = Field(..., gt=0)
    alias: Optional[str] = Field(None, description="Legacy V1 network name")
    name: str = Field(..., description="Human-readable network name")
    rpc_url: Optional[str] = Field(None, description="Default JSON-RPC endpoint")
    explorer_url: Optional[str] = None
    testnet: bool = False
    assets: Dict[str, TokenConfig] = Field(default_factory=dict, description="Supported assets by symbol")


# Built-in chain data. Copied into each registry instance, never mutated.
_EVM_CHAINS_DATA: Mapping[str, Dict[str, Any]] = {
    "eip155:1": {
        "alias": "ethereum",
        "name": "Ethereum Mainnet",
        "rpc_url": "https://eth.llamarpc.com",
        "explorer_url": "https://etherscan.io",
        "assets": {
            "USDC": {"address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "name": "USD Coin", "version": "2", "decimals": 6},
        },
    },
    "eip155:11155111": {
        "alias": "ethereum-sepolia",
        "name": "Ethereum Sepolia",
        "rpc_url": "https://rpc.sepolia.org",
        "explorer_url": "https://sepolia.etherscan.io",
        "testnet": True,
        "assets": {
            "USDC": {"address": "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238", "name": "USDC", "version": "2", "decimals": 6},
        },
    },
    "eip155:8453": {
        "alias": "base",
        "name": "Base Mainnet",
        "rpc_url": "https://mainnet.base.org",
        "explorer_url": "https://basescan.org",
        "assets": {
            "USDC": {"address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", "name": "USD Coin", "version": "2", "decimals": 6},
            "EURC": {"address": "0x60a3E35Cc302bFA44Cb288Bc5a4F316Fdb1adb42", "name": "EURC", "version": "2", "decimals": 6},
        },
    },
    "eip155:84532": {
        "alias": "base-sepolia",
        "name": "Base Sepolia",
        "rpc_url": "https://sepolia.base.org",
        "explorer_url": "https://sepolia.basescan.org",
        "testnet": True,
        "assets": {
            "USDC": {"address": "0x036CbD53842c5426634e7929541eC2318f3dCF7e", "name": "USDC", "version": "2", "decimals": 6},
        },
    },
    "eip155:137": {
        "alias": "polygon",
        "name": "Polygon Mainnet",
        "rpc_url": "https://polygon-rpc.com",
        "explorer_url": "https://polygonscan.com",
        "assets": {
            "USDC": {"address": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359", "name": "USD Coin", "version": "2", "decimals": 6},
        },
    },
    "eip155:42161": {
        "alias": "arbitrum",
        "name": "Arbitrum One",
        "rpc_url": "https://arb1.arbitrum.io/rpc",
        "explorer_url": "https://arbiscan.io",
        "assets": {
            "USDC": {"address": "0xaf88d065e77c8cC2239327C5EDb3A432268e5831", "name": "USD Coin", "version": "2", "decimals": 6},
        },
    },
    "eip155:10": {
        "alias": "optimism",
        "name": "OP Mainnet",
        "rpc_url": "https://mainnet.optimism.io",
        "explorer_url": "https://optimistic.etherscan.io",
        "assets": {
            "USDC": {"address": "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85", "name": "USD Coin", "version": "2", "decimals": 6},
        },
    },
    "eip155:1187947933": {
        "alias": "skale-base",
        "name": "SKALE Base",
        "rpc_url": "https://skale-base.skalenodes.com/v1/base",
        "assets": {
            "USDC": {"address": "0x85889c8c714505E0c94b30fcfcF64fE3Ac8FCb20", "name": "USDC", "version": "2", "decimals": 6},
        },
    },
    "eip155:324705682": {
        "alias": "skale-base-sepolia",
        "name": "SKALE Base Sepolia",
        "rpc_url": "https://base-sepolia-testnet.skalenodes.com/v1/jubilant-horrible-ancha",
        "testnet": True,
        "assets": {
            "USDC": {"address": "0x2e08028E3C4c2356572E096d8EF835cD5C6030bD", "name": "USDC", "version": "2", "decimals": 6},
        },
    },
}


def _token_key(chain_id: int, address: str) -> str:
    return f"{chain_id}:{address.lower()}"


class NetworkRegistry:
    """
    Registry of networks, RPC endpoints and token EIP-712 domains.

    Example:
        registry = NetworkRegistry.default(rpc_overrides={"eip155:84532": "https://..."})
        domain = registry.resolve_domain("eip155:84532", "0x036CbD53842c5426634e7929541eC2318f3dCF7e")
        # AuthorizationDomain(name="USDC", version="2", chain_id=84532, ...)
    """

    def __init__(
        self,
        networks: Optional[Iterable[NetworkConfig]] = None,
        rpc_overrides: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._networks: Dict[str, NetworkConfig] = {}
        self._tokens: Dict[str, TokenConfig] = {}
        self._rpc_overrides: Dict[str, str] = {}

        for config in networks or []:
            self.add_network(config)
        for network, url in (rpc_overrides or {}).items():
            self._rpc_overrides[to_caip2(network)] = url

    @classmethod
    def default(cls, rpc_overrides: Optional[Mapping[str, str]] = None) -> "NetworkRegistry":
        """Build a registry populated with the built-in chain data."""
        configs = []
        for caip2, data in _EVM_CHAINS_DATA.items():
            assets = {symbol: {"symbol": symbol, **token} for symbol, token in data.get("assets", {}).items()}
            configs.append(NetworkConfig(caip2=caip2, chain_id=chain_id_of(caip2), **{**data, "assets": assets}))
        return cls(configs, rpc_overrides=rpc_overrides)

    # ---- networks ----

    def add_network(self, config: NetworkConfig) -> None:
        if chain_id_of(config.caip2) != config.chain_id:
            raise ConfigurationError(f"Chain id {config.chain_id} does not match '{config.caip2}'")
        self._networks[config.caip2] = config
        for token in config.assets.values():
            self._tokens[_token_key(config.chain_id, token.address)] = token

    def has_network(self, network: str) -> bool:
        try:
            return to_caip2(network) in self._networks
        except ValueError:
            return False

    def get_network(self, network: str) -> NetworkConfig:
        """
        Look up a network by CAIP-2 identifier or V1 alias.

        Raises:
            ConfigurationError: If the network is malformed or not registered.
        """
        try:
            caip2 = to_caip2(network)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        config = self._networks.get(caip2)
        if config is None:
            raise ConfigurationError(f"Unsupported network: '{network}'")
        return config

    def supported(self) -> List[NetworkConfig]:
        return list(self._networks.values())

    def rpc_url(self, network: str) -> str:
        """
        Resolve the RPC endpoint for ``network``; overrides win over built-in defaults.

        Raises:
            ConfigurationError: If no endpoint is known.
        """
        try:
            caip2 = to_caip2(network)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        if caip2 in self._rpc_overrides:
            return self._rpc_overrides[caip2]
        url = self.get_network(caip2).rpc_url
        if not url:
            raise ConfigurationError(f"No RPC endpoint configured for '{network}'")
        return url

    # ---- tokens ----

    def register_token(self, network: str, token: TokenConfig) -> TokenConfig:
        """
        Register a custom ERC-3009 token for ``network``.

        Registering a token on a network that is not yet known only records
        the token's domain parameters; it does not add the network.
        """
        chain_id = chain_id_of(network)
        self._tokens[_token_key(chain_id, token.address)] = token
        caip2 = to_caip2(network)
        if caip2 in self._networks:
            self._networks[caip2].assets[token.symbol] = token
        return token

    def find_token(self, network: str, address: str) -> Optional[TokenConfig]:
        try:
            chain_id = chain_id_of(network)
        except ValueError:
            return None
        return self._tokens.get(_token_key(chain_id, address))

    def resolve_domain(
        self,
        network: str,
        asset: str,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> AuthorizationDomain:
        """
        Determine the EIP-712 domain an authorization for ``asset`` is signed under.

        Precedence for name/version: the requirement's ``extra`` values, then
        the registered token, then ``"USD Coin"``/``"2"``.

        Raises:
            ConfigurationError: If ``network`` has no EIP-155 chain reference.
        """
        try:
            chain_id = chain_id_of(network)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        token = self._tokens.get(_token_key(chain_id, asset))
        extra = extra or {}
        name = extra.get("name") or (token.name if token else DEFAULT_DOMAIN_NAME)
        version = extra.get("version") or (token.version if token else DEFAULT_DOMAIN_VERSION)
        return AuthorizationDomain(
            name=str(name),
            version=str(version),
            chain_id=chain_id,
            verifying_contract=asset,
        )
