"""
Facilitator Configuration

Typed settings for the facilitator, loadable from the environment. ``.env``
files are honoured through python-dotenv before variables are read.

Environment Variables:
    X402_SETTLEMENT_MODE          verify | settle | async (default: settle)
    X402_NONCE_TTL                Nonce record lifetime in seconds (unset: forever)
    X402_NONCE_CLEANUP_INTERVAL   Period of the background nonce eviction task
    X402_CHECK_BALANCE            Run the balance check during verification (default: true)
    X402_EXPIRY_GRACE_SECONDS     Clock-skew tolerance for authorization windows
    X402_QUEUE_MAX_RETRIES        Retries after the first settlement attempt (default: 3)
    X402_QUEUE_RETRY_DELAY        Base retry delay in seconds (default: 1.0)
    X402_QUEUE_BACKOFF            fixed | exponential (default: fixed)
    X402_QUEUE_MAX_RETRY_DELAY    Upper bound for one retry delay (default: 60)
    X402_QUEUE_CONCURRENCY        Parallel settlement workers (default: 4)
    X402_RPC_URLS                 Comma separated ``network=url`` RPC overrides
    X402_RPC_TIMEOUT              RPC request timeout in seconds (default: 60)
    X402_CORS_ORIGINS             Comma separated allowed origins (default: *)
    EVM_PRIVATE_KEY               Settlement account key (0x-prefixed hex)

Example:
    # .env
    # X402_SETTLEMENT_MODE=async
    # X402_RPC_URLS=eip155:84532=https://sepolia.base.org
    # EVM_PRIVATE_KEY=0x...

    config = FacilitatorConfig.from_env()
"""

import os
from typing import Dict, List, Mapping, Optional

import dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .engine.exceptions import ConfigurationError
from .facilitator.queue import BackoffPolicy
from .schemas.bases import SettlementMode
from .schemas.networks import to_caip2

ENV_PREFIX = "X402_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got '{value}'")


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_rpc_urls(name: str, value: str) -> Dict[str, str]:
    """Parse ``network=url`` pairs separated by commas."""
    urls: Dict[str, str] = {}
    for item in _parse_list(value):
        network, sep, url = item.partition("=")
        if not sep or not network.strip() or not url.strip():
            raise ConfigurationError(f"{name} entries must look like 'network=url', got '{item}'")
        urls[network.strip()] = url.strip()
    return urls


class FacilitatorConfig(BaseModel):
    """
    Facilitator settings.

    Attributes:
        settlement_mode: How ``handle_payment`` proceeds after verification
        nonce_ttl_seconds: Nonce record lifetime, None to keep records forever
        nonce_cleanup_interval: Period of the background nonce eviction task
        check_balance: Whether verification queries the payer's balance
        expiry_grace_seconds: Clock-skew tolerance for authorization windows
        queue_max_retries: Retries after the first settlement attempt
        queue_retry_delay: Base retry delay in seconds
        queue_backoff: Delay growth policy
        queue_max_retry_delay: Upper bound for one retry delay
        queue_concurrency: Parallel settlement workers
        rpc_urls: RPC endpoint overrides keyed by CAIP-2 network
        rpc_timeout: RPC request timeout in seconds
        private_key: Settlement account key; verification-only without one
        cors_origins: Origins allowed by the HTTP server's CORS policy
    """

    settlement_mode: SettlementMode = Field(default=SettlementMode.SETTLE)
    nonce_ttl_seconds: Optional[float] = Field(default=None, gt=0)
    nonce_cleanup_interval: Optional[float] = Field(default=None, gt=0)
    check_balance: bool = Field(default=True)
    expiry_grace_seconds: int = Field(default=0, ge=0)
    queue_max_retries: int = Field(default=3, ge=0)
    queue_retry_delay: float = Field(default=1.0, ge=0)
    queue_backoff: BackoffPolicy = Field(default=BackoffPolicy.FIXED)
    queue_max_retry_delay: float = Field(default=60.0, ge=0)
    queue_concurrency: int = Field(default=4, ge=1)
    rpc_urls: Dict[str, str] = Field(default_factory=dict)
    rpc_timeout: int = Field(default=60, gt=0)
    private_key: Optional[str] = Field(default=None, repr=False)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @field_validator("rpc_urls")
    @classmethod
    def normalize_networks(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {to_caip2(network): url for network, url in v.items()}

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, load_dotenv: bool = True) -> "FacilitatorConfig":
        """
        Build a configuration from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``
            load_dotenv: Load a ``.env`` file into the process environment first

        Returns:
            FacilitatorConfig: Settings with unset variables left at their defaults.

        Raises:
            ConfigurationError: If a variable is malformed.
        """
        if load_dotenv:
            dotenv.load_dotenv()
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        values: Dict[str, object] = {}
        scalar_fields = {
            "SETTLEMENT_MODE": "settlement_mode",
            "NONCE_TTL": "nonce_ttl_seconds",
            "NONCE_CLEANUP_INTERVAL": "nonce_cleanup_interval",
            "EXPIRY_GRACE_SECONDS": "expiry_grace_seconds",
            "QUEUE_MAX_RETRIES": "queue_max_retries",
            "QUEUE_RETRY_DELAY": "queue_retry_delay",
            "QUEUE_BACKOFF": "queue_backoff",
            "QUEUE_MAX_RETRY_DELAY": "queue_max_retry_delay",
            "QUEUE_CONCURRENCY": "queue_concurrency",
            "RPC_TIMEOUT": "rpc_timeout",
        }
        for name, field in scalar_fields.items():
            value = get(name)
            if value is not None:
                values[field] = value.strip().lower() if field in ("settlement_mode", "queue_backoff") else value

        check_balance = get("CHECK_BALANCE")
        if check_balance is not None:
            values["check_balance"] = _parse_bool(ENV_PREFIX + "CHECK_BALANCE", check_balance)

        rpc_urls = get("RPC_URLS")
        if rpc_urls is not None:
            values["rpc_urls"] = _parse_rpc_urls(ENV_PREFIX + "RPC_URLS", rpc_urls)

        cors_origins = get("CORS_ORIGINS")
        if cors_origins is not None:
            values["cors_origins"] = _parse_list(cors_origins)

        private_key = env.get("EVM_PRIVATE_KEY")
        if private_key:
            values["private_key"] = private_key

        try:
            return cls(**values)
        except (ValidationError, ValueError) as exc:
            raise ConfigurationError(f"Invalid facilitator configuration: {exc}") from exc
