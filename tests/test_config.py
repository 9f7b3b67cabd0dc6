"""
Test suite for FacilitatorConfig environment loading.
"""
import pytest

from x402_facilitator.config import FacilitatorConfig
from x402_facilitator.engine.exceptions import ConfigurationError
from x402_facilitator.facilitator import BackoffPolicy, Facilitator
from x402_facilitator.ledger.networks import NetworkRegistry
from x402_facilitator.schemas.bases import SettlementMode
from x402_facilitator.servers import FacilitatorServer
from x402_facilitator.servers.apps import create_app


def load(**environ):
    return FacilitatorConfig.from_env(environ=environ, load_dotenv=False)


class TestFromEnv:

    def test_defaults(self):
        config = load()

        assert config.settlement_mode == SettlementMode.SETTLE
        assert config.nonce_ttl_seconds is None
        assert config.check_balance is True
        assert config.queue_max_retries == 3
        assert config.queue_backoff == BackoffPolicy.FIXED
        assert config.cors_origins == ["*"]
        assert config.private_key is None

    def test_values_parsed(self):
        config = load(
            X402_SETTLEMENT_MODE="ASYNC",
            X402_NONCE_TTL="600",
            X402_CHECK_BALANCE="off",
            X402_EXPIRY_GRACE_SECONDS="5",
            X402_QUEUE_MAX_RETRIES="0",
            X402_QUEUE_BACKOFF="exponential",
            X402_QUEUE_CONCURRENCY="2",
            X402_CORS_ORIGINS="https://a.example, https://b.example",
            EVM_PRIVATE_KEY="0x" + "42" * 32,
        )

        assert config.settlement_mode == SettlementMode.ASYNC
        assert config.nonce_ttl_seconds == 600
        assert config.check_balance is False
        assert config.expiry_grace_seconds == 5
        assert config.queue_max_retries == 0
        assert config.queue_backoff == BackoffPolicy.EXPONENTIAL
        assert config.queue_concurrency == 2
        assert config.cors_origins == ["https://a.example", "https://b.example"]
        assert config.private_key == "0x" + "42" * 32

    def test_empty_values_are_ignored(self):
        assert load(X402_NONCE_TTL="", X402_SETTLEMENT_MODE="").nonce_ttl_seconds is None

    def test_rpc_urls_keyed_by_caip2(self):
        config = load(X402_RPC_URLS="base-sepolia=http://localhost:8545, eip155:8453=https://rpc.example")

        assert config.rpc_urls == {
            "eip155:84532": "http://localhost:8545",
            "eip155:8453": "https://rpc.example",
        }

    def test_private_key_hidden_from_repr(self):
        assert "42" * 32 not in repr(load(EVM_PRIVATE_KEY="0x" + "42" * 32))

    @pytest.mark.parametrize("environ", [
        {"X402_SETTLEMENT_MODE": "eventually"},
        {"X402_CHECK_BALANCE": "maybe"},
        {"X402_NONCE_TTL": "-1"},
        {"X402_QUEUE_CONCURRENCY": "0"},
        {"X402_QUEUE_RETRY_DELAY": "soon"},
        {"X402_RPC_URLS": "http://localhost:8545"},
    ])
    def test_malformed_values_rejected(self, environ):
        with pytest.raises(ConfigurationError):
            load(**environ)


class TestFromConfig:

    def test_default_registry_tokens_carry_symbols(self):
        registry = NetworkRegistry.default()

        token = registry.find_token("eip155:84532", "0x036CbD53842c5426634e7929541eC2318f3dCF7e")
        assert token.symbol == "USDC"
        assert all(
            symbol == asset.symbol
            for network in registry.supported()
            for symbol, asset in network.assets.items()
        )

    def test_facilitator_and_app_built_from_environment(self):
        config = load(X402_RPC_URLS="base-sepolia=http://localhost:8545")

        facilitator = Facilitator.from_config(config)
        server = create_app(config)

        assert facilitator.registry.rpc_url("eip155:84532") == "http://localhost:8545"
        assert isinstance(server, FacilitatorServer)
        assert server.facilitator.registry.has_network("base")
