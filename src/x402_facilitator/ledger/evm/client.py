"""
EVM Ledger Client

web3-backed implementation of ``LedgerClient`` for ERC-3009 tokens.

Key Features:
    - Off-chain EIP-712 signature recovery with ERC-1271 fallback
    - ERC-20 ``balanceOf`` queries
    - ``transferWithAuthorization`` submission signed by the facilitator account

Submission returns as soon as the node accepts the raw transaction
(``eth_sendRawTransaction`` acknowledgement); receipts are not awaited.

Dependencies:
    - web3.py: For blockchain RPC interaction
    - eth_account: For signature recovery and transaction signing
"""

import asyncio
import logging
from typing import Dict, Optional

from eth_account import Account
from eth_utils import to_hex
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, Web3Exception

from ...engine.exceptions import (
    LedgerUnavailableError,
    SettlementFailure,
    SettlementRejectedError,
)
from ...schemas.messages import ExactAuthorization
from ..bases import AuthorizationDomain, LedgerClient
from ..networks import NetworkRegistry
from .signatures import EVMECDSASignature
from .standards import get_balance_abi, get_erc3009_abi
from .verifies import recover_authorization_signer, verify_authorization_signature

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (Web3Exception, OSError, asyncio.TimeoutError)


class EVMLedgerClient(LedgerClient):
    """
    EVM ledger client.

    Web3 instances are created lazily per network and cached. RPC endpoints
    come from the ``NetworkRegistry`` (which applies configured overrides).

    Attributes:
        account: Settlement account, or None for a verify-only client
        wallet_address: Checksummed settlement address, or None

    Example:
        client = EVMLedgerClient(NetworkRegistry.default(), private_key="0x...")
        ok = await client.verify_signature(authorization, signature, domain)
        tx = await client.submit(authorization, signature, domain)
    """

    def __init__(
        self,
        registry: NetworkRegistry,
        private_key: Optional[str] = None,
        request_timeout: int = 60,
        use_erc1271: bool = True,
        gas_multiplier: float = 1.1,
    ) -> None:
        """
        Args:
            registry: Network registry used to resolve RPC endpoints
            private_key: Settlement account key; submission is rejected without one
            request_timeout: HTTP timeout for RPC calls, in seconds
            use_erc1271: Fall back to on-chain ERC-1271 checks for contract wallets
            gas_multiplier: Safety factor applied to gas estimates
        """
        self.registry = registry
        self._request_timeout = request_timeout
        self._use_erc1271 = use_erc1271
        self._gas_multiplier = gas_multiplier
        self._web3: Dict[str, AsyncWeb3] = {}

        self.account = Account.from_key(private_key) if private_key else None
        self.wallet_address = (
            AsyncWeb3.to_checksum_address(self.account.address) if self.account else None
        )

    def _get_web3_instance(self, network: str) -> AsyncWeb3:
        """Return the cached AsyncWeb3 instance for ``network``, creating it on first use."""
        w3 = self._web3.get(network)
        if w3 is None:
            rpc_url = self.registry.rpc_url(network)
            w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": self._request_timeout},
            ))
            self._web3[network] = w3
        return w3

    async def verify_signature(
        self,
        authorization: ExactAuthorization,
        signature: str,
        domain: AuthorizationDomain,
    ) -> bool:
        recovered = recover_authorization_signer(authorization, signature, domain)
        if recovered is not None and recovered.lower() == authorization.from_.lower():
            return True
        if not self._use_erc1271:
            return False
        # RPC is only needed for the ERC-1271 fallback
        w3 = self._get_web3_instance(domain.network)
        return await verify_authorization_signature(authorization, signature, domain, w3=w3)

    async def check_balance(self, address: str, asset: str, network: str) -> int:
        w3 = self._get_web3_instance(network)
        try:
            contract = w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(asset),
                abi=get_balance_abi(),
            )
            balance = await contract.functions.balanceOf(AsyncWeb3.to_checksum_address(address)).call()
        except _TRANSPORT_ERRORS as exc:
            raise LedgerUnavailableError(f"Balance query failed on {network}: {exc}") from exc
        return int(balance)

    async def submit(
        self,
        authorization: ExactAuthorization,
        signature: str,
        domain: AuthorizationDomain,
    ) -> str:
        if self.account is None:
            raise SettlementRejectedError("No settlement account configured")

        w3 = self._get_web3_instance(domain.network)
        raw_transaction = await self._construct_erc3009_transaction(authorization, signature, domain, w3)

        try:
            tx_hash = await w3.eth.send_raw_transaction(raw_transaction)
        except ContractLogicError as exc:
            raise SettlementRejectedError(f"Transaction rejected: {exc}") from exc
        except Web3Exception as exc:
            raise SettlementFailure(f"Failed to broadcast transaction: {exc}") from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise LedgerUnavailableError(f"Failed to reach {domain.network}: {exc}") from exc

        tx_ref = to_hex(tx_hash)
        logger.info("Submitted transferWithAuthorization %s on %s", tx_ref, domain.network)
        return tx_ref

    async def _construct_erc3009_transaction(
        self,
        authorization: ExactAuthorization,
        signature: str,
        domain: AuthorizationDomain,
        w3: AsyncWeb3,
    ) -> bytes:
        """
        Build and sign a ``transferWithAuthorization`` transaction (ERC-3009).

        Calls ``transferWithAuthorization(from, to, value, validAfter,
        validBefore, nonce, v, r, s)`` on the token contract.

        Returns:
            bytes: Signed raw transaction.

        Raises:
            SettlementRejectedError: If the call reverts during gas estimation
                or the signature cannot be split.
            LedgerUnavailableError: If the node cannot be reached.
        """
        try:
            sig = EVMECDSASignature.from_packed_hex(signature)
        except ValueError as exc:
            raise SettlementRejectedError(str(exc)) from exc

        nonce_hex = authorization.nonce[2:] if authorization.nonce.startswith("0x") else authorization.nonce
        try:
            nonce_bytes = bytes.fromhex(nonce_hex.zfill(64))
        except ValueError as exc:
            raise SettlementRejectedError(f"Nonce is not bytes32 hex: {authorization.nonce}") from exc

        try:
            contract = w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(domain.verifying_contract),
                abi=get_erc3009_abi(),
            )
            tx_fn = contract.functions.transferWithAuthorization(
                AsyncWeb3.to_checksum_address(authorization.from_),
                AsyncWeb3.to_checksum_address(authorization.to),
                authorization.amount,
                authorization.valid_after_ts,
                authorization.valid_before_ts,
                nonce_bytes,
                sig.v,
                bytes.fromhex(sig.r[2:]),
                bytes.fromhex(sig.s[2:]),
            )
        except ValueError as exc:
            raise SettlementRejectedError(f"Malformed authorization: {exc}") from exc

        try:
            gas_estimate = await tx_fn.estimate_gas({"from": self.wallet_address})
            gas_price = await w3.eth.gas_price
            tx_nonce = await w3.eth.get_transaction_count(self.wallet_address, "pending")
            tx_dict = await tx_fn.build_transaction({
                "from": self.wallet_address,
                "gas": int(gas_estimate * self._gas_multiplier),
                "gasPrice": gas_price,
                "nonce": tx_nonce,
                "chainId": domain.chain_id,
            })
        except ContractLogicError as exc:
            raise SettlementRejectedError(f"transferWithAuthorization would revert: {exc}") from exc
        except _TRANSPORT_ERRORS as exc:
            raise LedgerUnavailableError(f"Failed to prepare transaction on {domain.network}: {exc}") from exc

        signed_tx = self.account.sign_transaction(tx_dict)
        return signed_tx.raw_transaction
