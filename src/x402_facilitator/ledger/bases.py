"""
Abstract Base Class for Ledger Clients

Defines the capability the facilitator core depends on to reach a ledger:
checking signatures, reading balances and submitting authorization-based
transfers. The core never performs RPC itself; it only calls these methods,
which are the sole suspension points of verification and settlement.

Core Classes:
    - AuthorizationDomain: EIP-712 domain parameters an authorization is signed under
    - LedgerClient: Abstract capability implemented per ledger family

Error contract:
    - Connectivity or RPC failures raise ``LedgerUnavailableError``.
    - ``submit`` raises ``SettlementFailure`` for retryable failures and
      ``SettlementRejectedError`` for permanent ones.
    - ``verify_signature`` returns False for a bad signature; it only raises
      when the ledger cannot be consulted.
"""

from abc import ABC, abstractmethod

from pydantic import ConfigDict, Field

from ..schemas.bases import CanonicalModel
from ..schemas.messages import ExactAuthorization


class AuthorizationDomain(CanonicalModel):
    """
    EIP-712 domain parameters for a token's ``TransferWithAuthorization``.

    Attributes:
        name: Token EIP-712 name (e.g. "USD Coin")
        version: Token EIP-712 version (e.g. "2")
        chain_id: EIP-155 chain id
        verifying_contract: Token contract address
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="EIP-712 domain name")
    version: str = Field(..., description="EIP-712 domain version")
    chain_id: int = Field(..., alias="chainId", gt=0, description="EIP-155 chain id")
    verifying_contract: str = Field(..., alias="verifyingContract", description="Token contract address")

    @property
    def network(self) -> str:
        return f"eip155:{self.chain_id}"


class LedgerClient(ABC):
    """
    Abstract ledger capability consumed by the verification and settlement engines.

    Key Responsibilities:
    1. verify_signature: Check that ``signature`` over ``authorization`` recovers to ``authorization.from``
    2. check_balance: Read the token balance of an address
    3. submit: Broadcast a transfer-with-authorization and return its transaction reference

    Example Implementation:
        class EVMLedgerClient(LedgerClient):
            # web3-backed implementation
            pass
    """

    @abstractmethod
    async def verify_signature(
        self,
        authorization: ExactAuthorization,
        signature: str,
        domain: AuthorizationDomain,
    ) -> bool:
        """
        Check an authorization signature under ``domain``.

        Args:
            authorization: Signed transfer authorization
            signature: Packed 65-byte signature hex
            domain: EIP-712 domain the client signed under

        Returns:
            bool: True if the signature is authentic for ``authorization.from``.

        Raises:
            LedgerUnavailableError: If an on-chain check was needed and failed.
        """
        pass

    @abstractmethod
    async def check_balance(self, address: str, asset: str, network: str) -> int:
        """
        Read the balance of ``address`` in smallest units.

        Args:
            address: Account to query
            asset: Token contract address
            network: CAIP-2 network identifier

        Returns:
            int: Balance in the token's smallest unit.

        Raises:
            LedgerUnavailableError: If the ledger cannot be reached.
        """
        pass

    @abstractmethod
    async def submit(
        self,
        authorization: ExactAuthorization,
        signature: str,
        domain: AuthorizationDomain,
    ) -> str:
        """
        Submit the authorization for execution.

        Returns once the ledger acknowledged the submission; confirmation is
        not awaited.

        Returns:
            str: Transaction reference.

        Raises:
            LedgerUnavailableError: If the ledger cannot be reached.
            SettlementFailure: On a retryable submission failure.
            SettlementRejectedError: If the submission can never succeed.
        """
        pass
