"""
Exception and Error Definitions Module

Defines the exception hierarchy for wire decoding, replay protection, ledger
interaction and asynchronous settlement. All exceptions inherit from
X402Error for unified exception handling.

Verification failures are deliberately absent from this module: a payload
that fails verification is an expected protocol outcome and is reported as
a typed ``VerifyResult`` rather than raised.

Exception Hierarchy:
    X402Error (root)
    ├── DecodeError
    ├── NonceAlreadyUsedError
    ├── LedgerError
    │   ├── LedgerUnavailableError
    │   └── SettlementError
    │       ├── SettlementFailure
    │       └── SettlementRejectedError
    ├── QueueClosedError
    └── ConfigurationError
"""

from typing import Any, Optional


class X402Error(Exception):
    """
    Root exception class for all project-specific exceptions.

    All custom exceptions should inherit from this class to enable
    unified exception handling and centralized error processing.
    """
    pass


class DecodeError(X402Error):
    """
    Raised when a wire message cannot be decoded.

    This includes scenarios such as:
    - Input that is neither JSON nor Base64-wrapped JSON
    - JSON that does not match any schema of the requested protocol version
    - A declared ``x402Version`` that disagrees with the expected version

    Decode errors are always client errors (400-class) and are never retried.
    """

    def __init__(self, message: str, *, version: Optional[int] = None) -> None:
        super().__init__(message)
        self.version = version


class NonceAlreadyUsedError(X402Error):
    """
    Raised when an authorization nonce is marked used a second time.

    This is the replay guard protecting a single authorization from being
    consumed twice. It is raised, never returned, and callers must let it
    propagate.

    Attributes:
        nonce: The nonce value exactly as the caller supplied it.
    """

    def __init__(self, nonce: Any) -> None:
        super().__init__(f"Nonce already used: {nonce}")
        self.nonce = nonce


class LedgerError(X402Error):
    """
    Base exception for failures reported by a ledger client.

    Parent class for connectivity and settlement execution errors.

    Attributes:
        transient: Whether retrying the same operation may succeed.
    """

    transient: bool = True


class LedgerUnavailableError(LedgerError):
    """
    Raised when the ledger client cannot be reached or answers with an RPC error.

    This includes scenarios such as:
    - RPC endpoint timeout or connection refusal
    - Provider returning a JSON-RPC error unrelated to the transaction itself

    Treated as transient by the settlement queue and as fatal (5xx) for
    synchronous verification.
    """
    pass


class SettlementError(LedgerError):
    """Base exception for settlement execution errors."""
    pass


class SettlementFailure(SettlementError):
    """
    Raised when a settlement attempt fails for a reason that may clear on retry.

    This includes scenarios such as:
    - Broadcast rejected because of a gas price spike
    - Transaction submission dropped by the node
    """

    transient = True


class SettlementRejectedError(SettlementError):
    """
    Raised when a settlement can never succeed.

    This includes scenarios such as:
    - Authorization window already closed
    - Contract call reverting during gas estimation
    - No settlement account configured on the ledger client
    """

    transient = False


class QueueClosedError(X402Error):
    """Raised when a job is enqueued after the settlement queue was shut down."""
    pass


class ConfigurationError(X402Error):
    """
    Raised when configuration is invalid or incomplete.

    This includes scenarios such as:
    - Malformed environment variable values
    - Unknown network or token in a registry lookup
    - Invalid token registration data
    """
    pass
