"""
Base Schema Models for the x402 Facilitator

This module defines the base model every wire and result schema inherits
from, together with the typed verification and settlement results shared by
the engines, the codec and the HTTP surface.

Core Classes:
    - CanonicalModel: Pydantic base model with deterministic JSON serialization
    - InvalidReason: Enumeration of verification rejection reasons
    - SettlementMode: How a verified payment is carried forward
    - VerifyResult: Outcome of verifying a payload against a requirement
    - SettlementResult: Outcome of executing an authorization on the ledger

Dependencies:
    - pydantic: For data validation and serialization
"""

import json
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field


class CanonicalModel(BaseModel):
    """
    Pydantic base model with canonical JSON serialization.

    Wire models declare camelCase aliases; ``to_canonical_json`` always
    serializes by alias and omits unset optional fields so that the same
    value always produces the same bytes.

    Example:
        class MyModel(CanonicalModel):
            pay_to: str = Field(..., alias="payTo")

        MyModel(pay_to="0xabc").to_canonical_json()  # '{"payTo":"0xabc"}'
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert model to a compact JSON string with sorted keys.

        Returns:
            str: JSON string with sorted keys and no extra whitespace.
        """
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to its wire dictionary representation.

        Returns:
            Dict[str, Any]: Dictionary keyed by wire (alias) names.
        """
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class InvalidReason(str, Enum):
    """
    Enumeration of verification rejection reasons, in check order.

    Attributes:
        REQUIREMENT_MISMATCH: Scheme, network, asset, recipient or amount does not satisfy the requirement
        NOT_YET_VALID: Current time is before ``validAfter``
        EXPIRED: Current time is at or after ``validBefore``
        NONCE_REUSED: Authorization nonce has already been consumed
        INVALID_SIGNATURE: Signature does not recover to ``authorization.from``
        INSUFFICIENT_BALANCE: Payer balance is below the required amount
    """
    REQUIREMENT_MISMATCH = "requirement_mismatch"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    NONCE_REUSED = "nonce_reused"
    INVALID_SIGNATURE = "invalid_signature"
    INSUFFICIENT_BALANCE = "insufficient_balance"


class SettlementMode(str, Enum):
    """
    How the facilitator proceeds once a payload has been verified.

    Attributes:
        VERIFY: Stop after verification
        SETTLE: Settle synchronously before responding
        ASYNC: Enqueue settlement and respond with a job id
    """
    VERIFY = "verify"
    SETTLE = "settle"
    ASYNC = "async"


class VerifyResult(CanonicalModel):
    """
    Result of verifying a payment payload against a requirement.

    Serializes directly to the ``/verify`` response body
    ``{isValid, invalidReason?, payer?, error?}``.

    Attributes:
        is_valid: Whether every verification step passed
        invalid_reason: First failed step, when invalid
        payer: ``authorization.from`` of the verified payload
        error: Human-readable explanation of the rejection
    """

    model_config = ConfigDict(frozen=True)

    is_valid: bool = Field(..., alias="isValid", description="Whether the payload passed verification")
    invalid_reason: Optional[InvalidReason] = Field(None, alias="invalidReason", description="Rejection reason")
    payer: Optional[str] = Field(None, description="Payer address")
    error: Optional[str] = Field(None, description="Human-readable rejection message")

    @classmethod
    def valid(cls, payer: str) -> "VerifyResult":
        return cls(is_valid=True, payer=payer)

    @classmethod
    def invalid(cls, reason: InvalidReason, message: str, payer: Optional[str] = None) -> "VerifyResult":
        return cls(is_valid=False, invalid_reason=reason, error=message, payer=payer)

    def is_success(self) -> bool:
        """Return True if verification passed."""
        return self.is_valid and self.invalid_reason is None


class SettlementResult(CanonicalModel):
    """
    Outcome of executing an authorization against the ledger.

    Created once per settlement attempt and immutable afterwards. ``network``
    is always held in CAIP-2 form; the codec renders the V1 alias when
    encoding for V1 clients.

    Attributes:
        success: Whether the ledger acknowledged the transfer
        transaction: Opaque ledger transaction reference (empty on failure)
        network: CAIP-2 network identifier
        error_reason: Failure description, when unsuccessful
        payer: Payer address echoed back to the caller
    """

    model_config = ConfigDict(frozen=True)

    success: bool = Field(..., description="Whether settlement succeeded")
    transaction: str = Field("", description="Ledger transaction reference")
    network: str = Field(..., description="CAIP-2 network identifier")
    error_reason: Optional[str] = Field(None, alias="errorReason", description="Failure reason")
    payer: Optional[str] = Field(None, description="Payer address")

    def is_success(self) -> bool:
        return self.success
