"""
x402 Wire Message Models (Versioned Tagged Unions)

Defines the pydantic models for the three message kinds exchanged by the
protocol (payment requirements, payment payloads, settlement responses) in
both wire versions, plus the discriminated unions that select the right
variant from ``x402Version``.

Version differences:
    V1: flat requirement with ``maxAmountRequired``, ``contractAddress`` and
        absolute ``expiry``; legacy network names such as ``base-sepolia``.
    V2: requirement with ``amount``, ``asset`` and relative
        ``maxTimeoutSeconds``; CAIP-2 networks; payloads echo the
        ``accepted`` requirement.

Engines never branch on the version. Every requirement variant implements
``BaseRequirement`` and every payload variant implements ``BasePayload``,
which expose the normalized view (CAIP-2 network, integer amounts) used for
verification and settlement.

Example usage:
    payload = PaymentPayloadAdapter.validate_python({
        "x402Version": 2,
        "accepted": {...},
        "payload": {"signature": "0x...", "authorization": {...}},
    })
    isinstance(payload, PaymentPayloadV2)  # True
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import Field, TypeAdapter, field_validator
from typing_extensions import Annotated

from .bases import CanonicalModel, SettlementResult
from .networks import to_caip2, to_v1_network, parse_caip2


def _coerce_uint_string(value: Any) -> str:
    """Accept ints or decimal strings and return a canonical non-negative integer string."""
    if isinstance(value, bool):
        raise ValueError("Expected an integer amount, got a boolean")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Amount must be non-negative, got {value}")
        return str(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            raise ValueError(f"Amount must be a non-negative integer string, got '{value}'")
        return str(int(stripped))
    raise ValueError(f"Expected integer or decimal string, got {type(value).__name__}")


def _validate_network(value: str) -> str:
    """Accept a V1 alias or CAIP-2 identifier; reject anything without a chain reference."""
    to_caip2(value)
    return value.strip()


# ==================== Exact Scheme Payload ====================

class ExactAuthorization(CanonicalModel):
    """
    ERC-3009 ``TransferWithAuthorization`` fields carried by the "exact" scheme.

    Numeric fields are held as decimal strings, the form used on the wire;
    ints are accepted on input and converted.
    """

    from_: str = Field(..., alias="from", description="Payer address")
    to: str = Field(..., description="Recipient address")
    value: str = Field(..., description="Transfer amount in smallest units")
    valid_after: str = Field(..., alias="validAfter", description="Unix seconds after which the authorization is valid")
    valid_before: str = Field(..., alias="validBefore", description="Unix seconds before which the authorization is valid")
    nonce: str = Field(..., description="Unique authorization nonce (bytes32 hex)")

    @field_validator("value", "valid_after", "valid_before", mode="before")
    @classmethod
    def coerce_numbers(cls, v: Any) -> str:
        return _coerce_uint_string(v)

    @field_validator("nonce")
    @classmethod
    def check_nonce(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Nonce must not be empty")
        return v.strip()

    @property
    def amount(self) -> int:
        return int(self.value)

    @property
    def valid_after_ts(self) -> int:
        return int(self.valid_after)

    @property
    def valid_before_ts(self) -> int:
        return int(self.valid_before)


class ExactPayload(CanonicalModel):
    """Signature plus the signed authorization."""

    signature: str = Field(..., description="Packed 65-byte ECDSA signature (0x r||s||v)")
    authorization: ExactAuthorization

    @field_validator("signature")
    @classmethod
    def check_signature(cls, v: str) -> str:
        body = v[2:] if v.startswith("0x") else v
        try:
            bytes.fromhex(body)
        except ValueError as exc:
            raise ValueError("Signature must be hex encoded") from exc
        return v


class ResourceInfo(CanonicalModel):
    """Resource metadata attached to V2 challenges and payloads."""

    url: str
    description: Optional[str] = None
    mime_type: Optional[str] = Field(None, alias="mimeType")


# ==================== Requirements ====================

class BaseRequirement(CanonicalModel, ABC):
    """
    Normalized view shared by every requirement variant.

    Attributes exposed to the engines:
        network_id: CAIP-2 network identifier
        required_amount: Minimum amount in smallest units
        asset_address: Token contract identifier
        pay_to: Recipient identifier
        scheme: Payment scheme discriminator
    """

    scheme: Literal["exact"] = Field("exact", description="Payment scheme")
    pay_to: str = Field(..., alias="payTo", description="Recipient address")
    extra: Optional[Dict[str, Any]] = Field(None, description="Scheme-specific data (EIP-712 name/version)")

    @property
    @abstractmethod
    def network_id(self) -> str:
        """CAIP-2 network identifier."""

    @property
    @abstractmethod
    def required_amount(self) -> int:
        """Required amount in smallest units."""

    @property
    @abstractmethod
    def asset_address(self) -> str:
        """Token contract identifier."""


class PaymentRequirementV1(BaseRequirement):
    """Legacy flat requirement."""

    network: str = Field(..., description="Legacy network name or CAIP-2 identifier")
    max_amount_required: str = Field(..., alias="maxAmountRequired")
    contract_address: str = Field(..., alias="contractAddress")
    expiry: int = Field(..., ge=0, description="Absolute unix seconds after which the offer lapses")
    resource: Optional[str] = None
    description: Optional[str] = None
    mime_type: Optional[str] = Field(None, alias="mimeType")

    @field_validator("network")
    @classmethod
    def check_network(cls, v: str) -> str:
        return _validate_network(v)

    @field_validator("max_amount_required", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> str:
        return _coerce_uint_string(v)

    @property
    def network_id(self) -> str:
        return to_caip2(self.network)

    @property
    def required_amount(self) -> int:
        return int(self.max_amount_required)

    @property
    def asset_address(self) -> str:
        return self.contract_address

    def to_v2(self, now: int) -> "PaymentRequirementV2":
        return PaymentRequirementV2(
            scheme=self.scheme,
            network=self.network_id,
            amount=self.max_amount_required,
            asset=self.contract_address,
            pay_to=self.pay_to,
            max_timeout_seconds=max(self.expiry - now, 0),
            extra=self.extra,
        )


class PaymentRequirementV2(BaseRequirement):
    """Current requirement with CAIP-2 network and relative timeout."""

    network: str = Field(..., description="CAIP-2 network identifier")
    amount: str = Field(..., description="Required amount in smallest units")
    asset: str = Field(..., description="Token contract address")
    max_timeout_seconds: int = Field(..., alias="maxTimeoutSeconds", ge=0)
    extensions: Optional[Dict[str, Dict[str, Any]]] = Field(None, description="Protocol extensions keyed by name")

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> str:
        return _coerce_uint_string(v)

    @field_validator("network")
    @classmethod
    def check_caip2(cls, v: str) -> str:
        parse_caip2(v)
        return v.strip()

    @property
    def network_id(self) -> str:
        return self.network

    @property
    def required_amount(self) -> int:
        return int(self.amount)

    @property
    def asset_address(self) -> str:
        return self.asset

    def to_v1(self, now: int) -> PaymentRequirementV1:
        return PaymentRequirementV1(
            scheme=self.scheme,
            network=to_v1_network(self.network),
            max_amount_required=self.amount,
            contract_address=self.asset,
            pay_to=self.pay_to,
            expiry=now + self.max_timeout_seconds,
            extra=self.extra,
        )


Requirement = Union[PaymentRequirementV1, PaymentRequirementV2]


# ==================== Payment Required Envelopes ====================

class PaymentRequiredV1(CanonicalModel):
    x402_version: Literal[1] = Field(1, alias="x402Version")
    error: Optional[str] = None
    accepts: List[PaymentRequirementV1]


class PaymentRequiredV2(CanonicalModel):
    x402_version: Literal[2] = Field(2, alias="x402Version")
    error: Optional[str] = None
    resource: Optional[ResourceInfo] = None
    accepts: List[PaymentRequirementV2]
    extensions: Optional[Dict[str, Any]] = None


PaymentRequired = Annotated[
    Union[PaymentRequiredV1, PaymentRequiredV2],
    Field(discriminator="x402_version")
]


# ==================== Payment Payloads ====================

class BasePayload(CanonicalModel, ABC):
    """Normalized view shared by every payload variant."""

    payload: ExactPayload

    @property
    @abstractmethod
    def scheme(self) -> str:
        """Payment scheme the client paid with."""

    @property
    @abstractmethod
    def network_id(self) -> str:
        """CAIP-2 network the client paid on."""

    @property
    def asset_address(self) -> Optional[str]:
        """Asset the client claims to pay with, when the version carries one."""
        return None

    @property
    def accepted_amount(self) -> Optional[int]:
        """Amount of the accepted requirement, when the version carries one."""
        return None

    @property
    def authorization(self) -> ExactAuthorization:
        return self.payload.authorization

    @property
    def signature(self) -> str:
        return self.payload.signature

    @property
    def payer(self) -> str:
        return self.payload.authorization.from_

    @property
    def nonce(self) -> str:
        return self.payload.authorization.nonce


class PaymentPayloadV1(BasePayload):
    x402_version: Literal[1] = Field(1, alias="x402Version")
    scheme_name: Literal["exact"] = Field("exact", alias="scheme")
    network: str

    @field_validator("network")
    @classmethod
    def check_network(cls, v: str) -> str:
        return _validate_network(v)

    @property
    def scheme(self) -> str:
        return self.scheme_name

    @property
    def network_id(self) -> str:
        return to_caip2(self.network)


class PaymentPayloadV2(BasePayload):
    x402_version: Literal[2] = Field(2, alias="x402Version")
    accepted: PaymentRequirementV2
    resource: Optional[ResourceInfo] = None
    extensions: Optional[Dict[str, Any]] = None

    @property
    def scheme(self) -> str:
        return self.accepted.scheme

    @property
    def network_id(self) -> str:
        return self.accepted.network

    @property
    def asset_address(self) -> Optional[str]:
        return self.accepted.asset

    @property
    def accepted_amount(self) -> Optional[int]:
        return self.accepted.required_amount


PaymentPayload = Annotated[
    Union[PaymentPayloadV1, PaymentPayloadV2],
    Field(discriminator="x402_version")
]

PaymentPayloadAdapter: TypeAdapter = TypeAdapter(PaymentPayload)
PaymentRequiredAdapter: TypeAdapter = TypeAdapter(PaymentRequired)


# ==================== Settlement Responses ====================

class SettlementResponseV1(CanonicalModel):
    success: bool
    error_reason: Optional[str] = Field(None, alias="errorReason")
    transaction: str = ""
    network: str
    payer: Optional[str] = None

    @classmethod
    def from_result(cls, result: SettlementResult) -> "SettlementResponseV1":
        return cls(
            success=result.success,
            error_reason=result.error_reason,
            transaction=result.transaction,
            network=to_v1_network(result.network),
            payer=result.payer,
        )

    def to_result(self) -> SettlementResult:
        return SettlementResult(
            success=self.success,
            error_reason=self.error_reason,
            transaction=self.transaction,
            network=to_caip2(self.network),
            payer=self.payer,
        )


class SettlementResponseV2(CanonicalModel):
    success: bool
    error_reason: Optional[str] = Field(None, alias="errorReason")
    transaction: str = ""
    network: str
    payer: Optional[str] = None
    extensions: Optional[Dict[str, Any]] = None

    @field_validator("network")
    @classmethod
    def check_caip2(cls, v: str) -> str:
        parse_caip2(v)
        return v

    @classmethod
    def from_result(cls, result: SettlementResult) -> "SettlementResponseV2":
        return cls(
            success=result.success,
            error_reason=result.error_reason,
            transaction=result.transaction,
            network=result.network,
            payer=result.payer,
        )

    def to_result(self) -> SettlementResult:
        return SettlementResult(
            success=self.success,
            error_reason=self.error_reason,
            transaction=self.transaction,
            network=self.network,
            payer=self.payer,
        )
