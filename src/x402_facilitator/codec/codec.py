"""
x402 Protocol Codec

Pure, stateless encode/decode functions for the three message kinds in both
wire versions. Every function dispatches through a per-version model table so
that each version is handled by exactly one model and no code path probes
object shapes.

Encoding produces Base64-wrapped compact JSON (``urlsafe=True`` selects the
URL-safe alphabet without padding). Decoding accepts bytes or str, raw JSON
or Base64 in either alphabet, and raises ``DecodeError`` on any failure.

Round-trip guarantee:
    decode_X(encode_X(value, version), version) == value
"""

from typing import Any, Dict, Mapping, Optional, Sequence, Type, Union

from pydantic import BaseModel, ValidationError

from ..engine.exceptions import DecodeError
from ..schemas.bases import SettlementResult
from ..schemas.messages import (
    PaymentPayloadAdapter,
    PaymentPayloadV1,
    PaymentPayloadV2,
    PaymentRequiredAdapter,
    PaymentRequiredV1,
    PaymentRequiredV2,
    PaymentRequirementV1,
    PaymentRequirementV2,
    Requirement,
    ResourceInfo,
    SettlementResponseV1,
    SettlementResponseV2,
)
from ..schemas.versions import ProtocolVersion
from .encoding import dump_json, load_json
from .headers import headers_for

PaymentRequiredMessage = Union[PaymentRequiredV1, PaymentRequiredV2]
PaymentPayloadMessage = Union[PaymentPayloadV1, PaymentPayloadV2]
RawMessage = Union[bytes, str]

_REQUIREMENT_MODELS: Dict[ProtocolVersion, Type[BaseModel]] = {
    ProtocolVersion.V1: PaymentRequirementV1,
    ProtocolVersion.V2: PaymentRequirementV2,
}

_PAYMENT_REQUIRED_MODELS: Dict[ProtocolVersion, Type[BaseModel]] = {
    ProtocolVersion.V1: PaymentRequiredV1,
    ProtocolVersion.V2: PaymentRequiredV2,
}

_PAYLOAD_MODELS: Dict[ProtocolVersion, Type[BaseModel]] = {
    ProtocolVersion.V1: PaymentPayloadV1,
    ProtocolVersion.V2: PaymentPayloadV2,
}

_SETTLEMENT_MODELS: Dict[ProtocolVersion, Type[Union[SettlementResponseV1, SettlementResponseV2]]] = {
    ProtocolVersion.V1: SettlementResponseV1,
    ProtocolVersion.V2: SettlementResponseV2,
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _version(version: Any) -> ProtocolVersion:
    try:
        return ProtocolVersion.from_value(version)
    except ValueError as exc:
        raise DecodeError(str(exc)) from exc


def _model_for(table: Mapping[ProtocolVersion, Type[BaseModel]], value: Any, version: Any, kind: str) -> None:
    """Reject values whose variant does not belong to ``version``."""
    model = table[ProtocolVersion.from_value(version)]
    if not isinstance(value, model):
        raise ValueError(
            f"{kind} of type {type(value).__name__} cannot be encoded as x402 version {int(version)}"
        )


def _validate(model: Any, obj: Dict[str, Any], kind: str, version: Optional[ProtocolVersion]) -> Any:
    try:
        if isinstance(model, type):
            return model.model_validate(obj)
        return model.validate_python(obj)
    except ValidationError as exc:
        raise DecodeError(f"Invalid {kind}: {exc.error_count()} validation error(s): {exc}", version=version) from exc


def _check_declared_version(obj: Dict[str, Any], version: Optional[ProtocolVersion], kind: str) -> Dict[str, Any]:
    declared = obj.get("x402Version")
    if declared is None:
        if version is None:
            raise DecodeError(f"{kind} is missing x402Version")
        return {**obj, "x402Version": int(version)}
    if version is not None and declared != int(version):
        raise DecodeError(
            f"{kind} declares x402Version {declared!r} but version {int(version)} was expected",
            version=version,
        )
    return obj


# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------

def encode_requirement(requirement: Requirement, version: ProtocolVersion, *, urlsafe: bool = False) -> bytes:
    """
    Encode a single requirement for ``version``.

    Raises:
        ValueError: If the requirement variant does not belong to ``version``.
    """
    _model_for(_REQUIREMENT_MODELS, requirement, version, "Requirement")
    return dump_json(requirement.to_dict(), urlsafe=urlsafe)


def load_requirement(obj: Dict[str, Any], version: ProtocolVersion) -> Requirement:
    """Validate an already-parsed JSON object as a requirement of ``version``."""
    version = _version(version)
    if not isinstance(obj, dict):
        raise DecodeError(f"Requirement must be a JSON object, got {type(obj).__name__}", version=version)
    return _validate(_REQUIREMENT_MODELS[version], obj, "payment requirement", version)


def decode_requirement(data: RawMessage, version: ProtocolVersion) -> Requirement:
    return load_requirement(load_json(data), version)


# ---------------------------------------------------------------------------
# Payment-required envelopes
# ---------------------------------------------------------------------------

def build_payment_required(
    accepts: Sequence[Requirement],
    version: ProtocolVersion,
    *,
    now: int,
    error: Optional[str] = None,
    resource: Optional[ResourceInfo] = None,
) -> PaymentRequiredMessage:
    """
    Build a 402 challenge envelope for ``version``.

    Requirements of the other version are converted; ``now`` anchors the
    conversion between relative ``maxTimeoutSeconds`` and absolute ``expiry``.

    Example:
        envelope = build_payment_required([requirement], ProtocolVersion.V1, now=int(time.time()))
    """
    version = ProtocolVersion.from_value(version)
    if version == ProtocolVersion.V1:
        converted_v1 = [
            req if isinstance(req, PaymentRequirementV1) else req.to_v1(now)
            for req in accepts
        ]
        return PaymentRequiredV1(
            error=error or "Payment required",
            accepts=converted_v1,
        )

    converted_v2 = [
        req if isinstance(req, PaymentRequirementV2) else req.to_v2(now)
        for req in accepts
    ]
    return PaymentRequiredV2(error=error, resource=resource, accepts=converted_v2)


def encode_payment_required(envelope: PaymentRequiredMessage, *, urlsafe: bool = False) -> bytes:
    return dump_json(envelope.to_dict(), urlsafe=urlsafe)


def load_payment_required(obj: Dict[str, Any], version: Optional[ProtocolVersion] = None) -> PaymentRequiredMessage:
    expected = _version(version) if version is not None else None
    if not isinstance(obj, dict):
        raise DecodeError("Payment-required message must be a JSON object", version=expected)
    obj = _check_declared_version(obj, expected, "Payment-required message")
    return _validate(PaymentRequiredAdapter, obj, "payment-required message", expected)


def decode_payment_required(data: RawMessage, version: Optional[ProtocolVersion] = None) -> PaymentRequiredMessage:
    return load_payment_required(load_json(data), version)


# ---------------------------------------------------------------------------
# Payment payloads
# ---------------------------------------------------------------------------

def encode_payload(payload: PaymentPayloadMessage, version: ProtocolVersion, *, urlsafe: bool = False) -> bytes:
    """
    Encode a client payment payload for ``version``.

    Raises:
        ValueError: If the payload variant does not belong to ``version``.
    """
    _model_for(_PAYLOAD_MODELS, payload, version, "Payment payload")
    return dump_json(payload.to_dict(), urlsafe=urlsafe)


def load_payload(obj: Dict[str, Any], version: Optional[ProtocolVersion] = None) -> PaymentPayloadMessage:
    """
    Validate an already-parsed JSON object as a payment payload.

    The variant is selected by ``x402Version``. When ``version`` is given
    (e.g. from the header family the payload arrived in) a payload that
    declares a different version is rejected.

    Raises:
        DecodeError: On a version disagreement or schema violation.
    """
    expected = _version(version) if version is not None else None
    if not isinstance(obj, dict):
        raise DecodeError("Payment payload must be a JSON object", version=expected)
    obj = _check_declared_version(obj, expected, "Payment payload")
    return _validate(PaymentPayloadAdapter, obj, "payment payload", expected)


def decode_payload(data: RawMessage, version: Optional[ProtocolVersion] = None) -> PaymentPayloadMessage:
    return load_payload(load_json(data), version)


# ---------------------------------------------------------------------------
# Settlement results
# ---------------------------------------------------------------------------

def encode_settlement(result: SettlementResult, version: ProtocolVersion, *, urlsafe: bool = False) -> bytes:
    """Encode a settlement result in the response shape of ``version``."""
    model = _SETTLEMENT_MODELS[ProtocolVersion.from_value(version)]
    return dump_json(model.from_result(result).to_dict(), urlsafe=urlsafe)


def load_settlement(obj: Dict[str, Any], version: ProtocolVersion) -> SettlementResult:
    version = _version(version)
    if not isinstance(obj, dict):
        raise DecodeError("Settlement response must be a JSON object", version=version)
    response = _validate(_SETTLEMENT_MODELS[version], obj, "settlement response", version)
    try:
        return response.to_result()
    except ValueError as exc:
        raise DecodeError(f"Invalid settlement network: {exc}", version=version) from exc


def decode_settlement(data: RawMessage, version: ProtocolVersion) -> SettlementResult:
    return load_settlement(load_json(data), version)


# ---------------------------------------------------------------------------
# Header helpers
# ---------------------------------------------------------------------------

def payment_required_headers(envelope: PaymentRequiredMessage) -> Dict[str, str]:
    family = headers_for(envelope.x402_version)
    return {family.payment_required: encode_payment_required(envelope).decode("ascii")}


def settlement_headers(result: SettlementResult, version: ProtocolVersion) -> Dict[str, str]:
    family = headers_for(version)
    return {family.payment_response: encode_settlement(result, version).decode("ascii")}
