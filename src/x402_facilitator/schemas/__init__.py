from .bases import CanonicalModel, InvalidReason, SettlementMode, SettlementResult, VerifyResult
from .https import (
    ErrorResponse,
    HealthResponse,
    JobStatusResponse,
    QueueStats,
    SettleRequest,
    SettleResponse,
    SupportedKind,
    SupportedResponse,
    VerifyRequest,
)
from .messages import (
    BasePayload,
    BaseRequirement,
    ExactAuthorization,
    ExactPayload,
    PaymentPayload,
    PaymentPayloadV1,
    PaymentPayloadV2,
    PaymentRequired,
    PaymentRequiredV1,
    PaymentRequiredV2,
    PaymentRequirementV1,
    PaymentRequirementV2,
    Requirement,
    ResourceInfo,
    SettlementResponseV1,
    SettlementResponseV2,
)
from .versions import ProtocolVersion, SUPPORTED_VERSIONS

__all__ = [
    "CanonicalModel",
    "InvalidReason",
    "SettlementMode",
    "SettlementResult",
    "VerifyResult",
    "ErrorResponse",
    "HealthResponse",
    "JobStatusResponse",
    "QueueStats",
    "SettleRequest",
    "SettleResponse",
    "SupportedKind",
    "SupportedResponse",
    "VerifyRequest",
    "BasePayload",
    "BaseRequirement",
    "ExactAuthorization",
    "ExactPayload",
    "PaymentPayload",
    "PaymentPayloadV1",
    "PaymentPayloadV2",
    "PaymentRequired",
    "PaymentRequiredV1",
    "PaymentRequiredV2",
    "PaymentRequirementV1",
    "PaymentRequirementV2",
    "Requirement",
    "ResourceInfo",
    "SettlementResponseV1",
    "SettlementResponseV2",
    "ProtocolVersion",
    "SUPPORTED_VERSIONS",
]
