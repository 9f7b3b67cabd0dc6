"""
HTTP Request/Response Schema Models for the x402 Facilitator

This module defines the Pydantic models exchanged over the facilitator's HTTP
surface. Resource servers (or their middleware) call the facilitator to
verify and settle payments on their behalf:

1. ``POST /verify``   -- check a payment payload against a requirement
2. ``POST /settle``   -- verify, then settle inline or enqueue for later
3. ``GET /settle/{job_id}`` -- poll an enqueued settlement
4. ``GET /health`` and ``GET /supported`` -- informational endpoints

Payloads and requirements are carried as wire JSON objects (or as the
Base64 header form) and decoded by the protocol codec, so both wire versions
are accepted on every route.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import Field

from .bases import CanonicalModel, InvalidReason, SettlementResult


# ============================================================================
# Requests
# ============================================================================

class VerifyRequest(CanonicalModel):
    """Body of ``POST /verify``.

    Attributes:
        payment_payload: Payment payload as a wire JSON object or its Base64 header form.
        payment_requirements: Requirement the payload must satisfy, in the payload's version.
        skip_balance_check: Skip the on-chain balance check for this call.
    """
    payment_payload: Union[Dict[str, Any], str] = Field(
        ...,
        alias="paymentPayload",
        description="Payment payload (JSON object or Base64 header value)"
    )
    payment_requirements: Union[Dict[str, Any], str] = Field(
        ...,
        alias="paymentRequirements",
        description="Payment requirement (JSON object or Base64)"
    )
    skip_balance_check: bool = Field(
        default=False,
        alias="skipBalanceCheck",
        description="Skip the balance check for this call"
    )


class SettleRequest(VerifyRequest):
    """Body of ``POST /settle``.

    Attributes:
        enqueue: Hand the settlement to the queue and return a job id immediately.
    """
    enqueue: bool = Field(
        default=False,
        description="Settle asynchronously through the settlement queue"
    )


# ============================================================================
# Responses
# ============================================================================

class ErrorResponse(CanonicalModel):
    error: str = Field(..., description="Error message")


class SettleResponse(CanonicalModel):
    """Body of ``POST /settle`` responses.

    Attributes:
        success: True when settled, or accepted by the queue.
        transaction: Ledger transaction reference of a synchronous settlement.
        network: CAIP-2 network of the settlement.
        payer: Payer address.
        job_id: Queue job id when the settlement was enqueued.
        error: Failure or rejection message.
        invalid_reason: Verification rejection reason (402 responses).
        payment_requirements: The requirement to retry against (402 responses).
    """
    success: bool = Field(..., description="Whether settlement succeeded or was accepted")
    transaction: Optional[str] = Field(None, description="Ledger transaction reference")
    network: Optional[str] = Field(None, description="CAIP-2 network identifier")
    payer: Optional[str] = Field(None, description="Payer address")
    job_id: Optional[str] = Field(None, alias="jobId", description="Settlement queue job id")
    error: Optional[str] = Field(None, description="Error message")
    invalid_reason: Optional[InvalidReason] = Field(None, alias="invalidReason", description="Verification rejection reason")
    payment_requirements: Optional[Dict[str, Any]] = Field(
        None,
        alias="paymentRequirements",
        description="Requirement to retry against"
    )

    @classmethod
    def from_settlement(cls, result: SettlementResult) -> "SettleResponse":
        return cls(
            success=result.success,
            transaction=result.transaction or None,
            network=result.network,
            payer=result.payer,
            error=result.error_reason,
        )


class JobStatusResponse(CanonicalModel):
    """Body of ``GET /settle/{job_id}``."""
    job_id: str = Field(..., alias="jobId")
    status: str = Field(..., description="pending, processing, succeeded or failed")
    attempts: int = Field(..., description="Settlement attempts started")
    created_at: float = Field(..., alias="createdAt")
    updated_at: float = Field(..., alias="updatedAt")
    next_attempt_at: Optional[float] = Field(None, alias="nextAttemptAt")
    result: Optional[SettlementResult] = Field(None, description="Settlement result once succeeded")
    error: Optional[str] = Field(None, description="Last failure message")


class QueueStats(CanonicalModel):
    """Settlement queue job counters by state."""
    pending: int = 0
    processing: int = 0
    succeeded: int = 0
    failed: int = 0


class HealthResponse(CanonicalModel):
    """Body of ``GET /health``."""
    status: str = Field(default="ok", description="Service status")
    timestamp: int = Field(..., description="Unix seconds")
    queue: QueueStats = Field(default_factory=QueueStats, description="Settlement queue counters")


class SupportedKind(CanonicalModel):
    x402_version: int = Field(..., alias="x402Version")
    scheme: str = Field(default="exact")
    network: str = Field(..., description="Network identifier in the version's naming")


class SupportedResponse(CanonicalModel):
    """Body of ``GET /supported``."""
    kinds: List[SupportedKind] = Field(default_factory=list)
    networks: List[str] = Field(default_factory=list, description="Supported CAIP-2 networks")
