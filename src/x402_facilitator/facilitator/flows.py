"""
Built-in event handlers for the x402 facilitator workflow.

Implements the core payment flow: payment header → decode → verification →
settlement (inline, queued, or skipped in ``verify`` mode).
"""

import logging
from typing import Optional, Sequence

from ..codec import decode_payload, find_payment_header
from ..engine.events import (
    BadRequestEvent,
    Dependencies,
    EventBus,
    InvalidPaymentEvent,
    PayloadReceivedEvent,
    PaymentRequestEvent,
    PaymentRequiredEvent,
    SettledEvent,
    SettlementFailedEvent,
    SettlementQueuedEvent,
    VerifiedEvent,
)
from ..engine.exceptions import ConfigurationError, DecodeError
from ..schemas.bases import SettlementMode
from ..schemas.messages import BasePayload, BaseRequirement

logger = logging.getLogger(__name__)


def select_requirement(payload: BasePayload, accepts: Sequence[BaseRequirement]) -> BaseRequirement:
    """
    Pick the offered requirement a payload is meant to satisfy.

    Prefers an exact scheme/network/asset match, then a scheme/network
    match, then the first offer; the verifier reports any remaining
    mismatch.

    Raises:
        ValueError: If ``accepts`` is empty.
    """
    if not accepts:
        raise ValueError("At least one payment requirement must be offered")

    asset = payload.asset_address
    same_network = [
        req for req in accepts
        if req.scheme == payload.scheme and req.network_id == payload.network_id
    ]
    if asset is not None:
        for req in same_network:
            if req.asset_address.lower() == asset.lower():
                return req
    if same_network:
        return same_network[0]
    return accepts[0]


# ==================== Event Handlers ====================

async def handle_payment_request(
    event: PaymentRequestEvent,
    deps: Dependencies
) -> PaymentRequiredEvent | BadRequestEvent | PayloadReceivedEvent:
    """Locate and decode the payment header from either header family."""
    found = find_payment_header(event.headers)
    if found is None:
        return PaymentRequiredEvent(accepts=event.accepts, resource=event.resource)

    version, value = found
    try:
        payload = decode_payload(value, version)
    except DecodeError as e:
        logger.info("Rejected undecodable %s payment header: %s", version.name, e)
        return BadRequestEvent(error=str(e))

    return PayloadReceivedEvent(
        payload=payload,
        accepts=event.accepts,
        mode=event.mode,
        resource=event.resource,
    )


async def handle_payload_received(
    event: PayloadReceivedEvent,
    deps: Dependencies
) -> InvalidPaymentEvent | VerifiedEvent:
    """Verify the payload against the requirement it targets."""
    requirement = select_requirement(event.payload, event.accepts)
    result = await deps.verifier.verify(
        event.payload,
        requirement,
        skip_balance_check=event.skip_balance_check,
    )

    if not result.is_success():
        return InvalidPaymentEvent(
            result=result,
            accepts=event.accepts,
            version=event.version,
            resource=event.resource,
        )

    return VerifiedEvent(
        payload=event.payload,
        requirement=requirement,
        result=result,
        mode=event.mode,
    )


async def handle_verified(
    event: VerifiedEvent,
    deps: Dependencies
) -> Optional[SettledEvent | SettlementFailedEvent | SettlementQueuedEvent]:
    """Carry a verified payment forward according to the settlement mode."""
    if event.mode == SettlementMode.VERIFY:
        return None

    if event.mode == SettlementMode.ASYNC:
        if deps.queue is None:
            raise ConfigurationError("Async settlement requested but no settlement queue is configured")
        job = await deps.queue.enqueue(event.payload, event.requirement)
        return SettlementQueuedEvent(
            job_id=job.job_id,
            result=event.result,
            network=event.requirement.network_id,
            version=event.version,
        )

    settlement = await deps.settlement_engine.settle(event.payload, event.requirement)
    if settlement.is_success():
        return SettledEvent(settlement=settlement, version=event.version)
    return SettlementFailedEvent(settlement=settlement, version=event.version)


# ==================== Event Bus Setup ====================

def setup_event_bus() -> EventBus:
    """Initialize event bus with built-in handlers."""
    event_bus = EventBus()

    event_bus.subscribe(PaymentRequestEvent, handle_payment_request)
    event_bus.subscribe(PayloadReceivedEvent, handle_payload_received)
    event_bus.subscribe(VerifiedEvent, handle_verified)

    return event_bus
