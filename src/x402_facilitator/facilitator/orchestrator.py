"""
Facilitator Orchestrator

Composes the nonce tracker, ledger client, verification engine, settlement
engine and settlement queue behind one object, and drives every request
through the event chain defined in ``flows``.

Two entry points:

- ``handle_payment(headers, accepts, mode)`` -- framework-neutral state
  machine for resource servers. Returns a ``PaymentOutcome`` carrying the
  status code, the x402 headers and the JSON body to send.
- ``verify`` / ``settle`` -- the operations behind the facilitator's
  ``POST /verify`` and ``POST /settle`` routes.

All per-request state lives on the call stack; durable state lives only in
the nonce tracker and the settlement queue.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Sequence

from ..codec import build_payment_required, payment_required_headers, settlement_headers
from ..engine.events import (
    BadRequestEvent,
    BaseEvent,
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
from ..engine.executors import EventChain
from ..ledger.bases import LedgerClient
from ..ledger.evm import EVMLedgerClient
from ..ledger.networks import NetworkRegistry
from ..schemas.bases import SettlementMode, VerifyResult
from ..schemas.https import SettleResponse
from ..schemas.messages import BasePayload, BaseRequirement, ResourceInfo
from ..schemas.versions import ProtocolVersion
from .flows import setup_event_bus
from .nonces import NonceTracker
from .queue import BackoffPolicy, SettlementQueue
from .settlement import SettlementEngine
from .verification import VerificationEngine

if TYPE_CHECKING:
    from ..config import FacilitatorConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentOutcome:
    """
    Response a resource server should send for one payment attempt.

    Attributes:
        status_code: HTTP status (200, 400, 402 or 502)
        headers: x402 headers to attach
        body: JSON body
    """
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def paid(self) -> bool:
        return self.status_code == 200


class Facilitator:
    """
    x402 facilitator: verification, settlement and replay protection.

    Example:
        registry = NetworkRegistry.default()
        facilitator = Facilitator(registry, EVMLedgerClient(registry, private_key="0x..."))
        await facilitator.start()

        outcome = await facilitator.handle_payment(request.headers, [requirement])
        if not outcome.paid:
            return JSONResponse(outcome.body, status_code=outcome.status_code, headers=outcome.headers)

        await facilitator.close()
    """

    def __init__(
        self,
        registry: NetworkRegistry,
        ledger_client: LedgerClient,
        *,
        mode: SettlementMode = SettlementMode.SETTLE,
        nonce_tracker: Optional[NonceTracker] = None,
        check_balance: bool = True,
        grace_seconds: int = 0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        backoff: BackoffPolicy = BackoffPolicy.FIXED,
        max_retry_delay: float = 60.0,
        concurrency: int = 4,
        clock: Callable[[], float] = time.time,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        """
        Args:
            registry: Network registry shared by every component
            ledger_client: Ledger capability used for signatures, balances and submission
            mode: Default settlement mode for ``handle_payment``
            nonce_tracker: Tracker to share; a tracker without TTL is created when omitted
            check_balance: Whether verification queries the payer's balance
            grace_seconds: Clock-skew tolerance for authorization windows
            max_retries: Settlement queue retries after the first attempt
            retry_delay: Settlement queue base retry delay, in seconds
            backoff: Settlement queue delay growth policy
            max_retry_delay: Upper bound for one retry delay, in seconds
            concurrency: Settlement queue workers
            clock: Time source returning unix seconds
            event_bus: Event bus to use instead of the built-in flow
        """
        self.registry = registry
        self.ledger_client = ledger_client
        self.mode = SettlementMode(mode)
        self.nonce_tracker = nonce_tracker or NonceTracker(clock=clock)
        self._clock = clock

        self.verifier = VerificationEngine(
            registry,
            self.nonce_tracker,
            ledger_client,
            check_balance=check_balance,
            grace_seconds=grace_seconds,
            clock=clock,
        )
        self.settlement_engine = SettlementEngine(registry, self.nonce_tracker, ledger_client, clock=clock)
        self.queue = SettlementQueue(
            self.settlement_engine,
            max_retries=max_retries,
            retry_delay=retry_delay,
            backoff=backoff,
            max_retry_delay=max_retry_delay,
            concurrency=concurrency,
            clock=clock,
        )

        self.event_bus: EventBus = event_bus or setup_event_bus()
        self.deps = Dependencies(
            verifier=self.verifier,
            settlement_engine=self.settlement_engine,
            queue=self.queue,
            clock=clock,
        )

    @classmethod
    def from_config(cls, config: "FacilitatorConfig", ledger_client: Optional[LedgerClient] = None) -> "Facilitator":
        """
        Build a facilitator from ``FacilitatorConfig``.

        When no ledger client is given an ``EVMLedgerClient`` is created
        from the configured RPC overrides and settlement key.
        """
        registry = NetworkRegistry.default(rpc_overrides=config.rpc_urls)
        if ledger_client is None:
            ledger_client = EVMLedgerClient(
                registry,
                private_key=config.private_key,
                request_timeout=config.rpc_timeout,
            )
        return cls(
            registry,
            ledger_client,
            mode=config.settlement_mode,
            nonce_tracker=NonceTracker(
                ttl_seconds=config.nonce_ttl_seconds,
                cleanup_interval=config.nonce_cleanup_interval,
            ),
            check_balance=config.check_balance,
            grace_seconds=config.expiry_grace_seconds,
            max_retries=config.queue_max_retries,
            retry_delay=config.queue_retry_delay,
            backoff=config.queue_backoff,
            max_retry_delay=config.queue_max_retry_delay,
            concurrency=config.queue_concurrency,
        )

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Start the nonce cleanup task and the settlement workers."""
        self.nonce_tracker.start()
        self.queue.start()

    async def close(self) -> None:
        """Stop the settlement workers and the nonce cleanup task."""
        await self.queue.close()
        await self.nonce_tracker.close()

    # ==================== Event Extension ====================

    def subscribe(self, event_class: type, handler: Callable) -> None:
        """Register an additional async handler ``(event, deps) -> Optional[BaseEvent]``."""
        self.event_bus.subscribe(event_class, handler)

    def add_hook(self, event_class: type, hook: Callable) -> None:
        """Register an async side-effect hook ``(event, deps) -> None``.

        Example:
            async def audit(event, deps):
                logger.info("settled %s", event.settlement.transaction)

            facilitator.add_hook(SettledEvent, audit)
        """
        self.event_bus.hook(event_class, hook)

    # ==================== Request Handling ====================

    async def handle_payment(
        self,
        headers: Mapping[str, str],
        accepts: Sequence[BaseRequirement],
        mode: Optional[SettlementMode] = None,
        resource: Optional[ResourceInfo] = None,
    ) -> PaymentOutcome:
        """
        Run the payment state machine for one resource request.

        Args:
            headers: Incoming request headers (either header family)
            accepts: Requirements the resource offers
            mode: Settlement mode; defaults to the facilitator's mode
            resource: Resource metadata for V2 challenges

        Returns:
            PaymentOutcome: 402 with requirements when unpaid or invalid, 400
            when the header is malformed, 200 when verified/settled/queued,
            502 when synchronous settlement failed.

        Raises:
            ValueError: If ``accepts`` is empty.
            LedgerUnavailableError: If the ledger could not be consulted.
            NonceAlreadyUsedError: If a replay slipped past verification.
        """
        if not accepts:
            raise ValueError("At least one payment requirement must be offered")

        event = PaymentRequestEvent(
            headers=dict(headers.items()),
            accepts=list(accepts),
            mode=SettlementMode(mode) if mode is not None else self.mode,
            resource=resource,
        )
        final = await self._run(event)
        return self._payment_outcome(final, list(accepts), resource)

    async def verify(
        self,
        payload: BasePayload,
        requirement: BaseRequirement,
        *,
        skip_balance_check: bool = False,
    ) -> VerifyResult:
        """Verify without settling; backs ``POST /verify``."""
        final = await self._run(PayloadReceivedEvent(
            payload=payload,
            accepts=[requirement],
            mode=SettlementMode.VERIFY,
            skip_balance_check=skip_balance_check,
        ))
        if isinstance(final, (InvalidPaymentEvent, VerifiedEvent)):
            return final.result
        raise RuntimeError(f"Verification ended with unexpected event {final!r}")

    async def settle(
        self,
        payload: BasePayload,
        requirement: BaseRequirement,
        *,
        enqueue: bool = False,
    ) -> PaymentOutcome:
        """
        Verify, then settle inline or enqueue; backs ``POST /settle``.

        Returns:
            PaymentOutcome: body is a ``SettleResponse``. 200 on success or
            enqueue, 402 with the requirement when verification fails, 502
            when settlement fails.
        """
        final = await self._run(PayloadReceivedEvent(
            payload=payload,
            accepts=[requirement],
            mode=SettlementMode.ASYNC if enqueue else SettlementMode.SETTLE,
        ))

        if isinstance(final, InvalidPaymentEvent):
            response = SettleResponse(
                success=False,
                network=requirement.network_id,
                payer=final.result.payer,
                error=final.result.error,
                invalid_reason=final.result.invalid_reason,
                payment_requirements=requirement.to_dict(),
            )
            return PaymentOutcome(status_code=402, body=response.to_dict())

        outcome = self._settlement_outcome(final)
        if outcome is None:
            raise RuntimeError(f"Settlement ended with unexpected event {final!r}")
        return outcome

    # ==================== Internals ====================

    async def _run(self, event: BaseEvent) -> Optional[BaseEvent]:
        chain = EventChain(self.event_bus, self.deps)
        return await chain.run(event)

    def _challenge(
        self,
        accepts: Sequence[BaseRequirement],
        version: ProtocolVersion,
        error: Optional[str],
        resource: Optional[ResourceInfo],
    ):
        return build_payment_required(
            accepts, version, now=int(self._clock()), error=error, resource=resource
        )

    def _payment_outcome(
        self,
        final: Optional[BaseEvent],
        accepts: Sequence[BaseRequirement],
        resource: Optional[ResourceInfo],
    ) -> PaymentOutcome:
        if isinstance(final, PaymentRequiredEvent):
            v1 = self._challenge(accepts, ProtocolVersion.V1, final.error, resource)
            v2 = self._challenge(accepts, ProtocolVersion.V2, final.error, resource)
            headers = {**payment_required_headers(v1), **payment_required_headers(v2)}
            return PaymentOutcome(status_code=402, headers=headers, body=v2.to_dict())

        if isinstance(final, BadRequestEvent):
            v1 = self._challenge(accepts, ProtocolVersion.V1, final.error, resource)
            v2 = self._challenge(accepts, ProtocolVersion.V2, final.error, resource)
            headers = {**payment_required_headers(v1), **payment_required_headers(v2)}
            return PaymentOutcome(status_code=400, headers=headers, body={"error": final.error})

        if isinstance(final, InvalidPaymentEvent):
            envelope = self._challenge(accepts, final.version, final.result.error, resource)
            body = envelope.to_dict()
            body["invalidReason"] = final.result.invalid_reason.value
            return PaymentOutcome(
                status_code=402,
                headers=payment_required_headers(envelope),
                body=body,
            )

        if isinstance(final, VerifiedEvent):
            return PaymentOutcome(status_code=200, body=final.result.to_dict())

        outcome = self._settlement_outcome(final)
        if outcome is None:
            raise RuntimeError(f"Payment flow ended with unexpected event {final!r}")
        return outcome

    @staticmethod
    def _settlement_outcome(final: Optional[BaseEvent]) -> Optional[PaymentOutcome]:
        if isinstance(final, (SettledEvent, SettlementFailedEvent)):
            return PaymentOutcome(
                status_code=200 if isinstance(final, SettledEvent) else 502,
                headers=settlement_headers(final.settlement, final.version),
                body=SettleResponse.from_settlement(final.settlement).to_dict(),
            )

        if isinstance(final, SettlementQueuedEvent):
            body = SettleResponse(
                success=True,
                network=final.network,
                payer=final.result.payer,
                job_id=final.job_id,
            ).to_dict()
            return PaymentOutcome(status_code=200, body=body)

        return None

