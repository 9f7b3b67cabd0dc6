"""
Event-driven payment flow with typed events and clear data flow.

Events carry their own data, handlers return the next event, and the
facilitator's engines are injected separately through ``Dependencies``.

Flow::

    PaymentRequestEvent
        ├── PaymentRequiredEvent        (no payment header, 402)
        ├── BadRequestEvent             (undecodable header, 400)
        └── PayloadReceivedEvent
                ├── InvalidPaymentEvent (verification failed, 402)
                └── VerifiedEvent       (terminal in ``verify`` mode, 200)
                        ├── SettledEvent           (200)
                        ├── SettlementFailedEvent  (502)
                        └── SettlementQueuedEvent  (200 with job id)
"""

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncGenerator, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from ..schemas.bases import SettlementMode, SettlementResult, VerifyResult
from ..schemas.messages import BasePayload, BaseRequirement, ResourceInfo
from ..schemas.versions import ProtocolVersion

if TYPE_CHECKING:
    from ..facilitator.queue import SettlementQueue
    from ..facilitator.settlement import SettlementEngine
    from ..facilitator.verification import VerificationEngine

# ==================== Base Event ====================

class BaseEvent(ABC):
    """Base class for all events in the system."""

    @abstractmethod
    def __repr__(self) -> str:
        """String representation of the event."""
        pass


class FlowEvent(BaseModel, BaseEvent):
    """Pydantic base for flow events."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# ==================== Trigger Events (External) ====================

class PaymentRequestEvent(FlowEvent):
    """External trigger: a resource request that may carry a payment header."""
    headers: Dict[str, str]
    accepts: List[BaseRequirement]
    mode: SettlementMode = SettlementMode.SETTLE
    resource: Optional[ResourceInfo] = None

    def __repr__(self) -> str:
        return f"PaymentRequestEvent(accepts={len(self.accepts)}, mode={self.mode.value})"


class PayloadReceivedEvent(FlowEvent):
    """A decoded payload awaiting verification against the offered requirements."""
    payload: BasePayload
    accepts: List[BaseRequirement]
    mode: SettlementMode = SettlementMode.SETTLE
    skip_balance_check: bool = False
    resource: Optional[ResourceInfo] = None

    @property
    def version(self) -> ProtocolVersion:
        return ProtocolVersion.from_value(self.payload.x402_version)

    def __repr__(self) -> str:
        return f"PayloadReceivedEvent(payer={self.payload.payer}, mode={self.mode.value})"


# ==================== Result Events ====================

class PaymentRequiredEvent(FlowEvent):
    """Result: no payment attached, challenge the client (402)."""
    accepts: List[BaseRequirement]
    error: Optional[str] = None
    resource: Optional[ResourceInfo] = None

    def __repr__(self) -> str:
        return f"PaymentRequiredEvent(accepts={len(self.accepts)})"


class BadRequestEvent(FlowEvent):
    """Result: the payment header could not be decoded (400)."""
    error: str

    def __repr__(self) -> str:
        return f"BadRequestEvent(error={self.error})"


class InvalidPaymentEvent(FlowEvent):
    """Result: verification failed, challenge again with fresh requirements (402)."""
    result: VerifyResult
    accepts: List[BaseRequirement]
    version: ProtocolVersion
    resource: Optional[ResourceInfo] = None

    def __repr__(self) -> str:
        reason = self.result.invalid_reason.value if self.result.invalid_reason else None
        return f"InvalidPaymentEvent(reason={reason})"


class VerifiedEvent(FlowEvent):
    """Result: payload verified against ``requirement``."""
    payload: BasePayload
    requirement: BaseRequirement
    result: VerifyResult
    mode: SettlementMode = SettlementMode.SETTLE

    @property
    def version(self) -> ProtocolVersion:
        return ProtocolVersion.from_value(self.payload.x402_version)

    def __repr__(self) -> str:
        return f"VerifiedEvent(payer={self.result.payer}, mode={self.mode.value})"


class SettledEvent(FlowEvent):
    """Result: settlement succeeded (200)."""
    settlement: SettlementResult
    version: ProtocolVersion

    def __repr__(self) -> str:
        return f"SettledEvent(transaction={self.settlement.transaction})"


class SettlementFailedEvent(FlowEvent):
    """Result: settlement failed (502)."""
    settlement: SettlementResult
    version: ProtocolVersion

    def __repr__(self) -> str:
        return f"SettlementFailedEvent(error={self.settlement.error_reason})"


class SettlementQueuedEvent(FlowEvent):
    """Result: settlement handed to the queue (200 with job id)."""
    job_id: str
    result: VerifyResult
    network: str
    version: ProtocolVersion

    def __repr__(self) -> str:
        return f"SettlementQueuedEvent(job_id={self.job_id})"


# ==================== Dependencies Container ====================

@dataclass(frozen=True)
class Dependencies:
    """Container for infrastructure dependencies (read-only)."""
    verifier: "VerificationEngine"
    settlement_engine: "SettlementEngine"
    queue: Optional["SettlementQueue"] = None
    clock: Callable[[], float] = time.time


# ==================== Event Bus ====================

EventHandlerFunc = Callable[[BaseEvent, Dependencies], Awaitable[Optional[BaseEvent]]]
EventHookFunc = Callable[[BaseEvent, Dependencies], Awaitable[None]]


class EventBus:
    """Event dispatcher for publishing and subscribing to events."""

    def __init__(self) -> None:
        """Initialize with empty subscribers and hooks."""
        self._subscribers: Dict[type, List[EventHandlerFunc]] = {}
        self._hooks: Dict[type, List[EventHookFunc]] = {}

    def subscribe(self, event_class: type, handler: EventHandlerFunc) -> None:
        """
        Register an async handler for the given event class.
        Multiple handlers can be subscribed to the same event type and run in parallel.

        Args:
            event_class: The event class to subscribe to.
            handler: The async handler function to call when the event is published.

        Raises:
            TypeError: If handler is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(handler):
            raise TypeError(f"Handler must be a coroutine function, got {type(handler).__name__}")
        self._subscribers.setdefault(event_class, []).append(handler)

    def hook(self, event_class: type, hook_func: EventHookFunc) -> None:
        """
        Register a hook for the given event class.
        Hooks are executed before subscribers when the event is dispatched.

        Args:
            event_class: The event class to hook into.
            hook_func: The hook function to call when the event is published.

        Raises:
            TypeError: If hook_func is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(hook_func):
            raise TypeError(f"Hook must be a coroutine function, got {type(hook_func).__name__}")
        self._hooks.setdefault(event_class, []).append(hook_func)

    def has_subscribers(self, event_class: type) -> bool:
        return bool(self._subscribers.get(event_class))

    async def dispatch(self, event: BaseEvent, deps: Dependencies) -> AsyncGenerator[Optional[BaseEvent], None]:
        """
        Dispatch an event to all registered hooks and subscribers.
        Hooks run first, then all subscribers run in parallel.

        Args:
            event: The event to dispatch.
            deps: Dependencies container with injected services.

        Yields:
            Results from all subscribers as they complete. Yields nothing if no subscribers are registered.
        """
        hooks = self._hooks.get(type(event), [])
        await asyncio.gather(*(hook(event, deps) for hook in hooks))

        handlers = self._subscribers.get(type(event), [])
        if not handlers:
            return

        for coro in asyncio.as_completed([handler(event, deps) for handler in handlers]):
            yield await coro
