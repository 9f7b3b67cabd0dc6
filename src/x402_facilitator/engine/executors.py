"""
Event chain execution engine.

Provides workflow orchestration on top of EventBus, processing events
recursively until no handler returns a follow-up event.

The chain runs entirely inside the caller's task: every event is yielded
as soon as it is produced and exceptions raised by handlers propagate to
the consumer of ``execute``.
"""

from typing import AsyncGenerator, Optional

from .events import BaseEvent, Dependencies, EventBus


class EventChain:
    """Executes event-driven workflows by chaining event handler results."""

    def __init__(
        self,
        event_bus: EventBus,
        deps: Dependencies,
        max_depth: int = 32,
    ) -> None:
        """
        Initialize event chain executor.

        Args:
            event_bus: The event bus to dispatch events through.
            deps: Dependencies container to pass to handlers.
            max_depth: Longest chain allowed before it is considered cyclic.
        """
        self.event_bus = event_bus
        self.deps = deps
        self.max_depth = max_depth

    async def execute(self, initial_event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """
        Execute event chain starting from initial event.

        Yields:
            Every event produced by handlers, in production order. The
            initial event itself is not yielded.

        Raises:
            RuntimeError: If the chain exceeds ``max_depth`` events.
            TypeError: If a handler returns something other than an event.
        """
        async for event in self._process_event(initial_event, 0):
            yield event

    async def run(self, initial_event: BaseEvent) -> Optional[BaseEvent]:
        """Execute the chain and return its last event, or None if no handler produced one."""
        last: Optional[BaseEvent] = None
        async for event in self.execute(initial_event):
            last = event
        return last

    async def _process_event(self, event: BaseEvent, depth: int) -> AsyncGenerator[BaseEvent, None]:
        """
        Process single event and recursively handle results.

        Args:
            event: The event to process.
            depth: Number of events preceding ``event`` in the chain.

        Yields:
            Events from the chain.
        """
        if depth >= self.max_depth:
            raise RuntimeError(f"Event chain exceeded {self.max_depth} events at {event!r}")

        async for result in self.event_bus.dispatch(event, self.deps):
            if result is None:
                continue
            if not isinstance(result, BaseEvent):
                raise TypeError(f"Handler returned unsupported type: {type(result).__name__}")
            yield result
            async for e in self._process_event(result, depth + 1):
                yield e
