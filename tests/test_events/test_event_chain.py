"""
Test suite for EventChain execution engine.
Tests: 1) Event execution order 2) Event collection correctness 3) Chain termination and errors
"""
import pytest

from x402_facilitator.engine.events import Dependencies, EventBus, FlowEvent
from x402_facilitator.engine.executors import EventChain


class StartEvent(FlowEvent):
    value: int = 0


class MiddleEvent(FlowEvent):
    value: int


class EndEvent(FlowEvent):
    value: int


async def handle_start(event: StartEvent, deps: Dependencies):
    return MiddleEvent(value=event.value + 1)


async def handle_middle(event: MiddleEvent, deps: Dependencies):
    return EndEvent(value=event.value * 10)


def make_deps():
    return Dependencies(verifier=None, settlement_engine=None)


def make_bus():
    event_bus = EventBus()
    event_bus.subscribe(StartEvent, handle_start)
    event_bus.subscribe(MiddleEvent, handle_middle)
    return event_bus


@pytest.mark.asyncio
async def test_events_yielded_in_production_order():
    chain = EventChain(make_bus(), make_deps())

    events = [event async for event in chain.execute(StartEvent(value=1))]

    assert [type(event) for event in events] == [MiddleEvent, EndEvent]
    assert events[-1].value == 20


@pytest.mark.asyncio
async def test_run_returns_last_event():
    chain = EventChain(make_bus(), make_deps())

    assert (await chain.run(StartEvent(value=4))).value == 50
    assert await chain.run(EndEvent(value=1)) is None


@pytest.mark.asyncio
async def test_break_stops_remaining_handlers():
    """Breaking out of the generator prevents downstream handlers from running."""
    calls = []

    async def record_middle(event, deps):
        calls.append(event)
        return None

    event_bus = EventBus()
    event_bus.subscribe(StartEvent, handle_start)
    event_bus.subscribe(MiddleEvent, record_middle)
    chain = EventChain(event_bus, make_deps())

    async for event in chain.execute(StartEvent()):
        if isinstance(event, MiddleEvent):
            break

    assert calls == []


@pytest.mark.asyncio
async def test_all_subscribers_contribute():
    async def also_end(event, deps):
        return EndEvent(value=-1)

    event_bus = make_bus()
    event_bus.subscribe(MiddleEvent, also_end)
    chain = EventChain(event_bus, make_deps())

    events = [event async for event in chain.execute(StartEvent())]

    assert sorted(event.value for event in events if isinstance(event, EndEvent)) == [-1, 10]


@pytest.mark.asyncio
async def test_hooks_run_before_handlers():
    order = []

    async def hook(event, deps):
        order.append("hook")

    async def handler(event, deps):
        order.append("handler")

    event_bus = EventBus()
    event_bus.hook(StartEvent, hook)
    event_bus.subscribe(StartEvent, handler)

    await EventChain(event_bus, make_deps()).run(StartEvent())
    assert order == ["hook", "handler"]


@pytest.mark.asyncio
async def test_cyclic_chain_is_cut_at_max_depth():
    async def loop(event, deps):
        return StartEvent(value=event.value + 1)

    event_bus = EventBus()
    event_bus.subscribe(StartEvent, loop)

    with pytest.raises(RuntimeError):
        await EventChain(event_bus, make_deps(), max_depth=5).run(StartEvent())


@pytest.mark.asyncio
async def test_non_event_result_is_rejected():
    async def bad(event, deps):
        return {"not": "an event"}

    event_bus = EventBus()
    event_bus.subscribe(StartEvent, bad)

    with pytest.raises(TypeError):
        await EventChain(event_bus, make_deps()).run(StartEvent())


@pytest.mark.asyncio
async def test_handler_exceptions_propagate():
    async def fail(event, deps):
        raise ValueError("handler failed")

    event_bus = EventBus()
    event_bus.subscribe(StartEvent, fail)

    with pytest.raises(ValueError, match="handler failed"):
        await EventChain(event_bus, make_deps()).run(StartEvent())


def test_sync_handlers_rejected():
    event_bus = EventBus()

    with pytest.raises(TypeError):
        event_bus.subscribe(StartEvent, lambda event, deps: None)
    with pytest.raises(TypeError):
        event_bus.hook(StartEvent, lambda event, deps: None)
    assert not event_bus.has_subscribers(StartEvent)
