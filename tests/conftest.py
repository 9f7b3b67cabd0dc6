import pytest
import pytest_asyncio

from x402_facilitator.facilitator import (
    Facilitator,
    NonceTracker,
    SettlementEngine,
    SettlementQueue,
    VerificationEngine,
)
from x402_facilitator.ledger.networks import NetworkRegistry

from mocks import FakeClock, FakeLedgerClient


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return NetworkRegistry.default()


@pytest.fixture
def ledger():
    return FakeLedgerClient()


@pytest.fixture
def tracker(clock):
    return NonceTracker(clock=clock)


@pytest.fixture
def verifier(registry, tracker, ledger, clock):
    return VerificationEngine(registry, tracker, ledger, clock=clock)


@pytest.fixture
def settlement_engine(registry, tracker, ledger, clock):
    return SettlementEngine(registry, tracker, ledger, clock=clock)


@pytest_asyncio.fixture
async def queue(settlement_engine, clock):
    queue = SettlementQueue(settlement_engine, max_retries=2, retry_delay=0, clock=clock)
    yield queue
    await queue.close()


@pytest_asyncio.fixture
async def facilitator(registry, ledger, clock):
    facilitator = Facilitator(registry, ledger, clock=clock, retry_delay=0)
    yield facilitator
    await facilitator.close()
