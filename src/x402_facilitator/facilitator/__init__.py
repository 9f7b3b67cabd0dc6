from .flows import select_requirement, setup_event_bus
from .nonces import NonceRecord, NonceTracker, normalize_nonce
from .orchestrator import Facilitator, PaymentOutcome
from .queue import BackoffPolicy, JobStatus, SettlementJob, SettlementQueue
from .settlement import SettlementEngine
from .verification import VerificationEngine

__all__ = [
    "select_requirement",
    "setup_event_bus",
    "NonceRecord",
    "NonceTracker",
    "normalize_nonce",
    "Facilitator",
    "PaymentOutcome",
    "BackoffPolicy",
    "JobStatus",
    "SettlementJob",
    "SettlementQueue",
    "SettlementEngine",
    "VerificationEngine",
]
