"""
x402 Facilitator

Verification and settlement of x402 payment authorizations, served over HTTP
or embedded in a resource server through ``Facilitator.handle_payment``.
"""

from .config import FacilitatorConfig
from .facilitator import Facilitator, PaymentOutcome
from .schemas.versions import ProtocolVersion

__version__ = "0.1.0"

__all__ = [
    "FacilitatorConfig",
    "Facilitator",
    "PaymentOutcome",
    "ProtocolVersion",
]
