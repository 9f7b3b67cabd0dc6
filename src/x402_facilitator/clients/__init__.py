"""
Client module for calling a remote x402 facilitator.

Resource servers that delegate verification and settlement use
``FacilitatorClient`` instead of embedding a ``Facilitator``.
"""

from .facilitator_client import FacilitatorClient

__all__ = ["FacilitatorClient"]
