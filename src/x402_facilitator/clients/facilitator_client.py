"""
Facilitator HTTP Client

Thin httpx wrapper over the facilitator routes. Payloads and requirements
are sent as wire JSON objects; responses are parsed back into the shared
schema models.
"""

import logging
from typing import Optional

import httpx

from ..schemas.bases import VerifyResult
from ..schemas.https import (
    HealthResponse,
    JobStatusResponse,
    SettleRequest,
    SettleResponse,
    SupportedResponse,
    VerifyRequest,
)
from ..schemas.messages import BasePayload, BaseRequirement

logger = logging.getLogger(__name__)

# POST /settle answers these with a SettleResponse body
SETTLE_RESPONSE_CODES = (200, 402, 502)


class FacilitatorClient(httpx.AsyncClient):
    """
    Extended httpx.AsyncClient speaking the facilitator API.

    Fully compatible with httpx.AsyncClient and usable as an async context
    manager.

    Usage:
        ```python
        async with FacilitatorClient(base_url="https://facilitator.example.com") as client:
            result = await client.verify(payload, requirement)
            if result.is_valid:
                settlement = await client.settle(payload, requirement)
        ```
    """

    def __init__(self, base_url: str = "http://localhost:8402", **kwargs):
        """
        Args:
            base_url: Facilitator root URL
            **kwargs: All standard httpx.AsyncClient arguments (timeout, headers, transport, etc.)
        """
        super().__init__(base_url=base_url, **kwargs)

    # =========================================================================
    # Facilitator Operations
    # =========================================================================

    async def verify(
        self,
        payload: BasePayload,
        requirement: BaseRequirement,
        *,
        skip_balance_check: bool = False
    ) -> VerifyResult:
        """
        Ask the facilitator to verify a payload.

        Returns:
            VerifyResult: Outcome; rejections are results, not exceptions.

        Raises:
            httpx.HTTPStatusError: On 4xx/5xx responses (malformed input, ledger outage).
        """
        request = VerifyRequest(
            payment_payload=payload.to_dict(),
            payment_requirements=requirement.to_dict(),
            skip_balance_check=skip_balance_check,
        )
        response = await self.post("/verify", json=request.to_dict())
        response.raise_for_status()
        return VerifyResult.model_validate(response.json())

    async def settle(
        self,
        payload: BasePayload,
        requirement: BaseRequirement,
        *,
        enqueue: bool = False
    ) -> SettleResponse:
        """
        Ask the facilitator to verify and settle a payload.

        Args:
            enqueue: Settle through the facilitator's queue; the response
                then carries ``job_id`` for ``job_status``

        Returns:
            SettleResponse: Settled, enqueued, rejected (402) or failed (502).

        Raises:
            httpx.HTTPStatusError: On other error statuses, e.g. 409 for a replayed nonce.
        """
        request = SettleRequest(
            payment_payload=payload.to_dict(),
            payment_requirements=requirement.to_dict(),
            enqueue=enqueue,
        )
        response = await self.post("/settle", json=request.to_dict())
        if response.status_code not in SETTLE_RESPONSE_CODES:
            response.raise_for_status()
        result = SettleResponse.model_validate(response.json())
        if not result.success:
            logger.info("Facilitator declined settlement (%s): %s", response.status_code, result.error)
        return result

    async def job_status(self, job_id: str) -> Optional[JobStatusResponse]:
        """Fetch an enqueued settlement's state; None for unknown jobs."""
        response = await self.get(f"/settle/{job_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return JobStatusResponse.model_validate(response.json())

    async def health(self) -> HealthResponse:
        response = await self.get("/health")
        response.raise_for_status()
        return HealthResponse.model_validate(response.json())

    async def supported(self) -> SupportedResponse:
        response = await self.get("/supported")
        response.raise_for_status()
        return SupportedResponse.model_validate(response.json())
