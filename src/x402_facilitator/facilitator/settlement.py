"""
Settlement Engine

Executes verified authorizations through the ledger client and records the
consumed nonce.

Ordering per nonce:
    1. If the tracker already holds a record carrying a settlement result,
       that result is returned and nothing is resubmitted.
    2. If another settlement of the same nonce is in flight, the caller
       awaits that submission instead of starting its own.
    3. Otherwise the authorization is submitted; once the ledger
       acknowledges the submission the nonce is marked used with the
       result attached as its receipt.

``execute`` raises on failure and is what the settlement queue drives;
``settle`` is the synchronous request path and turns ledger failures into a
failed ``SettlementResult``. ``NonceAlreadyUsedError`` always propagates.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from ..engine.exceptions import (
    ConfigurationError,
    LedgerError,
    NonceAlreadyUsedError,
    SettlementRejectedError,
)
from ..ledger.bases import LedgerClient
from ..ledger.networks import NetworkRegistry
from ..schemas.bases import SettlementResult
from ..schemas.messages import BasePayload, BaseRequirement
from .nonces import NonceTracker, normalize_nonce

logger = logging.getLogger(__name__)


class SettlementEngine:
    """
    Submits authorizations and enforces one settlement per nonce.

    Example:
        engine = SettlementEngine(registry, tracker, ledger)
        result = await engine.settle(payload, requirement)
        if result.success:
            print(result.transaction)
    """

    def __init__(
        self,
        registry: NetworkRegistry,
        nonce_tracker: NonceTracker,
        ledger_client: LedgerClient,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.nonce_tracker = nonce_tracker
        self.ledger_client = ledger_client
        self._clock = clock
        self._inflight: Dict[str, asyncio.Future] = {}

    async def settle(
        self,
        payload: BasePayload,
        requirement: BaseRequirement,
        ledger_client: Optional[LedgerClient] = None,
    ) -> SettlementResult:
        """
        Settle synchronously.

        Returns:
            SettlementResult: ``success=False`` with ``errorReason`` when the
            ledger failed or rejected the transfer.

        Raises:
            NonceAlreadyUsedError: If the nonce was consumed by a different
                settlement between submission and marking.
        """
        try:
            return await self.execute(payload, requirement, ledger_client)
        except LedgerError as exc:
            logger.warning(
                "Settlement of nonce %s on %s failed: %s",
                payload.nonce, requirement.network_id, exc,
            )
            return SettlementResult(
                success=False,
                network=requirement.network_id,
                error_reason=str(exc),
                payer=payload.payer,
            )

    async def execute(
        self,
        payload: BasePayload,
        requirement: BaseRequirement,
        ledger_client: Optional[LedgerClient] = None,
    ) -> SettlementResult:
        """
        Settle, raising on failure.

        Concurrent calls for one nonce share a single submission and all
        receive its outcome.

        Returns:
            SettlementResult: The successful result, or the stored result of
            an earlier settlement of the same nonce.

        Raises:
            SettlementRejectedError: If the transfer can never succeed.
            SettlementFailure: On a retryable submission failure.
            LedgerUnavailableError: If the ledger cannot be reached.
            NonceAlreadyUsedError: If the nonce is consumed without a stored result.
        """
        try:
            key = normalize_nonce(payload.nonce)
        except (TypeError, ValueError) as exc:
            raise SettlementRejectedError(f"Unusable nonce: {exc}") from exc

        record = self.nonce_tracker.get_record(key)
        if record is not None:
            if isinstance(record.receipt, SettlementResult):
                logger.debug("Nonce %s already settled in %s", key, record.receipt.transaction)
                return record.receipt
            raise NonceAlreadyUsedError(payload.nonce)

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await self._submit(payload, requirement, ledger_client or self.ledger_client)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # marks the exception as retrieved
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            del self._inflight[key]

    async def _submit(
        self,
        payload: BasePayload,
        requirement: BaseRequirement,
        ledger: LedgerClient,
    ) -> SettlementResult:
        authorization = payload.authorization
        now = int(self._clock())
        if now >= authorization.valid_before_ts:
            raise SettlementRejectedError(
                f"Authorization expired before settlement: now={now} >= validBefore={authorization.valid_before}"
            )

        try:
            domain = self.registry.resolve_domain(
                requirement.network_id, requirement.asset_address, requirement.extra
            )
        except ConfigurationError as exc:
            raise SettlementRejectedError(str(exc)) from exc

        transaction = await ledger.submit(authorization, payload.signature, domain)
        result = SettlementResult(
            success=True,
            transaction=transaction,
            network=requirement.network_id,
            payer=payload.payer,
        )
        self.nonce_tracker.mark_used(payload.nonce, receipt=result)
        logger.info("Settled nonce %s from %s in %s", payload.nonce, payload.payer, transaction)
        return result
