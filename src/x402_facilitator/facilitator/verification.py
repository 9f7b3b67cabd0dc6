"""
Verification Engine

Validates a client payment payload against a server requirement. Checks run
in a fixed order and the first failure decides the rejection reason:

1. **Requirement match** -- scheme, CAIP-2 network, asset, recipient and
   amount of the payload satisfy the requirement (offered >= required).
2. **Time window** -- ``validAfter <= now < validBefore``, widened by the
   configured grace period.
3. **Nonce freshness** -- the nonce has not been consumed in the tracker.
4. **Signature** -- the signature recovers to ``authorization.from`` under
   the requirement's EIP-712 domain (ledger client).
5. **Balance** -- optional ``balanceOf`` check through the ledger client.

Rejections are returned as ``VerifyResult`` values and never raised. The
engine only reads the nonce tracker; marking a nonce used is the settlement
engine's job, after the ledger acknowledged the transfer.

``LedgerUnavailableError`` raised by the ledger client propagates: a ledger
outage is not a verdict on the payload.
"""

import logging
import time
from typing import Callable, Optional

from ..engine.exceptions import ConfigurationError
from ..ledger.bases import AuthorizationDomain, LedgerClient
from ..ledger.networks import NetworkRegistry
from ..schemas.bases import InvalidReason, VerifyResult
from ..schemas.messages import BasePayload, BaseRequirement
from .nonces import NonceTracker

logger = logging.getLogger(__name__)


class VerificationEngine:
    """
    Runs the ordered verification checks for "exact" payments.

    Attributes:
        registry: Network registry used to resolve EIP-712 domains
        nonce_tracker: Tracker consulted for replayed nonces
        ledger_client: Default ledger client for signature and balance checks
        check_balance: Whether step 5 runs unless a call opts out
        grace_seconds: Clock-skew tolerance applied to both window bounds

    Example:
        engine = VerificationEngine(registry, tracker, ledger)
        result = await engine.verify(payload, requirement)
        if not result.is_valid:
            print(result.invalid_reason, result.error)
    """

    def __init__(
        self,
        registry: NetworkRegistry,
        nonce_tracker: NonceTracker,
        ledger_client: LedgerClient,
        *,
        check_balance: bool = True,
        grace_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if grace_seconds < 0:
            raise ValueError("grace_seconds must be non-negative")
        self.registry = registry
        self.nonce_tracker = nonce_tracker
        self.ledger_client = ledger_client
        self.check_balance = check_balance
        self.grace_seconds = grace_seconds
        self._clock = clock

    async def verify(
        self,
        payload: BasePayload,
        requirement: BaseRequirement,
        ledger_client: Optional[LedgerClient] = None,
        *,
        skip_balance_check: bool = False,
    ) -> VerifyResult:
        """
        Verify ``payload`` against ``requirement``.

        Args:
            payload: Decoded payment payload (any version)
            requirement: Requirement the payload claims to satisfy (any version)
            ledger_client: Overrides the engine's ledger client for this call
            skip_balance_check: Skip step 5 for this call

        Returns:
            VerifyResult: ``isValid=True`` with the payer, or the first failed
            check as ``invalidReason`` with a human-readable ``error``.

        Raises:
            LedgerUnavailableError: If the ledger could not be consulted.
        """
        ledger = ledger_client or self.ledger_client
        authorization = payload.authorization
        payer = payload.payer

        def _reject(reason: InvalidReason, message: str) -> VerifyResult:
            logger.info("Payment from %s rejected (%s): %s", payer, reason.value, message)
            return VerifyResult.invalid(reason, message, payer=payer)

        # ------------------------------------------------------------------
        # 1. Requirement match
        # ------------------------------------------------------------------
        mismatch = self._match_requirement(payload, requirement)
        if mismatch is not None:
            return _reject(InvalidReason.REQUIREMENT_MISMATCH, mismatch)

        if not self.registry.has_network(requirement.network_id):
            return _reject(
                InvalidReason.REQUIREMENT_MISMATCH,
                f"Unsupported network: '{requirement.network_id}'",
            )

        try:
            domain = self.resolve_domain(requirement)
        except ConfigurationError as exc:
            return _reject(InvalidReason.REQUIREMENT_MISMATCH, f"Unsupported network: {exc}")

        # ------------------------------------------------------------------
        # 2. Time window
        # ------------------------------------------------------------------
        now = int(self._clock())
        if now < authorization.valid_after_ts - self.grace_seconds:
            return _reject(
                InvalidReason.NOT_YET_VALID,
                f"Authorization not yet valid: now={now} < validAfter={authorization.valid_after}",
            )
        if now >= authorization.valid_before_ts + self.grace_seconds:
            return _reject(
                InvalidReason.EXPIRED,
                f"Authorization expired: now={now} >= validBefore={authorization.valid_before}",
            )

        # ------------------------------------------------------------------
        # 3. Nonce freshness
        # ------------------------------------------------------------------
        try:
            reused = self.nonce_tracker.is_used(payload.nonce)
        except (TypeError, ValueError) as exc:
            return _reject(InvalidReason.NONCE_REUSED, f"Unusable nonce: {exc}")
        if reused:
            return _reject(InvalidReason.NONCE_REUSED, f"Nonce already used: {payload.nonce}")

        # ------------------------------------------------------------------
        # 4. Signature
        # ------------------------------------------------------------------
        if not await ledger.verify_signature(authorization, payload.signature, domain):
            return _reject(
                InvalidReason.INVALID_SIGNATURE,
                f"Signature does not recover to {authorization.from_} under domain "
                f"'{domain.name}' v{domain.version}",
            )

        # ------------------------------------------------------------------
        # 5. Balance
        # ------------------------------------------------------------------
        if self.check_balance and not skip_balance_check:
            balance = await ledger.check_balance(payer, requirement.asset_address, requirement.network_id)
            if balance < requirement.required_amount:
                return _reject(
                    InvalidReason.INSUFFICIENT_BALANCE,
                    f"Insufficient balance: have {balance}, need {requirement.required_amount}",
                )

        logger.debug("Payment from %s verified on %s", payer, requirement.network_id)
        return VerifyResult.valid(payer)

    def resolve_domain(self, requirement: BaseRequirement) -> AuthorizationDomain:
        """EIP-712 domain a payment for ``requirement`` must be signed under."""
        return self.registry.resolve_domain(
            requirement.network_id, requirement.asset_address, requirement.extra
        )

    @staticmethod
    def _match_requirement(payload: BasePayload, requirement: BaseRequirement) -> Optional[str]:
        """Return a mismatch description, or None when the payload satisfies ``requirement``."""
        authorization = payload.authorization

        if payload.scheme != requirement.scheme:
            return f"Scheme '{payload.scheme}' does not match '{requirement.scheme}'"

        if payload.network_id != requirement.network_id:
            return f"Network '{payload.network_id}' does not match '{requirement.network_id}'"

        asset = payload.asset_address
        if asset is not None and asset.lower() != requirement.asset_address.lower():
            return f"Asset '{asset}' does not match '{requirement.asset_address}'"

        if authorization.to.lower() != requirement.pay_to.lower():
            return f"Recipient '{authorization.to}' does not match payTo '{requirement.pay_to}'"

        accepted = payload.accepted_amount
        if accepted is not None and accepted < requirement.required_amount:
            return f"Accepted amount {accepted} is below required {requirement.required_amount}"

        if authorization.amount < requirement.required_amount:
            return f"Authorized value {authorization.amount} is below required {requirement.required_amount}"

        return None
