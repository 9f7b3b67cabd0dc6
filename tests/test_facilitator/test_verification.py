"""
Test suite for the verification engine.
Tests: 1) Accepting valid payloads of both versions 2) Each rejection reason 3) Check order
"""
import pytest

from x402_facilitator.engine.exceptions import LedgerUnavailableError
from x402_facilitator.facilitator import VerificationEngine
from x402_facilitator.schemas.bases import InvalidReason

from mocks import (
    NOW,
    OTHER_ADDRESS,
    OTHER_PRIVATE_KEY,
    PAYER_ADDRESS,
    USDC_ADDRESS,
    make_payload_v1,
    make_payload_v2,
    make_requirement_v1,
    make_requirement_v2,
    sign_exact,
    tamper,
)


class TestValidPayments:

    @pytest.mark.asyncio
    async def test_v2_payload_verifies(self, verifier):
        requirement = make_requirement_v2()
        result = await verifier.verify(make_payload_v2(requirement), requirement)

        assert result.is_valid
        assert result.invalid_reason is None
        assert result.payer == PAYER_ADDRESS
        assert result.to_dict() == {"isValid": True, "payer": PAYER_ADDRESS}

    @pytest.mark.asyncio
    async def test_v1_payload_verifies(self, verifier):
        result = await verifier.verify(make_payload_v1(), make_requirement_v1())
        assert result.is_success()

    @pytest.mark.asyncio
    async def test_overpayment_is_accepted(self, verifier):
        requirement = make_requirement_v2(amount=1000)
        payload = make_payload_v2(make_requirement_v2(amount=1500))

        assert (await verifier.verify(payload, requirement)).is_valid

    @pytest.mark.asyncio
    async def test_verification_does_not_consume_nonce(self, verifier, tracker):
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement)

        await verifier.verify(payload, requirement)
        assert not tracker.is_used(payload.nonce)
        assert (await verifier.verify(payload, requirement)).is_valid


class TestRequirementMismatch:

    @pytest.mark.asyncio
    async def test_wrong_recipient(self, verifier):
        requirement = make_requirement_v1()
        payload = make_payload_v1(recipient=OTHER_ADDRESS)

        result = await verifier.verify(payload, requirement)
        assert result.invalid_reason == InvalidReason.REQUIREMENT_MISMATCH
        assert "payTo" in result.error
        assert result.payer == PAYER_ADDRESS

    @pytest.mark.asyncio
    async def test_authorized_value_below_required(self, verifier):
        result = await verifier.verify(make_payload_v1(value=999), make_requirement_v1(amount=1000))
        assert result.invalid_reason == InvalidReason.REQUIREMENT_MISMATCH

    @pytest.mark.asyncio
    async def test_accepted_amount_below_required(self, verifier):
        payload = make_payload_v2(make_requirement_v2(amount=500), value=1000)
        result = await verifier.verify(payload, make_requirement_v2(amount=1000))

        assert result.invalid_reason == InvalidReason.REQUIREMENT_MISMATCH
        assert "Accepted amount" in result.error

    @pytest.mark.asyncio
    async def test_network_mismatch(self, verifier):
        result = await verifier.verify(make_payload_v1(network="base"), make_requirement_v1())
        assert result.invalid_reason == InvalidReason.REQUIREMENT_MISMATCH

    @pytest.mark.asyncio
    async def test_asset_mismatch(self, verifier):
        other_asset = make_requirement_v2(asset="0x" + "1" * 40)
        result = await verifier.verify(make_payload_v2(other_asset), make_requirement_v2())
        assert result.invalid_reason == InvalidReason.REQUIREMENT_MISMATCH

    @pytest.mark.asyncio
    async def test_asset_comparison_ignores_case(self, verifier):
        requirement = make_requirement_v2(asset=USDC_ADDRESS.lower())
        payload = make_payload_v2(make_requirement_v2())

        assert (await verifier.verify(payload, requirement)).is_valid

    @pytest.mark.asyncio
    async def test_non_evm_network_is_a_mismatch(self, verifier):
        requirement = make_requirement_v2(network="solana:mainnet")
        result = await verifier.verify(make_payload_v2(requirement), requirement)

        assert result.invalid_reason == InvalidReason.REQUIREMENT_MISMATCH
        assert "Unsupported network" in result.error

    @pytest.mark.asyncio
    async def test_unknown_evm_network_is_a_mismatch(self, verifier):
        requirement = make_requirement_v2(network="eip155:999999")
        result = await verifier.verify(make_payload_v2(requirement), requirement)

        assert result.invalid_reason == InvalidReason.REQUIREMENT_MISMATCH
        assert "eip155:999999" in result.error


class TestTimeWindow:

    @pytest.mark.asyncio
    async def test_not_yet_valid(self, verifier):
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement, valid_after=NOW + 10, valid_before=NOW + 300)

        result = await verifier.verify(payload, requirement)
        assert result.invalid_reason == InvalidReason.NOT_YET_VALID

    @pytest.mark.asyncio
    async def test_valid_after_bound_is_inclusive(self, verifier):
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement, valid_after=NOW, valid_before=NOW + 300)

        assert (await verifier.verify(payload, requirement)).is_valid

    @pytest.mark.asyncio
    async def test_valid_before_bound_is_exclusive(self, verifier):
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement, valid_after=NOW - 300, valid_before=NOW)

        result = await verifier.verify(payload, requirement)
        assert result.invalid_reason == InvalidReason.EXPIRED

    @pytest.mark.asyncio
    async def test_grace_widens_both_bounds(self, registry, tracker, ledger, clock):
        verifier = VerificationEngine(registry, tracker, ledger, grace_seconds=10, clock=clock)
        requirement = make_requirement_v2()
        early = make_payload_v2(requirement, valid_after=NOW + 10, valid_before=NOW + 300)
        late = make_payload_v2(requirement, valid_after=NOW - 300, valid_before=NOW - 5)
        too_late = make_payload_v2(requirement, valid_after=NOW - 300, valid_before=NOW - 10)

        assert (await verifier.verify(early, requirement)).is_valid
        assert (await verifier.verify(late, requirement)).is_valid
        assert (await verifier.verify(too_late, requirement)).invalid_reason == InvalidReason.EXPIRED

    def test_negative_grace_rejected(self, registry, tracker, ledger):
        with pytest.raises(ValueError):
            VerificationEngine(registry, tracker, ledger, grace_seconds=-1)


class TestNonceAndSignature:

    @pytest.mark.asyncio
    async def test_reused_nonce(self, verifier, tracker):
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement)
        tracker.mark_used(payload.nonce)

        result = await verifier.verify(payload, requirement)
        assert result.invalid_reason == InvalidReason.NONCE_REUSED

    @pytest.mark.asyncio
    async def test_signature_from_another_key(self, verifier):
        requirement = make_requirement_v1()
        forged = tamper(sign_exact(private_key=OTHER_PRIVATE_KEY), from_=PAYER_ADDRESS)
        payload = make_payload_v1().model_copy(update={"payload": forged})

        result = await verifier.verify(payload, requirement)
        assert result.invalid_reason == InvalidReason.INVALID_SIGNATURE

    @pytest.mark.asyncio
    async def test_signed_fields_cannot_be_altered(self, verifier):
        requirement = make_requirement_v1()
        original = make_payload_v1()
        altered = original.model_copy(update={"payload": tamper(original.payload, value="5000")})

        result = await verifier.verify(altered, requirement)
        assert result.invalid_reason == InvalidReason.INVALID_SIGNATURE

    @pytest.mark.asyncio
    async def test_signature_checked_under_requirement_domain(self, verifier):
        requirement = make_requirement_v2(extra={"name": "USD Coin", "version": "2"})
        payload = make_payload_v2(make_requirement_v2())

        result = await verifier.verify(payload, requirement)
        assert result.invalid_reason == InvalidReason.INVALID_SIGNATURE


class TestBalance:

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, verifier, ledger):
        ledger.set_balance(PAYER_ADDRESS, 999)
        requirement = make_requirement_v2(amount=1000)

        result = await verifier.verify(make_payload_v2(requirement), requirement)
        assert result.invalid_reason == InvalidReason.INSUFFICIENT_BALANCE

    @pytest.mark.asyncio
    async def test_balance_check_can_be_skipped(self, registry, tracker, ledger, clock, verifier):
        ledger.set_balance(PAYER_ADDRESS, 0)
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement)

        assert (await verifier.verify(payload, requirement, skip_balance_check=True)).is_valid

        no_balance = VerificationEngine(registry, tracker, ledger, check_balance=False, clock=clock)
        assert (await no_balance.verify(payload, requirement)).is_valid

    @pytest.mark.asyncio
    async def test_ledger_outage_propagates(self, verifier, ledger):
        ledger.balance_error = LedgerUnavailableError("rpc down")
        requirement = make_requirement_v2()

        with pytest.raises(LedgerUnavailableError):
            await verifier.verify(make_payload_v2(requirement), requirement)


class TestCheckOrder:

    @pytest.mark.asyncio
    async def test_mismatch_reported_before_expiry(self, verifier):
        payload = make_payload_v1(value=1, valid_after=NOW - 300, valid_before=NOW - 1)
        result = await verifier.verify(payload, make_requirement_v1())
        assert result.invalid_reason == InvalidReason.REQUIREMENT_MISMATCH

    @pytest.mark.asyncio
    async def test_expiry_reported_before_reuse(self, verifier, tracker):
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement, valid_after=NOW - 300, valid_before=NOW - 1)
        tracker.mark_used(payload.nonce)

        result = await verifier.verify(payload, requirement)
        assert result.invalid_reason == InvalidReason.EXPIRED

    @pytest.mark.asyncio
    async def test_reuse_reported_before_bad_signature(self, verifier, tracker):
        requirement = make_requirement_v1()
        original = make_payload_v1()
        altered = original.model_copy(update={"payload": tamper(original.payload, value="5000")})
        tracker.mark_used(altered.nonce)

        result = await verifier.verify(altered, requirement)
        assert result.invalid_reason == InvalidReason.NONCE_REUSED

    @pytest.mark.asyncio
    async def test_bad_signature_reported_before_balance(self, verifier, ledger):
        ledger.set_balance(PAYER_ADDRESS, 0)
        requirement = make_requirement_v1()
        forged = tamper(sign_exact(private_key=OTHER_PRIVATE_KEY), from_=PAYER_ADDRESS)
        payload = make_payload_v1().model_copy(update={"payload": forged})

        result = await verifier.verify(payload, requirement)
        assert result.invalid_reason == InvalidReason.INVALID_SIGNATURE
