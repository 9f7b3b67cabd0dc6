"""
Test suite for the facilitator HTTP server and client.
Requests go through httpx.ASGITransport; no sockets are opened.
"""
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from x402_facilitator.clients import FacilitatorClient
from x402_facilitator.codec import decode_settlement, encode_payload, encode_requirement
from x402_facilitator.engine.exceptions import LedgerUnavailableError, NonceAlreadyUsedError
from x402_facilitator.schemas.bases import InvalidReason
from x402_facilitator.schemas.versions import ProtocolVersion
from x402_facilitator.servers import FacilitatorServer

from mocks import (
    NETWORK,
    NETWORK_V1,
    NOW,
    PAYER_ADDRESS,
    make_payload_v1,
    make_payload_v2,
    make_requirement_v1,
    make_requirement_v2,
)


def body_for(payload, requirement, **extra):
    return {"paymentPayload": payload.to_dict(), "paymentRequirements": requirement.to_dict(), **extra}


@pytest.fixture
def server(facilitator):
    return FacilitatorServer(facilitator=facilitator)


@pytest_asyncio.fixture
async def http(server):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=server), base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def client(server):
    async with FacilitatorClient(base_url="http://test", transport=httpx.ASGITransport(app=server)) as client:
        yield client


class TestVerifyRoute:

    @pytest.mark.asyncio
    async def test_valid_payload(self, http):
        requirement = make_requirement_v2()
        response = await http.post("/verify", json=body_for(make_payload_v2(requirement), requirement))

        assert response.status_code == 200
        assert response.json() == {"isValid": True, "payer": PAYER_ADDRESS}

    @pytest.mark.asyncio
    async def test_rejection_is_reported_with_200(self, http):
        requirement = make_requirement_v2(amount=5000)
        payload = make_payload_v2(requirement, value=1000)

        response = await http.post("/verify", json=body_for(payload, requirement))

        assert response.status_code == 200
        assert response.json()["isValid"] is False
        assert response.json()["invalidReason"] == InvalidReason.REQUIREMENT_MISMATCH.value

    @pytest.mark.asyncio
    async def test_header_encoded_messages_accepted(self, http):
        requirement = make_requirement_v1()
        payload = make_payload_v1()
        body = {
            "paymentPayload": encode_payload(payload, ProtocolVersion.V1).decode("ascii"),
            "paymentRequirements": encode_requirement(requirement, ProtocolVersion.V1).decode("ascii"),
        }

        response = await http.post("/verify", json=body)

        assert response.json()["isValid"] is True

    @pytest.mark.asyncio
    async def test_skip_balance_check(self, http, ledger):
        ledger.set_balance(PAYER_ADDRESS, 0)
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement)

        rejected = await http.post("/verify", json=body_for(payload, requirement))
        accepted = await http.post("/verify", json=body_for(payload, requirement, skipBalanceCheck=True))

        assert rejected.json()["invalidReason"] == "insufficient_balance"
        assert accepted.json()["isValid"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"content": b"not json", "headers": {"content-type": "application/json"}},
        {"json": {"paymentPayload": {}}},
        {"json": {"paymentPayload": {"x402Version": 9}, "paymentRequirements": {}}},
        {"json": {"paymentPayload": "%%%", "paymentRequirements": "%%%"}},
        {
            "content": b'{"paymentPayload": "\\ud800", "paymentRequirements": "\\ud800"}',
            "headers": {"content-type": "application/json"},
        },
    ])
    async def test_malformed_body_is_bad_request(self, http, kwargs):
        response = await http.post("/verify", **kwargs)

        assert response.status_code == 400
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_ledger_outage_is_service_unavailable(self, http, ledger):
        ledger.balance_error = LedgerUnavailableError("rpc down")
        requirement = make_requirement_v2()

        response = await http.post("/verify", json=body_for(make_payload_v2(requirement), requirement))

        assert response.status_code == 503
        assert response.json() == {"error": "rpc down"}


class TestSettleRoute:

    @pytest.mark.asyncio
    async def test_settles_and_returns_response_header(self, http, ledger):
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement)

        response = await http.post("/settle", json=body_for(payload, requirement))

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["network"] == NETWORK
        settlement = decode_settlement(response.headers["PAYMENT-RESPONSE"], ProtocolVersion.V2)
        assert settlement.transaction == response.json()["transaction"]
        assert ledger.submitted == [payload.nonce]

    @pytest.mark.asyncio
    async def test_replay_is_rejected(self, http, ledger):
        requirement = make_requirement_v2()
        body = body_for(make_payload_v2(requirement), requirement)

        await http.post("/settle", json=body)
        response = await http.post("/settle", json=body)

        assert response.status_code == 402
        assert response.json()["invalidReason"] == "nonce_reused"
        assert response.json()["paymentRequirements"] == requirement.to_dict()
        assert len(ledger.submitted) == 1

    @pytest.mark.asyncio
    async def test_nonce_race_is_conflict(self, http, facilitator):
        facilitator.settle = AsyncMock(side_effect=NonceAlreadyUsedError("0x01"))
        requirement = make_requirement_v2()

        response = await http.post("/settle", json=body_for(make_payload_v2(requirement), requirement))

        assert response.status_code == 409
        assert "0x01" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_enqueued_settlement_can_be_polled(self, http, facilitator):
        requirement = make_requirement_v2()
        body = body_for(make_payload_v2(requirement), requirement, enqueue=True)

        response = await http.post("/settle", json=body)
        job_id = response.json()["jobId"]
        await facilitator.queue.join()
        status = await http.get(f"/settle/{job_id}")

        assert response.status_code == 200
        assert status.status_code == 200
        assert status.json()["status"] == "succeeded"
        assert status.json()["result"]["payer"] == PAYER_ADDRESS

    @pytest.mark.asyncio
    async def test_unknown_job_is_not_found(self, http):
        response = await http.get("/settle/job_0_missing")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_closed_queue_is_service_unavailable(self, http, facilitator):
        await facilitator.queue.close()
        requirement = make_requirement_v2()
        body = body_for(make_payload_v2(requirement), requirement, enqueue=True)

        response = await http.post("/settle", json=body)

        assert response.status_code == 503


class TestInformationalRoutes:

    @pytest.mark.asyncio
    async def test_health_reports_queue(self, http, facilitator):
        response = await http.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["queue"] == {"pending": 0, "processing": 0, "succeeded": 0, "failed": 0}

        await facilitator.queue.close()
        assert (await http.get("/health")).json()["status"] == "closing"

    @pytest.mark.asyncio
    async def test_supported_lists_both_versions(self, http):
        kinds = (await http.get("/supported")).json()["kinds"]

        assert {"x402Version": 1, "scheme": "exact", "network": NETWORK_V1} in kinds
        assert {"x402Version": 2, "scheme": "exact", "network": NETWORK} in kinds

    def test_payment_headers_exposed_to_browsers(self, server):
        cors = [m for m in server.user_middleware if m.cls.__name__ == "CORSMiddleware"][0]
        assert "PAYMENT-RESPONSE" in cors.kwargs["expose_headers"]
        assert "X-PAYMENT-RESPONSE" in cors.kwargs["expose_headers"]


class TestFacilitatorClient:

    @pytest.mark.asyncio
    async def test_verify_and_settle(self, client, ledger):
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement)

        verified = await client.verify(payload, requirement)
        settled = await client.settle(payload, requirement)

        assert verified.is_valid
        assert settled.success
        assert settled.payer == PAYER_ADDRESS
        assert settled.transaction == "0x" + "1".zfill(64)

    @pytest.mark.asyncio
    async def test_rejected_settlement_is_a_response(self, client):
        requirement = make_requirement_v2()
        payload = make_payload_v2(requirement, valid_after=NOW - 600, valid_before=NOW - 300)

        settled = await client.settle(payload, requirement)

        assert not settled.success
        assert settled.invalid_reason == InvalidReason.EXPIRED

    @pytest.mark.asyncio
    async def test_conflict_raises(self, client, facilitator):
        facilitator.settle = AsyncMock(side_effect=NonceAlreadyUsedError("0x01"))
        requirement = make_requirement_v2()

        with pytest.raises(httpx.HTTPStatusError):
            await client.settle(make_payload_v2(requirement), requirement)

    @pytest.mark.asyncio
    async def test_job_status(self, client, facilitator):
        requirement = make_requirement_v2()

        queued = await client.settle(make_payload_v2(requirement), requirement, enqueue=True)
        await facilitator.queue.join()
        status = await client.job_status(queued.job_id)

        assert status.status == "succeeded"
        assert status.result.success
        assert await client.job_status("job_0_missing") is None

    @pytest.mark.asyncio
    async def test_informational_routes(self, client):
        health = await client.health()
        supported = await client.supported()

        assert health.status == "ok"
        assert NETWORK in supported.networks
