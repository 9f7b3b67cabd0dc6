"""
Test suite for the settlement queue.
Tests: 1) Job lifecycle 2) Retry policy 3) Deduplication and shutdown
"""
import asyncio

import pytest

from x402_facilitator.engine.exceptions import (
    LedgerUnavailableError,
    QueueClosedError,
    SettlementFailure,
    SettlementRejectedError,
)
from x402_facilitator.facilitator import BackoffPolicy, JobStatus, SettlementQueue
from x402_facilitator.facilitator.queue import generate_job_id

from mocks import NOW, make_payload_v2, make_requirement_v2


def _pair():
    requirement = make_requirement_v2()
    return make_payload_v2(requirement), requirement


class TestJobLifecycle:

    @pytest.mark.asyncio
    async def test_job_succeeds_and_listener_is_notified(self, queue):
        finished = []

        async def on_finish(job):
            finished.append((job.job_id, job.status))

        queue.add_listener(on_finish)
        job = await queue.enqueue(*_pair())
        assert job.status == JobStatus.PENDING
        assert job.job_id.startswith(f"job_{NOW * 1000}_")

        await queue.join()

        stored = queue.get_job(job.job_id)
        assert stored.status == JobStatus.SUCCEEDED
        assert stored.attempts == 1
        assert stored.result.success
        assert finished == [(job.job_id, JobStatus.SUCCEEDED)]

    @pytest.mark.asyncio
    async def test_job_response_uses_wire_names(self, queue):
        job = await queue.enqueue(*_pair())
        await queue.join()

        body = queue.get_job(job.job_id).to_response().to_dict()
        assert body["jobId"] == job.job_id
        assert body["status"] == "succeeded"
        assert body["result"]["success"] is True
        assert "nextAttemptAt" not in body

    @pytest.mark.asyncio
    async def test_stats_count_jobs_by_state(self, queue, ledger):
        ledger.submit_errors.append(SettlementRejectedError("reverted"))
        await queue.enqueue(*_pair())
        await queue.enqueue(*_pair())
        await queue.join()

        stats = queue.stats()
        assert (stats.succeeded, stats.failed, stats.pending, stats.processing) == (1, 1, 0, 0)

    def test_unknown_job_is_none(self, settlement_engine):
        assert SettlementQueue(settlement_engine).get_job("job_0_missing") is None

    def test_job_ids_are_unique(self):
        assert generate_job_id(1.5) != generate_job_id(1.5)
        assert generate_job_id(1.5).startswith("job_1500_")


class TestRetryPolicy:

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, queue, ledger):
        ledger.submit_errors.extend([SettlementFailure("dropped"), LedgerUnavailableError("timeout")])

        job = await queue.enqueue(*_pair())
        await queue.join()

        assert job.status == JobStatus.SUCCEEDED
        assert job.attempts == 3
        assert job.error is None

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, queue, ledger):
        ledger.submit_errors.extend([SettlementFailure("dropped")] * 4)

        job = await queue.enqueue(*_pair())
        await queue.join()

        assert job.status == JobStatus.FAILED
        assert job.attempts == queue.max_retries + 1
        assert job.error == "dropped"
        assert len(ledger.submitted) == 3

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self, queue, ledger):
        ledger.submit_errors.append(SettlementRejectedError("reverted"))

        job = await queue.enqueue(*_pair())
        await queue.join()

        assert job.status == JobStatus.FAILED
        assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_replayed_nonce_fails_job(self, queue, tracker, ledger):
        payload, requirement = _pair()
        tracker.mark_used(payload.nonce)

        job = await queue.enqueue(payload, requirement)
        await queue.join()

        assert job.status == JobStatus.FAILED
        assert "Nonce already used" in job.error
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_job(self, queue, ledger):
        ledger.submit_errors.append(RuntimeError("boom"))

        job = await queue.enqueue(*_pair())
        await queue.join()

        assert job.status == JobStatus.FAILED
        assert job.error == "Unexpected settlement error: boom"

    def test_fixed_backoff(self, settlement_engine):
        queue = SettlementQueue(settlement_engine, retry_delay=2.0)
        assert [queue.retry_delay_for(n) for n in (1, 2, 3)] == [2.0, 2.0, 2.0]

    def test_exponential_backoff_is_capped(self, settlement_engine):
        queue = SettlementQueue(
            settlement_engine,
            retry_delay=1.0,
            backoff=BackoffPolicy.EXPONENTIAL,
            max_retry_delay=5.0,
        )
        assert [queue.retry_delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    @pytest.mark.parametrize("kwargs", [
        {"max_retries": -1},
        {"retry_delay": -1.0},
        {"concurrency": 0},
    ])
    def test_invalid_settings_rejected(self, settlement_engine, kwargs):
        with pytest.raises(ValueError):
            SettlementQueue(settlement_engine, **kwargs)


class TestDedupeAndShutdown:

    @pytest.mark.asyncio
    async def test_same_nonce_returns_active_job(self, queue, ledger):
        payload, requirement = _pair()

        first = await queue.enqueue(payload, requirement)
        second = await queue.enqueue(payload, requirement)
        await queue.join()

        assert second is first
        assert len(ledger.submitted) == 1

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_stop_workers(self, queue):
        async def broken(job):
            raise RuntimeError("listener bug")

        queue.add_listener(broken)
        first = await queue.enqueue(*_pair())
        second = await queue.enqueue(*_pair())
        await queue.join()

        assert first.status == JobStatus.SUCCEEDED
        assert second.status == JobStatus.SUCCEEDED

    def test_sync_listener_rejected(self, settlement_engine):
        with pytest.raises(TypeError):
            SettlementQueue(settlement_engine).add_listener(lambda job: None)

    @pytest.mark.asyncio
    async def test_closed_queue_rejects_jobs_and_keeps_records(self, queue):
        job = await queue.enqueue(*_pair())
        await queue.join()
        await queue.close()

        assert queue.closed
        with pytest.raises(QueueClosedError):
            await queue.enqueue(*_pair())
        with pytest.raises(QueueClosedError):
            queue.start()
        assert queue.get_job(job.job_id).status == JobStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_close_leaves_unfinished_jobs_readable(self, settlement_engine, ledger, clock):
        queue = SettlementQueue(settlement_engine, retry_delay=60, clock=clock)
        ledger.submit_errors.append(SettlementFailure("dropped"))

        job = await queue.enqueue(*_pair())
        for _ in range(50):
            if job.next_attempt_at is not None:
                break
            await asyncio.sleep(0)
        await queue.close()

        assert job.status == JobStatus.PENDING
        assert job.next_attempt_at == clock.now + 60
        await queue.join()
