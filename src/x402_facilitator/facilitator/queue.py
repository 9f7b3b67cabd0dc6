"""
Settlement Queue

Asynchronous settlement with bounded retries. ``enqueue`` records a
``SettlementJob`` in the ``pending`` state and hands its id to a pool of
asyncio workers; request latency is decoupled from ledger latency.

Job lifecycle::

    pending -> processing -> succeeded
                   |
                   +-> pending (transient failure, retry scheduled)
                   +-> failed  (permanent failure or retries exhausted)

Retry policy:
    A job gets ``max_retries + 1`` attempts in total. After a transient
    failure (``SettlementFailure``, ``LedgerUnavailableError``) the next
    attempt is scheduled ``retry_delay`` seconds later (``fixed``) or
    ``retry_delay * 2 ** (attempt - 1)`` seconds later (``exponential``),
    never more than ``max_retry_delay``. ``SettlementRejectedError``, a
    replayed nonce and unexpected errors fail the job immediately.

Each job is executed by at most one worker at a time; up to
``concurrency`` distinct jobs run in parallel. Terminal jobs are reported to
registered listeners and remain readable through ``get_job``.
"""

import asyncio
import inspect
import logging
import os
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set

from pydantic import Field

from ..engine.exceptions import (
    LedgerError,
    NonceAlreadyUsedError,
    QueueClosedError,
)
from ..schemas.bases import CanonicalModel, SettlementResult
from ..schemas.https import JobStatusResponse, QueueStats
from ..schemas.messages import PaymentPayload, Requirement
from .nonces import normalize_nonce
from .settlement import SettlementEngine

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BackoffPolicy(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class SettlementJob(CanonicalModel):
    """
    One queued settlement.

    Created by ``enqueue`` and mutated only by the queue's workers.

    Attributes:
        job_id: ``job_<unix-ms>_<hex>`` identifier
        payload: Verified payment payload
        requirement: Requirement the payload was verified against
        status: Current lifecycle state
        attempts: Settlement attempts started so far
        next_attempt_at: Unix seconds of the scheduled retry, while one is pending
        result: Settlement result once succeeded
        error: Last failure message
    """

    job_id: str = Field(..., alias="jobId", description="Job identifier")
    payload: PaymentPayload = Field(..., description="Payment payload to settle")
    requirement: Requirement = Field(..., description="Requirement the payload satisfies")
    status: JobStatus = Field(JobStatus.PENDING, description="Lifecycle state")
    attempts: int = Field(0, ge=0, description="Settlement attempts started")
    next_attempt_at: Optional[float] = Field(None, alias="nextAttemptAt", description="Scheduled retry time")
    created_at: float = Field(..., alias="createdAt", description="Unix seconds when enqueued")
    updated_at: float = Field(..., alias="updatedAt", description="Unix seconds of the last transition")
    result: Optional[SettlementResult] = Field(None, description="Result of the successful attempt")
    error: Optional[str] = Field(None, description="Last failure message")

    def to_response(self) -> JobStatusResponse:
        return JobStatusResponse(
            job_id=self.job_id,
            status=self.status.value,
            attempts=self.attempts,
            created_at=self.created_at,
            updated_at=self.updated_at,
            next_attempt_at=self.next_attempt_at,
            result=self.result,
            error=self.error,
        )


JobListener = Callable[[SettlementJob], Awaitable[None]]


def _nonce_key(payload: PaymentPayload) -> str:
    try:
        return normalize_nonce(payload.nonce)
    except (TypeError, ValueError):
        return payload.nonce


def generate_job_id(now: Optional[float] = None) -> str:
    millis = int((now if now is not None else time.time()) * 1000)
    return f"job_{millis}_{os.urandom(8).hex()}"


class SettlementQueue:
    """
    Supervised asyncio worker pool for settlement jobs.

    Example:
        queue = SettlementQueue(engine, max_retries=3, backoff=BackoffPolicy.EXPONENTIAL)
        queue.start()
        job = await queue.enqueue(payload, requirement)
        await queue.join()
        queue.get_job(job.job_id).status   # JobStatus.SUCCEEDED
        await queue.close()
    """

    def __init__(
        self,
        engine: SettlementEngine,
        *,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        backoff: BackoffPolicy = BackoffPolicy.FIXED,
        max_retry_delay: float = 60.0,
        concurrency: int = 4,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            engine: Settlement engine driven by the workers
            max_retries: Retries after the first attempt
            retry_delay: Base delay between attempts, in seconds
            backoff: ``fixed`` or ``exponential`` delay growth
            max_retry_delay: Upper bound for a single delay, in seconds
            concurrency: Number of worker tasks
            clock: Time source returning unix seconds
        """
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if retry_delay < 0 or max_retry_delay < 0:
            raise ValueError("retry delays must be non-negative")
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.engine = engine
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.backoff = BackoffPolicy(backoff)
        self.max_retry_delay = max_retry_delay
        self.concurrency = concurrency
        self._clock = clock

        self._jobs: Dict[str, SettlementJob] = {}
        self._active_by_nonce: Dict[str, str] = {}
        self._ready: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._retry_timers: Set[asyncio.Task] = set()
        self._listeners: List[JobListener] = []
        self._active = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    # ==================== Lifecycle ====================

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """
        Launch the worker tasks. Must be called from a running event loop.

        Idempotent; ``enqueue`` also starts the workers on first use.
        """
        if self._closed:
            raise QueueClosedError("Settlement queue is closed")
        if self._workers:
            return
        loop = asyncio.get_running_loop()
        self._workers = [
            loop.create_task(self._worker(), name=f"settlement-worker-{index}")
            for index in range(self.concurrency)
        ]

    async def close(self) -> None:
        """
        Stop accepting jobs and cancel the workers.

        Job records are kept: jobs that never reached a terminal state stay
        readable as ``pending`` or ``processing``.
        """
        if self._closed:
            return
        self._closed = True
        tasks = self._workers + list(self._retry_timers)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._retry_timers.clear()
        self._idle.set()
        logger.info("Settlement queue closed with %d unfinished job(s)", self._active)

    async def join(self) -> None:
        """Wait until every enqueued job reached a terminal state, or the queue closed."""
        while self._active and not self._closed:
            await self._idle.wait()

    # ==================== Jobs ====================

    async def enqueue(self, payload: PaymentPayload, requirement: Requirement) -> SettlementJob:
        """
        Queue a verified payload for settlement.

        A payload whose nonce already has an unfinished job returns that job
        instead of creating a second one.

        Raises:
            QueueClosedError: After ``close()``.
        """
        if self._closed:
            raise QueueClosedError("Settlement queue is closed")

        nonce_key = _nonce_key(payload)
        existing = self._active_by_nonce.get(nonce_key)
        if existing is not None:
            return self._jobs[existing]

        now = self._clock()
        job = SettlementJob(
            job_id=generate_job_id(now),
            payload=payload,
            requirement=requirement,
            created_at=now,
            updated_at=now,
        )
        self._jobs[job.job_id] = job
        self._active_by_nonce[nonce_key] = job.job_id
        self._active += 1
        self._idle.clear()

        self.start()
        self._ready.put_nowait(job.job_id)
        logger.debug("Enqueued settlement job %s for nonce %s", job.job_id, payload.nonce)
        return job

    def get_job(self, job_id: str) -> Optional[SettlementJob]:
        return self._jobs.get(job_id)

    def stats(self) -> QueueStats:
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1
        return QueueStats(
            pending=counts[JobStatus.PENDING],
            processing=counts[JobStatus.PROCESSING],
            succeeded=counts[JobStatus.SUCCEEDED],
            failed=counts[JobStatus.FAILED],
        )

    def add_listener(self, listener: JobListener) -> None:
        """
        Register an async callback invoked once per job reaching a terminal state.

        Raises:
            TypeError: If ``listener`` is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(listener):
            raise TypeError(f"Listener must be a coroutine function, got {type(listener).__name__}")
        self._listeners.append(listener)

    def retry_delay_for(self, attempt: int) -> float:
        """Delay before the attempt following failed attempt number ``attempt`` (1-based)."""
        if self.backoff == BackoffPolicy.EXPONENTIAL:
            delay = self.retry_delay * (2 ** max(attempt - 1, 0))
        else:
            delay = self.retry_delay
        return min(delay, self.max_retry_delay)

    # ==================== Workers ====================

    async def _worker(self) -> None:
        while True:
            job_id = await self._ready.get()
            try:
                await self._run(self._jobs[job_id])
            finally:
                self._ready.task_done()

    async def _run(self, job: SettlementJob) -> None:
        job.status = JobStatus.PROCESSING
        job.attempts += 1
        job.next_attempt_at = None
        job.updated_at = self._clock()

        try:
            result = await self.engine.execute(job.payload, job.requirement)
        except LedgerError as exc:
            job.error = str(exc)
            if exc.transient and job.attempts <= self.max_retries:
                self._schedule_retry(job)
                return
            if exc.transient:
                logger.error(
                    "Settlement job %s failed after %d attempt(s): %s", job.job_id, job.attempts, exc
                )
            else:
                logger.error("Settlement job %s rejected: %s", job.job_id, exc)
            await self._finish(job, JobStatus.FAILED)
        except NonceAlreadyUsedError as exc:
            job.error = str(exc)
            logger.error("Settlement job %s hit a replayed nonce: %s", job.job_id, exc)
            await self._finish(job, JobStatus.FAILED)
        except Exception as exc:
            job.error = f"Unexpected settlement error: {exc}"
            logger.exception("Settlement job %s crashed", job.job_id)
            await self._finish(job, JobStatus.FAILED)
        else:
            job.result = result
            job.error = None
            await self._finish(job, JobStatus.SUCCEEDED)

    def _schedule_retry(self, job: SettlementJob) -> None:
        delay = self.retry_delay_for(job.attempts)
        now = self._clock()
        job.status = JobStatus.PENDING
        job.next_attempt_at = now + delay
        job.updated_at = now
        logger.warning(
            "Settlement job %s attempt %d/%d failed, retrying in %.2fs: %s",
            job.job_id, job.attempts, self.max_retries + 1, delay, job.error,
        )
        timer = asyncio.get_running_loop().create_task(self._requeue_after(job.job_id, delay))
        self._retry_timers.add(timer)
        timer.add_done_callback(self._retry_timers.discard)

    async def _requeue_after(self, job_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self._ready.put_nowait(job_id)

    async def _finish(self, job: SettlementJob, status: JobStatus) -> None:
        job.status = status
        job.next_attempt_at = None
        job.updated_at = self._clock()

        self._active_by_nonce.pop(_nonce_key(job.payload), None)
        self._active -= 1
        if self._active == 0:
            self._idle.set()

        for listener in list(self._listeners):
            try:
                await listener(job)
            except Exception:
                logger.exception("Settlement listener failed for job %s", job.job_id)
