"""
Nonce Tracker

In-memory replay protection for authorization nonces.

Every nonce is normalized to a canonical key before it touches the map, so
``2748``, ``"0xABC"``, ``"0x0abc"`` and ``b"\\x0a\\xbc"`` all collide. All reads
and writes go through a single lock; ``mark_used`` performs its check and its
write under that lock, which makes it the one atomic check-and-set that
guards against double spends.

TTL semantics:
    When ``ttl_seconds`` is set, a record older than the TTL is treated as
    unused by ``is_used``/``mark_used`` immediately (logical expiry). Physical
    removal is guaranteed lazily on every ``size()`` call and, optionally, by
    a periodic cleanup task owned by the tracker (``start``/``close``).
"""

import asyncio
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..engine.exceptions import NonceAlreadyUsedError

logger = logging.getLogger(__name__)

Nonce = Any

_HEX_DIGITS = re.compile(r"[0-9a-fA-F]+")
_DECIMAL_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class NonceRecord:
    """
    Bookkeeping entry for one consumed nonce.

    Attributes:
        key: Normalized nonce key
        first_seen: Unix seconds when the nonce was marked used
        expires_at: Unix seconds after which the record is logically gone, or None
        receipt: Optional immutable value attached at marking time (e.g. the settlement result)
    """
    key: str
    first_seen: float
    expires_at: Optional[float] = None
    receipt: Any = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


def normalize_nonce(nonce: Nonce) -> str:
    """
    Convert a nonce to its canonical string key.

    Rules:
        - ints and bytes become ``0x`` + lowercase hex, left-padded to 64 digits
        - ``0x``-prefixed hex strings are lower-cased and padded the same way
        - strings of decimal digits are treated as integers
        - any other string is stripped and kept verbatim

    Raises:
        TypeError: For unsupported nonce types.
        ValueError: For negative integers or empty strings.
    """
    if isinstance(nonce, bool):
        raise TypeError("Nonce must not be a boolean")
    if isinstance(nonce, int):
        if nonce < 0:
            raise ValueError(f"Nonce must be non-negative, got {nonce}")
        return "0x" + format(nonce, "x").zfill(64)
    if isinstance(nonce, (bytes, bytearray)):
        return "0x" + bytes(nonce).hex().zfill(64)
    if isinstance(nonce, str):
        text = nonce.strip()
        if not text:
            raise ValueError("Nonce must not be empty")
        if text[:2].lower() == "0x":
            digits = text[2:]
            if not _HEX_DIGITS.fullmatch(digits):
                return text
            return "0x" + digits.lower().zfill(64)
        if _DECIMAL_DIGITS.fullmatch(text):
            return "0x" + format(int(text), "x").zfill(64)
        return text
    raise TypeError(f"Unsupported nonce type: {type(nonce).__name__}")


class NonceTracker:
    """
    Thread-safe in-memory nonce store with optional TTL.

    Example:
        tracker = NonceTracker(ttl_seconds=3600)
        if not tracker.is_used(nonce):
            ...
        tracker.mark_used(nonce)      # raises NonceAlreadyUsedError on reuse
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        cleanup_interval: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            ttl_seconds: Record lifetime; None keeps records until ``clear()``
            cleanup_interval: Period of the background eviction task started by ``start()``
            clock: Time source returning unix seconds
        """
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if cleanup_interval is not None and cleanup_interval <= 0:
            raise ValueError("cleanup_interval must be positive")

        self.ttl_seconds = ttl_seconds
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, NonceRecord] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    # ---- queries ----

    def is_used(self, nonce: Nonce) -> bool:
        """Return True if ``nonce`` is recorded and not logically expired."""
        return self.get_record(nonce) is not None

    def get_record(self, nonce: Nonce) -> Optional[NonceRecord]:
        """Return the live record for ``nonce``, or None."""
        key = normalize_nonce(nonce)
        with self._lock:
            record = self._records.get(key)
            if record is None or record.is_expired(self._clock()):
                return None
            return record

    def size(self) -> int:
        """Evict expired records and return the number of live ones."""
        with self._lock:
            self._evict_locked(self._clock())
            return len(self._records)

    def nonces(self) -> List[str]:
        """Snapshot of live normalized keys."""
        with self._lock:
            now = self._clock()
            return [key for key, record in self._records.items() if not record.is_expired(now)]

    # ---- mutation ----

    def mark_used(self, nonce: Nonce, receipt: Any = None) -> NonceRecord:
        """
        Atomically record ``nonce`` as consumed.

        Args:
            nonce: Nonce in any supported form
            receipt: Optional value stored with the record

        Returns:
            NonceRecord: The newly created record.

        Raises:
            NonceAlreadyUsedError: If the nonce is already recorded and not expired.
        """
        key = normalize_nonce(nonce)
        with self._lock:
            now = self._clock()
            existing = self._records.get(key)
            if existing is not None and not existing.is_expired(now):
                raise NonceAlreadyUsedError(nonce)

            expires_at = now + self.ttl_seconds if self.ttl_seconds is not None else None
            record = NonceRecord(key=key, first_seen=now, expires_at=expires_at, receipt=receipt)
            self._records[key] = record
            return record

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def cleanup(self) -> int:
        """Physically remove expired records; returns how many were removed."""
        with self._lock:
            return self._evict_locked(self._clock())

    def _evict_locked(self, now: float) -> int:
        expired = [key for key, record in self._records.items() if record.is_expired(now)]
        for key in expired:
            del self._records[key]
        return len(expired)

    # ---- lifecycle ----

    def start(self) -> None:
        """
        Start the periodic cleanup task, when configured.

        Must be called from a running event loop. A no-op when no TTL or no
        cleanup interval is configured, or when the task is already running.
        """
        if self.ttl_seconds is None or self.cleanup_interval is None:
            return
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._cleanup_loop(), name="nonce-tracker-cleanup"
        )

    async def close(self) -> None:
        """Stop the cleanup task. Records are kept."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.cleanup()
            if removed:
                logger.debug("Evicted %d expired nonce record(s)", removed)
