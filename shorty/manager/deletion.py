"""
Deletion pipeline for shorty.

Responsibilities:
    - Accept soft-delete requests from request handlers without making them
      wait for storage I/O
    - Apply them to the storage backend from exactly one background consumer
    - Drain what is queued on shutdown, within a bounded grace period

Design notes:
    - Submitters enqueue on their own thread into a bounded queue. Nothing is
      spawned per item, so overload turns into visible backpressure:
        * policy "block"  - wait for room (optionally up to a timeout)
        * policy "reject" - fail immediately
      Either way a queue that cannot take the item raises PipelineFullError,
      which the caller may retry.
    - One consumer thread calls `storage.soft_delete({code: owner})` once per
      item. There is no batching across items.
    - Delivery is best-effort with bounded retry: a failing item is retried
      up to `max_attempts` times with linear backoff, then parked in a bounded
      dead-letter buffer and logged. Failures are never reported back to the
      submitter, who already got "Accepted".
"""

import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, List, Optional, Tuple

from shorty.config import settings
from shorty.storage.base import BaseStorage
from shorty.storage.errors import PipelineClosedError, PipelineFullError

log = logging.getLogger("shorty.deletion")

POLICY_BLOCK = "block"
POLICY_REJECT = "reject"

_UNSET = object()


@dataclass(frozen=True)
class DeletionRequest:
    short_code: str
    owner_id: int


class DeletionPipeline:
    """Bounded queue plus a single consumer applying soft deletes.

    Args:
        storage: Backend receiving soft_delete calls.
        capacity: Queue size (default settings.DELETE_QUEUE_SIZE, 500).
        policy: "block" or "reject" when the queue is full.
        submit_timeout: Max seconds a blocking submit waits per item (None = forever).
        max_attempts: soft_delete attempts per item before dead-lettering.
        retry_backoff: Seconds multiplied by the attempt number between retries.
        dead_letter_size: How many failed requests to keep for inspection.
    """

    def __init__(
        self,
        storage: BaseStorage,
        capacity: Optional[int] = None,
        policy: Optional[str] = None,
        submit_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_backoff: float = 0.05,
        dead_letter_size: int = 1000,
        poll_interval: float = 0.1,
    ):
        self.storage = storage
        self.capacity = capacity if capacity is not None else settings.DELETE_QUEUE_SIZE
        self.policy = (policy or settings.DELETE_POLICY).strip().lower()
        if self.policy not in (POLICY_BLOCK, POLICY_REJECT):
            raise ValueError(f"Unknown deletion policy: {self.policy!r}")
        self.submit_timeout = submit_timeout if submit_timeout is not None else settings.DELETE_SUBMIT_TIMEOUT
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.DELETE_MAX_ATTEMPTS)
        self.retry_backoff = retry_backoff
        self.poll_interval = poll_interval

        self._queue: "queue.Queue[DeletionRequest]" = queue.Queue(maxsize=self.capacity)
        self._thread: Optional[threading.Thread] = None
        self._closed = threading.Event()
        self._stopping = threading.Event()
        self._abort = threading.Event()
        self._lock = threading.Lock()
        self._submit_lock = threading.Lock()
        self._inflight: Optional[DeletionRequest] = None
        self._processed = 0
        self._failed = 0
        self._dropped = 0
        self._dead_letters: Deque[Tuple[DeletionRequest, str]] = deque(maxlen=dead_letter_size)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> "DeletionPipeline":
        if self._closed.is_set():
            raise PipelineClosedError("deletion pipeline was stopped")
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(target=self._run, name="shorty-deletion", daemon=True)
            self._thread.start()
            log.info("deletion pipeline started (capacity=%d, policy=%s)", self.capacity, self.policy)
        return self

    def stop(self, grace_period: Optional[float] = None) -> int:
        """Stop accepting work, drain within grace_period, then stop.

        Waits at most twice the grace period: once for the drain, once for
        the consumer to notice the abort. A consumer stuck in storage is
        left behind (it is a daemon thread) and its request counts as
        undrained.

        Returns the number of requests that were never confirmed applied.
        """
        grace = settings.DELETE_DRAIN_TIMEOUT if grace_period is None else grace_period
        with self._submit_lock:
            self._closed.set()
        self._stopping.set()
        stuck = 0
        thread = self._thread
        if thread is not None:
            thread.join(timeout=grace)
            if thread.is_alive():
                self._abort.set()
                thread.join(timeout=grace)
            if thread.is_alive():
                with self._lock:
                    stuck = 1 if self._inflight is not None else 0
                log.warning("deletion consumer did not stop within %.2fs, abandoning it", 2 * grace)
        # Whatever is still queued now will never be picked up.
        self._discard_remaining()
        undrained = self.dropped + stuck
        if undrained:
            log.warning("deletion pipeline stopped with %d undrained request(s)", undrained)
        else:
            log.info("deletion pipeline drained and stopped")
        return undrained

    def join(self) -> None:
        """Block until every queued request has been handled (for tests and tooling)."""
        self._queue.join()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------
    def submit(self, owner_id: int, short_codes: Iterable[str], timeout=_UNSET) -> int:
        """Enqueue one request per short code on the caller's thread.

        Returns:
            int: Number of requests enqueued.

        Raises:
            PipelineClosedError: After stop().
            PipelineFullError: When the queue has no room under the active policy;
                items before the failing one stay enqueued.
        """
        if self._closed.is_set():
            raise PipelineClosedError("deletion pipeline is not accepting requests")
        wait = self.submit_timeout if timeout is _UNSET else timeout
        enqueued = 0
        for code in short_codes:
            try:
                self._put(DeletionRequest(short_code=code, owner_id=owner_id), wait)
            except queue.Full:
                log.warning("deletion queue full, rejected after %d item(s) for owner %d", enqueued, owner_id)
                raise PipelineFullError(enqueued) from None
            enqueued += 1
        return enqueued

    def _put(self, request: DeletionRequest, wait: Optional[float]) -> None:
        # The closed check and the enqueue happen under one lock that stop()
        # also takes, so nothing lands in the queue after it is closed.
        deadline = None if wait is None else time.monotonic() + wait
        while True:
            with self._submit_lock:
                if self._closed.is_set():
                    raise PipelineClosedError("deletion pipeline is not accepting requests")
                try:
                    self._queue.put_nowait(request)
                    return
                except queue.Full:
                    if self.policy == POLICY_REJECT:
                        raise
            pause = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise queue.Full
                pause = min(pause, remaining)
            self._closed.wait(pause)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------
    def _run(self) -> None:
        while True:
            try:
                request = self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                if self._stopping.is_set():
                    return
                continue
            try:
                if self._abort.is_set():
                    with self._lock:
                        self._dropped += 1
                else:
                    with self._lock:
                        self._inflight = request
                    self._apply(request)
            finally:
                with self._lock:
                    self._inflight = None
                self._queue.task_done()

    def _apply(self, request: DeletionRequest) -> None:
        last_error = ""
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.storage.soft_delete({request.short_code: request.owner_id})
            except Exception as e:  # best-effort path: log, retry, dead-letter
                last_error = f"{type(e).__name__}: {e}"
                log.warning(
                    "soft delete of %s for owner %d failed (attempt %d/%d): %s",
                    request.short_code, request.owner_id, attempt, self.max_attempts, last_error,
                )
                if attempt < self.max_attempts and self._abort.wait(self.retry_backoff * attempt):
                    break
                continue
            with self._lock:
                self._processed += 1
            return
        with self._lock:
            self._failed += 1
            self._dead_letters.append((request, last_error))
        log.error("soft delete of %s for owner %d dead-lettered: %s", request.short_code, request.owner_id, last_error)

    def _discard_remaining(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return
            self._queue.task_done()
            with self._lock:
                self._dropped += 1

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def processed(self) -> int:
        with self._lock:
            return self._processed

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    @property
    def dead_letters(self) -> List[Tuple[DeletionRequest, str]]:
        with self._lock:
            return list(self._dead_letters)
