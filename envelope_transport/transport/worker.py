"""Delivery Worker — a single background thread that submits envelopes in order.

Producers hand envelopes over through a bounded queue and never wait on
the network. The worker pulls one task at a time, so at most one delivery
is in flight and delivery order equals enqueue order.

Lifecycle:
  - RUNNING: accepting envelopes, delivering them one by one
  - DRAINING: shutdown requested; new envelopes are rejected, queued ones
    are still delivered until the shutdown deadline
  - STOPPED: terminal; anything still queued or sent later is dropped

Overflow policy is drop-newest: when the queue is full the incoming
envelope is rejected and the queued ones are kept.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from envelope_transport.core.metrics import ENVELOPES_DROPPED, ENVELOPES_ENQUEUED, QUEUE_DEPTH
from envelope_transport.transport.rate_limiter import RateLimiter
from envelope_transport.transport.types import Envelope

DEFAULT_QUEUE_CAPACITY = 30

# How often an idle worker checks whether it was stopped
_POLL_INTERVAL = 0.1


class WorkerState(str, Enum):
    """Delivery worker lifecycle states."""

    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class _SendTask:
    envelope: Envelope


@dataclass
class _FlushTask:
    done: threading.Event = field(default_factory=threading.Event)


class DeliveryWorker:
    """Owns the pending queue and the thread that drains it.

    Usage:
        worker = DeliveryWorker(submitter.deliver, rate_limiter)

        worker.enqueue(envelope)  # returns immediately
        worker.flush(timeout=2.0)  # True once everything queued so far was attempted
        worker.shutdown(timeout=2.0)
    """

    def __init__(
        self,
        submit: Callable[[Envelope], None],
        rate_limiter: RateLimiter | None = None,
        capacity: int = DEFAULT_QUEUE_CAPACITY,
        name: str = "envelope-transport",
        logger: logging.Logger | None = None,
        on_stop: Callable[[], None] | None = None,
    ):
        """
        Args:
            submit: Called with each envelope, one at a time
            rate_limiter: Checked on enqueue and again before delivery
            capacity: Maximum number of queued tasks
            name: Worker thread name
            logger: Logger override
            on_stop: Called from the worker thread once it has exited its loop
        """
        self._submit = submit
        self._on_stop = on_stop
        self._rate_limiter = rate_limiter
        self._queue: queue.Queue[_SendTask | _FlushTask] = queue.Queue(maxsize=capacity)
        self._state = WorkerState.RUNNING
        self._state_lock = threading.Lock()
        self.logger = logger or logging.getLogger(__name__)

        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def pending(self) -> int:
        """Approximate number of queued tasks."""
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, envelope: Envelope) -> bool:
        """Queue an envelope for delivery without blocking.

        Returns False if the envelope was dropped: the worker is shutting
        down, every item is currently rate limited, or the queue is full.
        """
        if self._state is not WorkerState.RUNNING:
            return self._reject_stopped(envelope)

        if self._rate_limiter is not None:
            filtered = self._rate_limiter.filter_envelope(envelope)
            if filtered is None:
                self.logger.debug("Dropping envelope %s: rate limited", envelope.envelope_id)
                ENVELOPES_DROPPED.labels(reason="rate_limited").inc()
                return False
            envelope = filtered

        try:
            # Held so shutdown cannot start between the state check and the put
            with self._state_lock:
                if self._state is not WorkerState.RUNNING:
                    return self._reject_stopped(envelope)
                self._queue.put_nowait(_SendTask(envelope))
        except queue.Full:
            self.logger.warning(
                "Dropping envelope %s: queue is full (%d pending)",
                envelope.envelope_id,
                self._queue.maxsize,
            )
            ENVELOPES_DROPPED.labels(reason="queue_full").inc()
            return False

        ENVELOPES_ENQUEUED.inc()
        QUEUE_DEPTH.set(self._queue.qsize())
        return True

    def _reject_stopped(self, envelope: Envelope) -> bool:
        self.logger.debug("Dropping envelope %s: transport is %s", envelope.envelope_id, self._state.value)
        ENVELOPES_DROPPED.labels(reason="stopped").inc()
        return False

    def flush(self, timeout: float) -> bool:
        """Wait until every envelope queued before this call was attempted.

        Returns True if that happened within ``timeout`` seconds. A timeout
        does not interrupt the delivery in flight; flush can be retried.
        """
        if not self._thread.is_alive():
            return self._queue.empty()

        deadline = time.monotonic() + timeout
        marker = _FlushTask()
        try:
            self._queue.put(marker, timeout=max(timeout, 0.0))
        except queue.Full:
            self.logger.debug("Flush timed out waiting for queue space")
            return False

        flushed = marker.done.wait(max(deadline - time.monotonic(), 0.0))
        if not flushed:
            self.logger.debug("Flush timed out after %.1fs (%d pending)", timeout, self._queue.qsize())
        return flushed

    def shutdown(self, timeout: float) -> bool:
        """Flush, then stop the worker regardless of the flush outcome.

        Returns the flush result.
        """
        with self._state_lock:
            if self._state is WorkerState.STOPPED:
                return self._queue.empty()
            self._state = WorkerState.DRAINING

        deadline = time.monotonic() + timeout
        flushed = self.flush(timeout)

        with self._state_lock:
            self._state = WorkerState.STOPPED

        self._thread.join(max(deadline - time.monotonic(), 0.0))
        if self._thread.is_alive():
            self.logger.warning("Delivery worker still busy after %.1fs shutdown timeout", timeout)

        self.logger.info("Delivery worker stopped (flushed=%s)", flushed)
        return flushed

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        try:
            self._loop()
        finally:
            if self._on_stop is not None:
                self._on_stop()

    def _loop(self) -> None:
        while True:
            try:
                task = self._queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                if self._state is WorkerState.STOPPED:
                    return
                continue

            try:
                if isinstance(task, _FlushTask):
                    task.done.set()
                else:
                    self._deliver(task.envelope)
            finally:
                self._queue.task_done()
                QUEUE_DEPTH.set(self._queue.qsize())

    def _deliver(self, envelope: Envelope) -> None:
        if self._state is WorkerState.STOPPED:
            self.logger.debug("Dropping envelope %s: transport is stopped", envelope.envelope_id)
            ENVELOPES_DROPPED.labels(reason="stopped").inc()
            return

        # Limits may have arrived while the envelope was queued
        if self._rate_limiter is not None:
            filtered = self._rate_limiter.filter_envelope(envelope)
            if filtered is None:
                self.logger.debug("Skipping envelope %s: rate limited", envelope.envelope_id)
                ENVELOPES_DROPPED.labels(reason="rate_limited").inc()
                return
            envelope = filtered

        try:
            self._submit(envelope)
        except Exception:
            self.logger.exception("Unexpected error delivering envelope %s", envelope.envelope_id)
