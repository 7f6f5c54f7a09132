"""Bounded worker pool for background grading jobs.

Uploads hand a paper id to :class:`GradingQueue` and return immediately. The
queue caps concurrency (``workers``) and backlog (``max_pending``), retries a
failing job ``max_retries`` times, and reports the final failure through
``on_failure`` instead of raising into the submitter.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from exam_eval.exceptions import AppError

logger = logging.getLogger(__name__)

Job = Callable[[int], None]
FailureHandler = Callable[[int, Exception, int], None]


class QueueUnavailable(AppError):
    """The queue cannot take the job right now; the paper stays ``uploaded``."""

    status_code = 503


class QueueFull(QueueUnavailable):
    def __init__(self, max_pending: int):
        super().__init__(
            f"Grading queue is full ({max_pending} jobs pending)",
            code="GRADING_QUEUE_FULL",
        )


class QueueClosed(QueueUnavailable):
    def __init__(self):
        super().__init__("Grading queue is shut down", code="GRADING_QUEUE_CLOSED")


class GradingQueue:
    def __init__(
        self,
        job: Job,
        workers: int = 4,
        max_pending: int = 100,
        max_retries: int = 1,
        on_failure: Optional[FailureHandler] = None,
        retry_delay: float = 0.0,
    ):
        self._job = job
        self.workers = workers
        self.max_pending = max_pending
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._on_failure = on_failure
        # workers == 0: run inline in the submitting thread
        self._executor = (
            ThreadPoolExecutor(max_workers=workers, thread_name_prefix="grading")
            if workers > 0
            else None
        )
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._in_flight = 0

    @property
    def pending(self) -> int:
        with self._lock:
            return self._in_flight

    def submit(self, paper_id: int) -> None:
        """Schedule grading for ``paper_id``. Raises ``QueueUnavailable`` without blocking."""
        with self._lock:
            if self._in_flight >= self.max_pending:
                raise QueueFull(self.max_pending)
            self._in_flight += 1

        if self._executor is None:
            try:
                self._run(paper_id)
            finally:
                self._release()
            return

        try:
            future = self._executor.submit(self._run, paper_id)
        except RuntimeError as exc:
            # executor already shut down
            self._release()
            raise QueueClosed() from exc
        future.add_done_callback(self._on_done)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight jobs; True when none remain."""
        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout=timeout)

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait_for_jobs)

    def _release(self) -> None:
        with self._idle:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.notify_all()

    def _on_done(self, future: Future) -> None:
        self._release()

    def _run(self, paper_id: int) -> None:
        attempts = 0
        while True:
            attempts += 1
            try:
                self._job(paper_id)
                return
            except Exception as exc:
                if attempts > self.max_retries:
                    logger.error(
                        "Grading failed for paper %s after %s attempt(s): %s",
                        paper_id, attempts, exc, exc_info=True,
                    )
                    self._report_failure(paper_id, exc, attempts)
                    return
                logger.warning(
                    "Grading attempt %s for paper %s failed, retrying: %s",
                    attempts, paper_id, exc,
                )
                if self.retry_delay:
                    time.sleep(self.retry_delay)

    def _report_failure(self, paper_id: int, exc: Exception, attempts: int) -> None:
        if self._on_failure is None:
            return
        try:
            self._on_failure(paper_id, exc, attempts)
        except Exception:
            logger.exception("Failure handler raised for paper %s", paper_id)
