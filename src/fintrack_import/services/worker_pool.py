"""Bounded background worker pool for import jobs.

A fixed number of daemon threads drain a bounded queue of job ids. Enqueueing
never blocks: when the queue is full the submitter gets QueueFullError. A job
handler that raises is logged and the worker moves on to the next job.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_WORKER_COUNT = 2
DEFAULT_QUEUE_CAPACITY = 100

# How often idle workers check for shutdown (seconds)
POLL_INTERVAL = 0.2


class QueueFullError(Exception):
    """Raised when the import queue cannot accept another job."""

    pass


class ImportWorkerPool:
    """Runs a job handler for each enqueued job id on worker threads.

    Usage:
        pool = ImportWorkerPool(service.process_import, worker_count=2)
        pool.start()
        pool.enqueue(job_id)
        pool.wait_until_idle(timeout=10)
        pool.stop()
    """

    def __init__(
        self,
        handler: Callable[[int], None],
        worker_count: int = DEFAULT_WORKER_COUNT,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        if queue_capacity < 1:
            raise ValueError("queue_capacity must be >= 1")

        self.handler = handler
        self.worker_count = worker_count
        self.queue_capacity = queue_capacity

        self._queue: queue.Queue[int] = queue.Queue(maxsize=queue_capacity)
        self._shutdown = threading.Event()
        self._threads: list[threading.Thread] = []
        # Jobs enqueued but not yet finished (queued or running)
        self._outstanding = 0
        self._idle = threading.Condition()

    @property
    def pending_count(self) -> int:
        """Jobs waiting for a worker."""
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        """Start the worker threads. Calling start on a running pool does nothing."""
        if self.is_running:
            return

        self._shutdown.clear()
        self._threads = [
            threading.Thread(
                target=self._worker_loop,
                name=f"import-worker-{index + 1}",
                daemon=True,
            )
            for index in range(self.worker_count)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(
            f"Started {self.worker_count} import workers (queue capacity {self.queue_capacity})"
        )

    def stop(self, wait: bool = True, timeout: float | None = None) -> None:
        """Signal workers to exit after their current job.

        Jobs still queued are dropped from the pool and stay PENDING in the
        store, where requeue_pending picks them up again.
        """
        self._shutdown.set()
        if wait:
            for thread in self._threads:
                thread.join(timeout)

        dropped = 0
        with self._idle:
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
                self._queue.task_done()
                dropped += 1
            self._outstanding -= dropped
            self._idle.notify_all()

        if dropped:
            logger.info(f"Import workers stopped; {dropped} queued jobs left pending")
        else:
            logger.info("Import workers stopped")

    def enqueue(self, job_id: int) -> None:
        """Hand a job to the pool without blocking.

        Raises:
            QueueFullError: If the queue is at capacity
        """
        with self._idle:
            try:
                self._queue.put_nowait(job_id)
            except queue.Full as e:
                raise QueueFullError(
                    f"Import queue is full ({self.queue_capacity} jobs waiting)"
                ) from e
            self._outstanding += 1

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until every enqueued job has been handled.

        Returns:
            True if the pool went idle, False on timeout
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout)

    def _worker_loop(self) -> None:
        name = threading.current_thread().name
        logger.debug(f"{name} waiting for jobs")

        while not self._shutdown.is_set():
            try:
                job_id = self._queue.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue

            try:
                self.handler(job_id)
            except Exception:
                logger.exception(f"{name}: unhandled error processing import {job_id}")
            finally:
                self._queue.task_done()
                with self._idle:
                    self._outstanding -= 1
                    self._idle.notify_all()

        logger.debug(f"{name} exiting")
