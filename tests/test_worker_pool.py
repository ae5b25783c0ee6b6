"""Tests for the bounded import worker pool."""

import threading

import pytest

from fintrack_import.services import ImportWorkerPool, QueueFullError


class TestImportWorkerPool:
    """Tests for ImportWorkerPool."""

    @pytest.fixture
    def handled(self):
        return []

    @pytest.fixture
    def pool(self, handled):
        pool = ImportWorkerPool(handled.append, worker_count=2, queue_capacity=10)
        yield pool
        pool.stop()

    def test_processes_enqueued_jobs(self, pool, handled):
        pool.start()
        for job_id in (1, 2, 3):
            pool.enqueue(job_id)

        assert pool.wait_until_idle(timeout=5)
        assert sorted(handled) == [1, 2, 3]

    def test_handler_error_is_contained(self):
        handled = []

        def handler(job_id):
            if job_id == 1:
                raise RuntimeError("boom")
            handled.append(job_id)

        pool = ImportWorkerPool(handler, worker_count=1)
        pool.start()
        try:
            pool.enqueue(1)
            pool.enqueue(2)
            assert pool.wait_until_idle(timeout=5)
        finally:
            pool.stop()

        assert handled == [2]

    def test_full_queue_rejects_without_blocking(self):
        pool = ImportWorkerPool(lambda job_id: None, worker_count=1, queue_capacity=2)
        pool.enqueue(1)
        pool.enqueue(2)

        with pytest.raises(QueueFullError):
            pool.enqueue(3)

        assert pool.pending_count == 2

    def test_wait_times_out_while_busy(self):
        release = threading.Event()
        pool = ImportWorkerPool(lambda job_id: release.wait(5), worker_count=1)
        pool.start()
        try:
            pool.enqueue(1)
            assert pool.wait_until_idle(timeout=0.2) is False
            release.set()
            assert pool.wait_until_idle(timeout=5) is True
        finally:
            pool.stop()

    def test_stop_releases_queued_jobs(self):
        """Jobs still queued at stop no longer count as outstanding."""
        pool = ImportWorkerPool(lambda job_id: None, worker_count=1)
        pool.enqueue(1)
        pool.enqueue(2)

        pool.stop()

        assert pool.pending_count == 0
        assert pool.wait_until_idle(timeout=0.1) is True

    def test_idle_pool_is_idle(self, pool):
        assert pool.wait_until_idle(timeout=0.1) is True

    def test_start_stop(self, pool):
        pool.start()
        assert pool.is_running
        pool.stop()
        assert not pool.is_running

    @pytest.mark.parametrize("kwargs", [{"worker_count": 0}, {"queue_capacity": 0}])
    def test_invalid_sizes(self, kwargs):
        with pytest.raises(ValueError):
            ImportWorkerPool(lambda job_id: None, **kwargs)
