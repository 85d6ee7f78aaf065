"""
Work queue for the inbox pipeline.

A bounded thread pool runs the pipeline for many files concurrently while a
keyed lock guarantees that at most one runner is active per record id.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Dict, List, Optional

from loguru import logger

from domains.inbox.pipeline import PipelineRunner
from domains.inbox.records import FileRecord


class KeyedLock:
    """One mutex per key, dropped again once nobody holds or waits for it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class InboxQueue:
    """Dispatches pipeline runs onto a worker pool."""

    def __init__(self, runner: PipelineRunner, workers: int = 2):
        """
        Initialize queue.

        Args:
            runner: Pipeline runner executing the stages
            workers: Maximum number of files processed concurrently
        """
        self.runner = runner
        self.workers = workers
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="inbox")
        self._locks = KeyedLock()
        self._stats_lock = threading.Lock()
        self._queued = 0
        self._active = 0

        logger.info(f"Inbox queue started with {workers} workers")

    def submit(self, record_id: str) -> Future:
        """Schedule a pipeline run for ``record_id``."""
        with self._stats_lock:
            self._queued += 1
        return self._executor.submit(self._process, record_id)

    def enqueue_path(self, path: str) -> Optional[Future]:
        """Ingest a newly arrived file and schedule its run."""
        record = self.runner.ingest(path)
        if record is None:
            return None
        return self.submit(record.id)

    def retry(self, record_id: str) -> Future:
        with self._locks.hold(record_id):
            self.runner.retry(record_id)
        return self.submit(record_id)

    def reenqueue(self, record_id: str) -> Future:
        with self._locks.hold(record_id):
            self.runner.reenqueue(record_id)
        return self.submit(record_id)

    def bypass(self, record_id: str, reason: str) -> FileRecord:
        with self._locks.hold(record_id):
            return self.runner.bypass(record_id, reason)

    def undo(self, record_id: str) -> FileRecord:
        with self._locks.hold(record_id):
            return self.runner.undo(record_id)

    def remove(self, record_id: str) -> bool:
        with self._locks.hold(record_id):
            return self.runner.remove(record_id)

    def cancel(self, record_id: str) -> bool:
        # Not locked: the active run checks the flag between stages
        return self.runner.cancel(record_id)

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return {"queued": self._queued, "processing": self._active, "workers": self.workers}

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; in-flight stages run to completion."""
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        logger.info("Inbox queue stopped")

    def _process(self, record_id: str) -> Optional[FileRecord]:
        with self._stats_lock:
            self._queued -= 1
            self._active += 1
        try:
            with self._locks.hold(record_id):
                return self.runner.run(record_id)
        except Exception as e:
            # One file's failure never stops the queue
            logger.error(f"Pipeline run failed for {record_id}: {e}")
            return None
        finally:
            with self._stats_lock:
                self._active -= 1
