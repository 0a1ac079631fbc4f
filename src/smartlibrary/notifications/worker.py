"""Local background worker for notification passes.

Runs passes on a small thread pool and keeps the outcome of every job by
trigger ID, so callers can ask whether a pass finished or failed.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    """Lifecycle of a background job."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobStatus:
    """Observable state of one background job."""

    trigger_id: str
    state: JobState
    submitted_at: str
    finished_at: Optional[str] = None
    result: Any = None
    error: Optional[str] = None


class LocalWorker:
    """Thread pool that records completion or failure per trigger ID."""

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="smartlibrary-notify"
        )
        self._jobs: dict[str, JobStatus] = {}
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(self, trigger_id: str, fn: Callable[[], Any]) -> Future:
        """Run ``fn`` in the background under a trigger ID."""
        with self._lock:
            self._jobs[trigger_id] = JobStatus(
                trigger_id=trigger_id,
                state=JobState.RUNNING,
                submitted_at=datetime.now(timezone.utc).isoformat(),
            )
            future = self._executor.submit(fn)
            self._futures[trigger_id] = future

        future.add_done_callback(lambda f: self._finish(trigger_id, f))
        logger.info("Background pass %s submitted", trigger_id)
        return future

    def _finish(self, trigger_id: str, future: Future) -> None:
        error = future.exception()
        with self._lock:
            job = self._jobs[trigger_id]
            if job.state != JobState.RUNNING:
                return
            job.finished_at = datetime.now(timezone.utc).isoformat()
            if error is not None:
                job.state = JobState.FAILED
                job.error = str(error)
            else:
                job.state = JobState.COMPLETED
                job.result = future.result()

        if error is not None:
            logger.error("Background pass %s failed: %s", trigger_id, error)
        else:
            logger.info("Background pass %s completed", trigger_id)

    def status(self, trigger_id: str) -> Optional[JobStatus]:
        """Current status of a job, or None if this worker never ran it."""
        with self._lock:
            return self._jobs.get(trigger_id)

    def wait(self, trigger_id: str, timeout: Optional[float] = None) -> Optional[JobStatus]:
        """Block until a job finishes and return its status."""
        future = self._futures.get(trigger_id)
        if future is None:
            return None
        done, _ = wait_futures([future], timeout=timeout)
        if done:
            # The done callback may not have run yet in the worker thread
            self._finish(trigger_id, future)
        return self.status(trigger_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
