# worker.py
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor

from errors import DuplicateJobError, ExecutionFailure, JobNotInFlightError

logger = logging.getLogger(__name__)


class ThreadedExecutor:
    """Runs each dispatched job on a thread pool and reports the outcome.

    ``handler(job)`` does the actual report work and returns the result
    payload; raising marks the attempt as failed. Every job gets exactly one
    ``complete`` or ``fail`` call on the lifecycle controller.
    """

    def __init__(self, handler, lifecycle, max_workers=8, worker_id=None):
        self.handler = handler
        self.lifecycle = lifecycle
        self.worker_id = worker_id or f"executor-{uuid.uuid4().hex[:8]}"
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=self.worker_id)

    def run(self, batch):
        for job in batch:
            self._pool.submit(self._process_job, job)

    def _process_job(self, job):
        start = time.monotonic()
        try:
            result = self.handler(job)
        except ExecutionFailure as e:
            self._report(self.lifecycle.fail, job, e.message, start)
        except Exception as e:
            self._report(self.lifecycle.fail, job, f"{type(e).__name__}: {e}", start)
        else:
            self._report(self.lifecycle.complete, job, result, start)

    def _report(self, callback, job, payload, start):
        duration = time.monotonic() - start
        try:
            callback(job.job_id, payload)
        except JobNotInFlightError:
            logger.warning(f"Job {job.job_id} finished after its reservation was released (duration={duration:.3f}s)")
            return
        except DuplicateJobError as e:
            logger.error(f"Job {job.job_id} completed but its follow-up could not be scheduled: {e}")
            return
        logger.info(f"Job {job.job_id} reported by {self.worker_id} (duration={duration:.3f}s)")

    def shutdown(self, wait=True):
        self._pool.shutdown(wait=wait)
