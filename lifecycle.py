# lifecycle.py
import logging
from dataclasses import replace
from datetime import timedelta

from config import EngineConfig
from errors import ExecutionFailure, JobNotInFlightError
from identifiers import download_job_id
from job_store import log_transition
from models import JobStatus, Lane, Operation, utcnow

logger = logging.getLogger(__name__)

RESERVATION_EXPIRED = "reservation expired"


class LifecycleController:
    """Completion, failure and retry handling for in-flight jobs."""

    def __init__(self, store, config=None, persistence=None, clock=utcnow):
        self.store = store
        self.config = config or EngineConfig()
        self.persistence = persistence
        self._clock = clock

    def _now(self):
        return self._clock()

    def persist(self, job):
        if self.persistence is None:
            return
        try:
            self.persistence.upsert(job)
        except Exception as e:
            logger.error(f"Persisting job {job.job_id} failed: {e}")

    # ---------------- Completion ----------------
    def complete(self, job_id, result=None):
        job = self.store.release_success(job_id, result)
        log_transition(job_id, JobStatus.IN_PROGRESS, JobStatus.COMPLETED,
                       f"(attempts={job.attempts})")
        self.persist(job)
        if job.operation == Operation.REQUEST:
            self.persist(self.schedule_download(job))
        return job

    def schedule_download(self, parent):
        """Enqueue the download job that follows a successful request.

        The id is derived from the parent, so scheduling twice for the same
        parent fails with ``DuplicateJobError`` instead of duplicating work.
        """
        download = replace(
            parent,
            job_id=download_job_id(parent.job_id),
            parent_id=parent.job_id,
            operation=Operation.DOWNLOAD,
            lane=Lane.STANDARD,
            credentials=dict(parent.credentials),
            progress={},
            last_attempt_at=None,
            scheduled_for=self._now() + timedelta(milliseconds=self.config.download_delay_ms),
        )
        self.store.enqueue(download, Lane.STANDARD)
        logger.info(f"Scheduled {download.job_id} for {download.scheduled_for.isoformat()}")
        return download

    # ---------------- Failure ----------------
    def fail(self, job_id, error=None):
        if isinstance(error, ExecutionFailure):
            error = error.message
        now = self._now()
        with self.store.lock:
            job = self.store.release_failure(job_id, error)
            if job.attempts < self.config.retry_max_attempts:
                job.attempts += 1
                job.last_attempt_at = now
                delay_ms = self.config.retry_delay_ms(job.attempts)
                job.scheduled_for = now + timedelta(milliseconds=delay_ms)
                log_transition(job_id, JobStatus.IN_PROGRESS, JobStatus.RETRYING,
                               f"(attempts={job.attempts}, retry_in={delay_ms / 1000:.0f}s, error={job.error})")
                self.store.requeue(job)
                log_transition(job_id, JobStatus.RETRYING, JobStatus.ENQUEUED, f"(lane={job.lane.value})")
            else:
                self.store.mark_failed(job)
                log_transition(job_id, JobStatus.IN_PROGRESS, JobStatus.FAILED,
                               f"(attempts={job.attempts}, error={job.error})")
        self.persist(job)
        return job

    def sweep_expired(self, now=None):
        """Fail every in-flight job whose reservation deadline has passed."""
        now = now or self._now()
        swept = []
        for job in self.store.overdue(now):
            logger.warning(f"Job {job.job_id} reservation expired at {job.reserved_until.isoformat()}")
            try:
                swept.append(self.fail(job.job_id, RESERVATION_EXPIRED))
            except JobNotInFlightError:
                # reported back between the scan and the fail call
                continue
        return swept

    def reservation_deadline(self, now=None):
        now = now or self._now()
        return now + timedelta(milliseconds=self.config.reservation_timeout_ms)
