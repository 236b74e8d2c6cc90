# job_store.py
import logging
import threading
from collections import OrderedDict, deque

from errors import DuplicateJobError, InvalidJobError, JobNotInFlightError
from models import Job, JobStatus, Lane, utcnow

logger = logging.getLogger(__name__)


def log_transition(job_id, old_state, new_state, extra=""):
    old_state = getattr(old_state, "value", old_state)
    new_state = getattr(new_state, "value", new_state)
    logger.info(f"Job {job_id}: {old_state} → {new_state} {extra}".rstrip())


class JobStore:
    """Priority and standard lanes, the in-flight set and the dedup index.

    Every public method takes ``self.lock``; callers that need several calls
    to appear as one step (the lifecycle controller) hold it themselves.
    """

    def __init__(self, clock=utcnow, history_limit=1000):
        self.lock = threading.RLock()
        self._clock = clock
        self._lanes = {Lane.PRIORITY: deque(), Lane.STANDARD: deque()}
        self._in_flight = {}
        self._dedup = set()
        self._finished = OrderedDict()
        self._history_limit = history_limit

    def _now(self):
        return self._clock()

    # ---------------- Enqueue ----------------
    def enqueue(self, job: Job, lane=None) -> Job:
        if lane is not None:
            job.lane = Lane(lane)
        job.validate()
        with self.lock:
            if self.contains(job.job_id):
                raise DuplicateJobError(job.job_id)
            job.status = JobStatus.ENQUEUED
            job.attempts = 0
            job.enqueued_at = self._now()
            job.started_at = None
            job.completed_at = None
            job.reserved_until = None
            job.error = None
            job.result = None
            self._dedup.add(job.job_id)
            self._finished.pop(job.job_id, None)
            self._lanes[job.lane].append(job)
        log_transition(job.job_id, "new", JobStatus.ENQUEUED, f"(lane={job.lane.value}, operation={job.operation.value})")
        return job

    def requeue(self, job: Job) -> Job:
        """Put a released job back at the tail of its lane, keeping its attempts."""
        with self.lock:
            if self.contains(job.job_id):
                raise DuplicateJobError(job.job_id)
            job.status = JobStatus.ENQUEUED
            job.reserved_until = None
            self._dedup.add(job.job_id)
            self._lanes[job.lane].append(job)
        return job

    # ---------------- Lookup ----------------
    def contains(self, job_id) -> bool:
        with self.lock:
            return job_id in self._dedup

    def find(self, job_id):
        with self.lock:
            for lane in (Lane.PRIORITY, Lane.STANDARD):
                for job in self._lanes[lane]:
                    if job.job_id == job_id:
                        return job
            return self._in_flight.get(job_id)

    def lookup(self, job_id):
        """Like ``find`` but also returns recently finished jobs."""
        with self.lock:
            return self.find(job_id) or self._finished.get(job_id)

    def remove(self, job_id) -> bool:
        with self.lock:
            for lane in self._lanes.values():
                for job in lane:
                    if job.job_id == job_id:
                        lane.remove(job)
                        self._dedup.discard(job_id)
                        return True
            return False

    def lane_of(self, job_id):
        with self.lock:
            for name, lane in self._lanes.items():
                if any(job.job_id == job_id for job in lane):
                    return name
            return None

    # ---------------- Ordering ----------------
    def bump(self, job_id) -> Job:
        """Move a queued job to the head of the priority lane."""
        with self.lock:
            job = self._pop_queued(job_id)
            job.lane = Lane.PRIORITY
            self._lanes[Lane.PRIORITY].appendleft(job)
            return job

    def set_lane(self, job_id, lane) -> Job:
        with self.lock:
            job = self._pop_queued(job_id)
            job.lane = Lane(lane)
            self._lanes[job.lane].append(job)
            return job

    def _pop_queued(self, job_id):
        for lane in self._lanes.values():
            for job in lane:
                if job.job_id == job_id:
                    lane.remove(job)
                    return job
        raise InvalidJobError(f"Job {job_id} is not queued")

    # ---------------- Reservation ----------------
    def take_batch(self, size, is_eligible, deadline=None):
        """Select up to ``size`` eligible jobs and reserve them in one step.

        Lanes are scanned priority first. Each lane is scanned by rotation:
        the head is taken when eligible, otherwise moved to the tail, and the
        scan of a lane ends once every job it held at the start has been
        looked at.

        If ``is_eligible`` raises, the jobs selected so far go back to the
        head of their lanes and nothing is reserved.
        """
        with self.lock:
            batch = []
            try:
                for lane_name in (Lane.PRIORITY, Lane.STANDARD):
                    lane = self._lanes[lane_name]
                    remaining = len(lane)
                    while remaining and len(batch) < size:
                        remaining -= 1
                        # Peek first so a failing check leaves the job in place.
                        job = lane[0]
                        if is_eligible(job):
                            batch.append(lane.popleft())
                        else:
                            lane.rotate(-1)
            except Exception:
                for job in reversed(batch):
                    self._lanes[job.lane].appendleft(job)
                raise
            self._mark_in_flight(batch, deadline)
            return batch

    def reserve(self, jobs, deadline=None):
        with self.lock:
            for job in jobs:
                if job.job_id in self._in_flight:
                    raise DuplicateJobError(job.job_id)
                self._pop_queued(job.job_id)
            self._mark_in_flight(jobs, deadline)
            return list(jobs)

    def _mark_in_flight(self, jobs, deadline):
        now = self._now()
        for job in jobs:
            job.status = JobStatus.IN_PROGRESS
            job.started_at = now
            job.reserved_until = deadline
            self._in_flight[job.job_id] = job
            log_transition(job.job_id, JobStatus.ENQUEUED, JobStatus.IN_PROGRESS,
                           f"(attempts={job.attempts})")

    def release_success(self, job_id, result=None) -> Job:
        with self.lock:
            job = self._release(job_id)
            job.status = JobStatus.COMPLETED
            job.result = result
            job.error = None
            self._remember(job)
            return job

    def release_failure(self, job_id, error=None) -> Job:
        """Take a job out of the in-flight set after a failure.

        The job is left in status ``retrying``; the caller either requeues it
        or finishes it with ``mark_failed``.
        """
        with self.lock:
            job = self._release(job_id)
            job.status = JobStatus.RETRYING
            job.error = None if error is None else str(error)
            return job

    def mark_failed(self, job: Job) -> Job:
        with self.lock:
            job.status = JobStatus.FAILED
            self._remember(job)
            return job

    def _release(self, job_id):
        job = self._in_flight.pop(job_id, None)
        if job is None:
            raise JobNotInFlightError(job_id)
        self._dedup.discard(job_id)
        job.completed_at = self._now()
        job.reserved_until = None
        return job

    def _remember(self, job):
        self._finished[job.job_id] = job
        self._finished.move_to_end(job.job_id)
        while len(self._finished) > self._history_limit:
            self._finished.popitem(last=False)

    def update_progress(self, job_id, patch) -> Job:
        with self.lock:
            job = self._in_flight.get(job_id)
            if job is None:
                raise JobNotInFlightError(job_id)
            job.progress.update(patch)
            return job

    # ---------------- Views ----------------
    def in_flight_jobs(self):
        with self.lock:
            return list(self._in_flight.values())

    def overdue(self, now):
        with self.lock:
            return [job for job in self._in_flight.values()
                    if job.reserved_until is not None and job.reserved_until <= now]

    def pending(self, operation=None, lane=None, seller_id=None):
        with self.lock:
            jobs = list(self._lanes[Lane.PRIORITY]) + list(self._lanes[Lane.STANDARD])
        if operation:
            jobs = [j for j in jobs if j.operation == operation]
        if lane:
            jobs = [j for j in jobs if j.lane == lane]
        if seller_id:
            jobs = [j for j in jobs if j.seller_id == seller_id]
        return jobs

    def preview(self, limit=10):
        preview = []
        with self.lock:
            for lane_name in (Lane.PRIORITY, Lane.STANDARD):
                for position, job in enumerate(self._lanes[lane_name]):
                    if len(preview) >= limit:
                        return preview
                    preview.append({"job_id": job.job_id, "lane": lane_name.value, "position": position,
                                    "operation": job.operation.value, "scheduled_for": job.scheduled_for})
        return preview

    def counts(self):
        with self.lock:
            return {
                "priority_lane": len(self._lanes[Lane.PRIORITY]),
                "standard_lane": len(self._lanes[Lane.STANDARD]),
                "in_flight": len(self._in_flight),
                "tracked": len(self._dedup),
                "finished": len(self._finished),
            }

    # ---------------- Maintenance ----------------
    def drain(self):
        """Empty both lanes at once and return what they held."""
        with self.lock:
            drained = {}
            for lane_name, lane in self._lanes.items():
                drained[lane_name.value] = list(lane)
                for job in lane:
                    self._dedup.discard(job.job_id)
                lane.clear()
        logger.info(f"Drained {len(drained['priority'])} priority and {len(drained['standard'])} standard job(s)")
        return drained
