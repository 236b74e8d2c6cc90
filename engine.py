# engine.py
import logging

from config import EngineConfig
from dispatcher import Dispatcher
from errors import QueueError
from identifiers import IdentifierSanitizer, generate_job_id
from job_store import JobStore
from lifecycle import LifecycleController
from models import Job, Lane, utcnow
from reporter import MetricsReporter
from resource_monitor import ResourceMonitor

logger = logging.getLogger(__name__)


class QueueEngine:
    """Wires the store, monitor, dispatcher and lifecycle controller together.

    This is the surface the API layer talks to: manual requests go to the
    priority lane, bulk requests to the standard lane.
    """

    def __init__(self, config=None, executor=None, persistence=None, monitor=None,
                 sanitizer=None, clock=utcnow):
        self.config = config or EngineConfig()
        self.sanitizer = sanitizer or IdentifierSanitizer()
        self.persistence = persistence
        self.store = JobStore(clock=clock, history_limit=self.config.history_limit)
        self.monitor = monitor or ResourceMonitor(self.config)
        self.lifecycle = LifecycleController(self.store, self.config, persistence=persistence, clock=clock)
        self.dispatcher = Dispatcher(self.store, self.monitor, self.lifecycle, executor=executor,
                                     config=self.config, clock=clock)
        self.reporter = MetricsReporter(self.store, self.monitor, clock=clock)

    def set_executor(self, executor):
        self.dispatcher.executor = executor

    # ---------------- Enqueue ----------------
    def enqueue_manual(self, job):
        return self._enqueue(job, Lane.PRIORITY)

    def enqueue_bulk(self, job):
        return self._enqueue(job, Lane.STANDARD)

    def enqueue_many(self, jobs, lane=Lane.STANDARD):
        """Enqueue several jobs; failures are reported per job instead of raised."""
        results = []
        for job in jobs:
            try:
                results.append(self._enqueue(job, lane))
            except QueueError as e:
                results.append({"error": str(e), "job": job})
        return results

    def _enqueue(self, job, lane):
        if isinstance(job, dict):
            job = Job.from_payload(job)
        if not job.job_id:
            job.job_id = generate_job_id(job.identifier, self.sanitizer)
        self.store.enqueue(job, lane)
        # the job is already visible to the dispatcher; persistence only mirrors it
        self.lifecycle.persist(job)
        return job

    # ---------------- Lifecycle ----------------
    def complete(self, job_id, result=None):
        return self.lifecycle.complete(job_id, result)

    def fail(self, job_id, error=None):
        return self.lifecycle.fail(job_id, error)

    def update_progress(self, job_id, patch):
        job = self.store.update_progress(job_id, patch)
        self.lifecycle.persist(job)
        return job

    # ---------------- Ordering ----------------
    def bump(self, job_id):
        return self.store.bump(job_id)

    # ---------------- Views ----------------
    def status(self, job_id):
        return self.reporter.job_status(job_id)

    def snapshot(self):
        return self.reporter.snapshot()

    def pending(self, operation=None, lane=None, seller_id=None):
        return self.store.pending(operation=operation, lane=lane, seller_id=seller_id)

    def in_flight(self):
        return self.store.in_flight_jobs()

    def preview(self, limit=10):
        return self.store.preview(limit)

    # ---------------- Maintenance ----------------
    def drain_all(self):
        return self.store.drain()

    # ---------------- Dispatch ----------------
    def run_cycle(self):
        return self.dispatcher.run_cycle()

    def start(self):
        self.dispatcher.start()

    def stop(self):
        self.dispatcher.stop()
