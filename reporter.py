# reporter.py
from models import utcnow


class MetricsReporter:
    """Read-only views over the job store and resource monitor."""

    def __init__(self, store, monitor, clock=utcnow):
        self.store = store
        self.monitor = monitor
        self._clock = clock

    def queue_status(self):
        counts = self.store.counts()
        return {
            "priority_lane_length": counts["priority_lane"],
            "standard_lane_length": counts["standard_lane"],
            "in_flight_count": counts["in_flight"],
            "total_jobs": counts["tracked"],
            "finished_jobs": counts["finished"],
        }

    def snapshot(self):
        return {
            **self.queue_status(),
            "resources": self.monitor.snapshot(),
            "timestamp": self._clock().isoformat(),
        }

    def job_status(self, job_id):
        job = self.store.lookup(job_id)
        return job.to_dict() if job else None
