# errors.py


class QueueError(Exception):
    """Base class for queue engine errors."""


class DuplicateJobError(QueueError):
    def __init__(self, job_id):
        super().__init__(f"Job {job_id} already exists")
        self.job_id = job_id


class InvalidJobError(QueueError):
    pass


class JobNotInFlightError(QueueError):
    def __init__(self, job_id):
        super().__init__(f"Job {job_id} is not in flight")
        self.job_id = job_id


class ExecutionFailure(QueueError):
    """Failure reported by an executor for a single job."""

    def __init__(self, job_id, message, cause=None):
        super().__init__(f"Job {job_id} failed: {message}")
        self.job_id = job_id
        self.message = message
        self.cause = cause


class ResourceSampleError(QueueError):
    pass


class ConfigError(QueueError):
    pass
