# dispatcher.py
import logging
import threading
from datetime import timedelta

from config import EngineConfig
from errors import JobNotInFlightError
from models import utcnow

logger = logging.getLogger(__name__)


class Dispatcher:
    """Pulls eligible batches from the job store and hands them to an executor.

    One cycle: sweep expired reservations, sample host resources, size the
    batch, scan the lanes and reserve what was selected, then pass the batch
    to ``executor.run`` without waiting for it to finish.
    """

    def __init__(self, store, monitor, lifecycle, executor=None, config=None,
                 clock=utcnow, stop_event=None):
        self.store = store
        self.monitor = monitor
        self.lifecycle = lifecycle
        self.executor = executor
        self.config = config or EngineConfig()
        self._clock = clock
        self.stop_event = stop_event or threading.Event()
        self._wake = threading.Event()
        self._thread = None
        self._cooldowns = {}
        self._denied_since = None
        self.last_sample = None
        self.last_batch_size = 0

    def _now(self):
        return self._clock()

    # ---------------- Loop ----------------
    def run(self):
        interval = self.config.dispatch_interval_ms / 1000
        while not self.stop_event.is_set():
            try:
                self.run_cycle()
            except Exception:
                logger.exception("Dispatch cycle failed")
            self._wake.wait(interval)
            self._wake.clear()

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self.stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="dispatcher", daemon=True)
        self._thread.start()
        logger.info(f"Dispatcher started (interval={self.config.dispatch_interval_ms}ms)")

    def stop(self, timeout=5.0):
        self.stop_event.set()
        self._wake.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Dispatcher stopped")

    def request_cycle(self):
        """Run the next cycle now instead of waiting for the interval."""
        self._wake.set()

    # ---------------- Cycle ----------------
    def run_cycle(self):
        now = self._now()
        self.lifecycle.sweep_expired(now)

        sample = self.monitor.sample()
        self.last_sample = sample
        size = self._batch_size(sample, now)
        self.last_batch_size = size
        if size == 0:
            return []

        # Cooldown only sees stamps from earlier cycles.
        batch = self.store.take_batch(
            size,
            lambda job: self.is_eligible(job, now),
            deadline=self.lifecycle.reservation_deadline(now),
        )
        if not batch:
            return []
        for job in batch:
            self._stamp_cooldown(job, now)

        logger.info(f"Dispatching batch of {len(batch)} job(s) (size={size}, load={sample.load_class.value})")
        for job in batch:
            self.lifecycle.persist(job)
        self._hand_off(batch)
        return batch

    def _hand_off(self, batch):
        if self.executor is None:
            return
        try:
            self.executor.run(batch)
        except Exception as e:
            logger.error(f"Executor rejected batch of {len(batch)} job(s): {e}")
            for job in batch:
                try:
                    self.lifecycle.fail(job.job_id, f"executor error: {e}")
                except JobNotInFlightError:
                    # already reported by the executor before it raised
                    continue

    def _batch_size(self, sample, now):
        if sample.can_admit:
            self._denied_since = None
            return self.config.clamp_batch_size(sample.recommended_batch_size)

        # Admission is a hint: keep a trickle going when nothing runs or when
        # it has been denied for longer than the starvation window.
        if self._denied_since is None:
            self._denied_since = now
        starving = now - self._denied_since >= timedelta(milliseconds=self.config.admission_starvation_ms)
        if starving:
            self._denied_since = now
            logger.warning(f"Admission denied since the last starvation window; dispatching {self.config.min_batch_size} job(s)")
            return self.config.min_batch_size
        if not self.store.in_flight_jobs():
            return self.config.min_batch_size
        logger.debug(f"Admission denied (cpu={sample.cpu_percent}%, mem={sample.memory_percent}%, free={sample.free_memory_mb}MB)")
        return 0

    # ---------------- Eligibility ----------------
    def is_eligible(self, job, now=None):
        now = now or self._now()
        return job.is_due(now) and not self.is_under_cooldown(job.resource_key, now)

    def _stamp_cooldown(self, job, now):
        self._cooldowns[job.resource_key] = now

    def is_under_cooldown(self, key, now=None):
        last = self._cooldowns.get(key)
        if last is None:
            return False
        now = now or self._now()
        return now - last < timedelta(milliseconds=self.config.cooldown_ms)
