from datetime import datetime, timedelta, timezone

import pytest

from config import EngineConfig
from job_store import JobStore
from lifecycle import LifecycleController
from models import Job, ReportType, ResourceSample
from resource_monitor import ResourceMonitor


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FixedMonitor(ResourceMonitor):
    """Resource monitor that reports fixed host numbers instead of reading psutil."""

    def __init__(self, config=None, cpu=10.0, mem=20.0, free=8192):
        super().__init__(config)
        self.set(cpu, mem, free)

    def set(self, cpu, mem, free=8192):
        self.cpu, self.mem, self.free = cpu, mem, free

    def _measure(self):
        return ResourceSample(cpu_percent=self.cpu, memory_percent=self.mem,
                              free_memory_mb=self.free, total_memory_mb=16384, cpu_count=4)


class RecordingExecutor:
    def __init__(self):
        self.batches = []

    def run(self, batch):
        self.batches.append(list(batch))


def make_job(job_id, **kwargs):
    kwargs.setdefault("seller_id", "seller-1")
    kwargs.setdefault("identifier", f"{job_id}@shop.com")
    kwargs.setdefault("report_type", ReportType.LISTINGS)
    return Job(job_id=job_id, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def store(clock, config):
    return JobStore(clock=clock, history_limit=config.history_limit)


@pytest.fixture
def lifecycle(store, config, clock):
    return LifecycleController(store, config, clock=clock)
