# resource_monitor.py
import logging

import psutil

from config import EngineConfig
from errors import ResourceSampleError
from models import LoadClass, ResourceSample, utcnow

logger = logging.getLogger(__name__)

_MB = 1024 * 1024

CRITICAL_PCT = 90
CRITICAL_FREE_MB = 256
MEDIUM_CPU_PCT = 60
MEDIUM_MEM_PCT = 70
MEDIUM_FREE_MB = 1024


class ResourceMonitor:
    """Samples host CPU and memory and turns them into dispatch hints.

    CPU usage is measured with one method for the lifetime of the monitor:
    ``tick_delta`` compares aggregate CPU time counters over a short window,
    ``loadavg`` divides the 1 minute load average by the core count. The two
    disagree under load, so they are never mixed.
    """

    def __init__(self, config=None, sample_window=0.1):
        self.config = config or EngineConfig()
        self.cpu_method = self.config.cpu_method
        self.sample_window = sample_window

    # ---------------- Raw reads ----------------
    def _cpu_percent(self):
        if self.cpu_method == "loadavg":
            one_minute = psutil.getloadavg()[0]
            cores = psutil.cpu_count() or 1
            return min(100.0, max(0.0, round(one_minute / cores * 100, 2)))
        return min(100.0, max(0.0, float(psutil.cpu_percent(interval=self.sample_window))))

    def _measure(self):
        try:
            cpu = self._cpu_percent()
            vm = psutil.virtual_memory()
            load_average = tuple(psutil.getloadavg())
            cores = psutil.cpu_count() or 1
        except (psutil.Error, OSError, AttributeError) as e:
            raise ResourceSampleError(f"Resource read failed: {e}") from e

        if not vm.total:
            raise ResourceSampleError("Total memory reported as zero")
        memory = round((vm.total - vm.available) / vm.total * 100, 2)
        return ResourceSample(
            cpu_percent=cpu,
            memory_percent=memory,
            free_memory_mb=int(vm.available / _MB),
            total_memory_mb=int(vm.total / _MB),
            cpu_count=cores,
            load_average=load_average,
        )

    def _degraded_sample(self):
        return ResourceSample(
            cpu_percent=100.0,
            memory_percent=100.0,
            free_memory_mb=0,
            load_class=LoadClass.CRITICAL,
            recommended_batch_size=self.config.resource_thresholds.fallback_batch_size,
            can_admit=False,
            degraded=True,
        )

    # ---------------- Public API ----------------
    def sample(self) -> ResourceSample:
        try:
            sample = self._measure()
        except ResourceSampleError as e:
            logger.warning(f"{e}; falling back to the most conservative batch size")
            return self._degraded_sample()
        sample.recommended_batch_size = self.recommended_batch_size(sample)
        sample.can_admit = self.can_admit_more(sample)
        sample.load_class = self.load_class(sample)
        return sample

    def recommended_batch_size(self, sample) -> int:
        thresholds = self.config.resource_thresholds
        if sample.degraded:
            return thresholds.fallback_batch_size
        effective = sample.effective_load
        for _, tier in thresholds.tiers():
            if effective <= tier.cpu_ceiling and sample.memory_percent <= tier.mem_ceiling:
                return tier.batch_size
        return thresholds.fallback_batch_size

    def can_admit_more(self, sample) -> bool:
        if sample.degraded:
            return False
        limits = self.config.admission_limits
        return (sample.cpu_percent < limits.max_cpu_pct
                and sample.memory_percent < limits.max_mem_pct
                and sample.free_memory_mb > limits.min_free_mb)

    def load_class(self, sample) -> LoadClass:
        limits = self.config.admission_limits
        cpu, mem, free = sample.cpu_percent, sample.memory_percent, sample.free_memory_mb
        if sample.degraded or cpu >= CRITICAL_PCT or mem >= CRITICAL_PCT or free < CRITICAL_FREE_MB:
            return LoadClass.CRITICAL
        if cpu >= limits.max_cpu_pct or mem >= limits.max_mem_pct or free < limits.min_free_mb:
            return LoadClass.HIGH
        if cpu >= MEDIUM_CPU_PCT or mem >= MEDIUM_MEM_PCT or free < MEDIUM_FREE_MB:
            return LoadClass.MEDIUM
        return LoadClass.LOW

    def snapshot(self):
        sample = self.sample()
        return {
            "sample": sample.to_dict(),
            "recommended_batch_size": sample.recommended_batch_size,
            "can_admit_more": sample.can_admit,
            "load_class": sample.load_class.value,
            "timestamp": sample.timestamp.isoformat(),
        }
