from types import SimpleNamespace

import psutil
import pytest

from config import EngineConfig
from models import LoadClass, ResourceSample
from resource_monitor import ResourceMonitor

GB = 1024 ** 3


@pytest.fixture
def host(monkeypatch):
    """Pretend host: 4 cores, 8 GB total, 4 GB available."""
    monkeypatch.setattr(psutil, "cpu_percent", lambda interval=None: 42.0)
    monkeypatch.setattr(psutil, "virtual_memory", lambda: SimpleNamespace(total=8 * GB, available=4 * GB))
    monkeypatch.setattr(psutil, "getloadavg", lambda: (2.0, 1.0, 0.5))
    monkeypatch.setattr(psutil, "cpu_count", lambda *args, **kwargs: 4)
    return monkeypatch


def sample(cpu, mem, free=4096):
    return ResourceSample(cpu_percent=cpu, memory_percent=mem, free_memory_mb=free)


def test_sample_reads_psutil(host):
    s = ResourceMonitor().sample()

    assert s.cpu_percent == 42.0
    assert s.memory_percent == 50.0
    assert s.free_memory_mb == 4096
    assert s.total_memory_mb == 8192
    assert s.cpu_count == 4
    assert s.load_average == (2.0, 1.0, 0.5)
    assert s.recommended_batch_size == 20
    assert s.can_admit is True
    assert s.load_class == LoadClass.LOW
    assert s.degraded is False


def test_loadavg_method(host):
    monitor = ResourceMonitor(EngineConfig(cpu_method="loadavg"))

    assert monitor.sample().cpu_percent == 50.0


def test_loadavg_method_is_capped(host):
    host.setattr(psutil, "getloadavg", lambda: (12.0, 8.0, 4.0))

    assert ResourceMonitor(EngineConfig(cpu_method="loadavg")).sample().cpu_percent == 100.0


def test_read_failure_degrades(host):
    def broken():
        raise psutil.AccessDenied()

    host.setattr(psutil, "virtual_memory", broken)

    s = ResourceMonitor().sample()

    assert s.degraded is True
    assert s.can_admit is False
    assert s.recommended_batch_size == 8
    assert s.load_class == LoadClass.CRITICAL


def test_batch_size_is_monotone():
    monitor = ResourceMonitor()

    sizes = [monitor.recommended_batch_size(sample(cpu, 30)) for cpu in (40, 55, 72, 82)]

    assert sizes == [20, 16, 12, 8]


def test_memory_pressure_lowers_batch_size():
    monitor = ResourceMonitor()

    assert monitor.recommended_batch_size(sample(10, 65)) == 16
    assert monitor.recommended_batch_size(sample(10, 90)) == 8


def test_custom_thresholds():
    config = EngineConfig.from_dict({"resource_thresholds": {
        "low": {"cpu_ceiling": 30, "mem_ceiling": 30, "batch_size": 6},
        "medium": {"cpu_ceiling": 60, "mem_ceiling": 60, "batch_size": 4},
        "high": {"cpu_ceiling": 90, "mem_ceiling": 90, "batch_size": 2},
        "fallback_batch_size": 1,
    }})
    monitor = ResourceMonitor(config)

    assert [monitor.recommended_batch_size(sample(c, 10)) for c in (20, 50, 80, 95)] == [6, 4, 2, 1]


@pytest.mark.parametrize("cpu, mem, free, expected", [
    (10, 20, 4096, True),
    (80, 20, 4096, False),
    (10, 85, 4096, False),
    (10, 20, 512, False),
    (79.9, 84.9, 513, True),
])
def test_can_admit_more(cpu, mem, free, expected):
    assert ResourceMonitor().can_admit_more(sample(cpu, mem, free)) is expected


@pytest.mark.parametrize("cpu, mem, free, expected", [
    (10, 20, 4096, LoadClass.LOW),
    (65, 20, 4096, LoadClass.MEDIUM),
    (10, 20, 800, LoadClass.MEDIUM),
    (82, 20, 4096, LoadClass.HIGH),
    (10, 20, 400, LoadClass.HIGH),
    (10, 92, 4096, LoadClass.CRITICAL),
    (10, 20, 200, LoadClass.CRITICAL),
])
def test_load_class(cpu, mem, free, expected):
    assert ResourceMonitor().load_class(sample(cpu, mem, free)) == expected


def test_snapshot_shape(host):
    snap = ResourceMonitor().snapshot()

    assert snap["recommended_batch_size"] == 20
    assert snap["can_admit_more"] is True
    assert snap["load_class"] == "LOW"
    assert snap["sample"]["memory_percent"] == 50.0
    assert snap["timestamp"] == snap["sample"]["timestamp"]
