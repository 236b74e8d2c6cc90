import threading
import time
from collections import Counter

from config import EngineConfig
from conftest import FixedMonitor
from engine import QueueEngine
from errors import ExecutionFailure
from models import JobStatus
from worker import ThreadedExecutor


def handler(job):
    if job.job_id == "BAD":
        raise ExecutionFailure(job.job_id, "download button not found")
    if job.job_id == "CRASH":
        raise ValueError("unexpected page")
    return {"report": job.report_type.value}


def test_executor_reports_outcomes(clock):
    config = EngineConfig()
    engine = QueueEngine(config=config, monitor=FixedMonitor(config), clock=clock)
    executor = ThreadedExecutor(handler, engine.lifecycle, max_workers=2)
    engine.set_executor(executor)
    for job_id in ("OK", "BAD", "CRASH"):
        engine.enqueue_bulk({"job_id": job_id, "seller_id": "s1", "identifier": f"{job_id}@shop.com",
                             "report_type": "invoice_report"})

    engine.run_cycle()
    executor.shutdown(wait=True)

    ok = engine.status("OK")
    assert ok["status"] == JobStatus.COMPLETED.value
    assert ok["result"] == {"report": "invoice_report"}
    assert engine.status("OK:download")["status"] == "enqueued"

    bad = engine.status("BAD")
    assert bad["status"] == "enqueued"
    assert bad["attempts"] == 1
    assert bad["error"] == "download button not found"
    assert engine.status("CRASH")["error"] == "ValueError: unexpected page"
    assert engine.in_flight() == []


def test_late_report_after_sweep_is_ignored(clock, store, lifecycle):
    from conftest import make_job
    from models import Lane

    job = store.enqueue(make_job("J"), Lane.STANDARD)
    store.reserve([job])
    lifecycle.fail("J", "reservation expired")

    executor = ThreadedExecutor(handler, lifecycle, max_workers=1)
    executor.run([job])
    executor.shutdown(wait=True)

    assert store.find("J").status == JobStatus.ENQUEUED
    assert store.find("J:download") is None


def test_concurrent_enqueue_dispatch_and_complete():
    config = EngineConfig(cooldown_ms=0, dispatch_interval_ms=5, max_batch_size=7)
    engine = QueueEngine(config=config, monitor=FixedMonitor(config))
    reserved = Counter()
    reserved_lock = threading.Lock()

    def record(job):
        with reserved_lock:
            reserved[job.job_id] += 1
        return {"rows": 0}

    executor = ThreadedExecutor(record, engine.lifecycle, max_workers=4)
    engine.set_executor(executor)
    expected = {f"T{t}-{n}" for t in range(4) for n in range(50)}

    def produce(t):
        for n in range(50):
            engine.enqueue_bulk({"job_id": f"T{t}-{n}", "seller_id": f"s{t}", "identifier": f"{t}-{n}@shop.com",
                                 "report_type": "sales_report", "operation": "download"})

    producers = [threading.Thread(target=produce, args=(t,)) for t in range(4)]
    engine.start()
    for thread in producers:
        thread.start()
    for thread in producers:
        thread.join()

    deadline = time.monotonic() + 20
    while time.monotonic() < deadline and engine.store.counts()["finished"] < len(expected):
        time.sleep(0.01)
    engine.stop()
    executor.shutdown(wait=True)

    assert set(reserved) == expected
    assert all(count == 1 for count in reserved.values())

    queued = {job.job_id for job in engine.pending()}
    in_flight = {job.job_id for job in engine.in_flight()}
    finished = {job_id for job_id in expected if engine.status(job_id)["status"] == JobStatus.COMPLETED.value}
    assert queued | in_flight | finished == expected
    assert not queued & in_flight and not queued & finished and not in_flight & finished
    assert finished == expected
