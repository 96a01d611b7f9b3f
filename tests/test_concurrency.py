import threading
import pytest
from concurrent.futures import ThreadPoolExecutor

from dupewatch.concurrency import AtomicCounter, InFlightTracker, ThreadPerTaskExecutor, make_hash_executor

def test_atomic_counter_under_threads():
    c = AtomicCounter()
    threads = [threading.Thread(target=lambda: [c.increment() for _ in range(1000)]) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert c.value == 8000
    assert c.decrement() == 7999

def test_tracker_wait_and_parent():
    parent = InFlightTracker()
    child = InFlightTracker(parent=parent)
    child.start()
    child.start()
    assert parent.count == 2
    assert not child.wait(timeout=0.01)

    child.done()
    child.done()
    assert child.wait(timeout=1)
    assert parent.count == 0

def test_tracker_rejects_extra_done():
    with pytest.raises(RuntimeError):
        InFlightTracker().done()

def test_thread_per_task_executor():
    ex = ThreadPerTaskExecutor(thread_name_prefix="t")
    futures = [ex.submit(lambda x: x * 2, i) for i in range(10)]
    assert [f.result(timeout=5) for f in futures] == [i * 2 for i in range(10)]

    failing = ex.submit(lambda: 1 / 0)
    with pytest.raises(ZeroDivisionError):
        failing.result(timeout=5)

    ex.shutdown(wait=True)
    with pytest.raises(RuntimeError):
        ex.submit(lambda: None)

def test_make_hash_executor():
    fixed = make_hash_executor("fixed", 2)
    per_task = make_hash_executor("per_task", 2)
    fallback = make_hash_executor("other", 2)
    try:
        assert isinstance(fixed, ThreadPoolExecutor)
        assert isinstance(per_task, ThreadPerTaskExecutor)
        assert isinstance(fallback, ThreadPoolExecutor)
    finally:
        for ex in (fixed, per_task, fallback):
            ex.shutdown()
