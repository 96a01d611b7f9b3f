"""
Small thread-safety helpers shared by the pipeline, the watcher and the
coordinator: counters, an in-flight tracker that can be waited on, and the
factory for the hashing pool.
"""
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Optional

class AtomicCounter:
    def __init__(self, value: int = 0):
        self._value = value
        self._lock = threading.Lock()

    def add(self, delta: int = 1) -> int:
        with self._lock:
            self._value += delta
            return self._value

    def increment(self) -> int:
        return self.add(1)

    def decrement(self) -> int:
        return self.add(-1)

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class InFlightTracker:
    """
    Counts per-file tasks that have started but not finished.

    `wait()` blocks on a condition until the count reaches zero instead of
    sleeping in a loop. A tracker can be shared by many scans; each scan also
    gets its own tracker so it only waits for its own files.
    """

    def __init__(self, parent: Optional["InFlightTracker"] = None):
        self._count = 0
        self._cond = threading.Condition()
        self._parent = parent

    def start(self):
        with self._cond:
            self._count += 1
        if self._parent:
            self._parent.start()

    def done(self):
        with self._cond:
            if self._count <= 0:
                raise RuntimeError("InFlightTracker.done() called more times than start()")
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()
        if self._parent:
            self._parent.done()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Returns True once nothing is in flight, False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)

    @property
    def count(self) -> int:
        with self._cond:
            return self._count


class ThreadPerTaskExecutor(Executor):
    """
    Runs each submitted task on its own daemon thread.

    Hashing is I/O bound, so letting every file wait on its own thread is
    acceptable; the traversal pool already bounds how many files are admitted.
    """

    def __init__(self, thread_name_prefix: str = "hash"):
        self._prefix = thread_name_prefix
        self._shutdown = False
        self._lock = threading.Lock()
        self._threads: set = set()
        self._seq = 0

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()

        def run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                result = fn(*args, **kwargs)
            except BaseException as e:
                future.set_exception(e)
            else:
                future.set_result(result)
            finally:
                with self._lock:
                    self._threads.discard(threading.current_thread())

        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")
            self._seq += 1
            t = threading.Thread(target=run, name=f"{self._prefix}-{self._seq}", daemon=True)
            self._threads.add(t)
        t.start()
        return future

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False):
        with self._lock:
            self._shutdown = True
            threads = list(self._threads)
        if wait:
            for t in threads:
                t.join()


def make_hash_executor(kind: str, threads: int) -> Executor:
    """
    Chooses the hashing pool at configuration time.

    'fixed'    -> ThreadPoolExecutor with `threads` workers.
    'per_task' -> one lightweight thread per file.
    Unknown kinds fall back to the fixed pool.
    """
    if kind == 'per_task':
        logging.info("Using thread-per-task executor for hashing")
        return ThreadPerTaskExecutor()
    if kind != 'fixed':
        logging.warning(f"Unknown hash pool kind '{kind}', falling back to fixed pool")
    return ThreadPoolExecutor(max_workers=max(1, threads), thread_name_prefix="hash")
