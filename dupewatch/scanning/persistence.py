"""
Bounded hand-off between the hashing workers and the metadata store.

Producers offer records into a bounded queue and wait at most `offer_timeout`
seconds when it is full; after that the record is dropped and a warning is
logged. A single writer thread takes one record (blocking), drains whatever
else is already queued up to `batch_size`, and writes the whole batch in one
store transaction. A failed batch is logged and lost for this cycle.
"""
import logging
import queue
import threading
from typing import Callable, List, Optional

from .. import config
from ..concurrency import AtomicCounter
from ..database.ops import MetadataStore
from ..models import FileRecord

_STOP = object()

PersistedCallback = Callable[[List[FileRecord]], None]


class PersistenceWriter:
    def __init__(self,
                 store: MetadataStore,
                 capacity: int = config.QUEUE_CAPACITY,
                 batch_size: int = config.BATCH_SIZE,
                 offer_timeout: float = config.OFFER_TIMEOUT,
                 on_persisted: Optional[PersistedCallback] = None):
        self.store = store
        self.batch_size = max(1, batch_size)
        self.offer_timeout = offer_timeout
        self.on_persisted = on_persisted
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, capacity))
        self._thread: Optional[threading.Thread] = None

        # Records accepted but not yet written (queued or in the current batch)
        self._pending = 0
        self._pending_cond = threading.Condition()

        self.written = AtomicCounter()
        self.dropped = AtomicCounter()
        self.failed_batches = AtomicCounter()

    # --- Producer side ---

    def offer(self, record: FileRecord) -> bool:
        """Returns False if the record was dropped because the queue stayed full."""
        with self._pending_cond:
            self._pending += 1
        try:
            self._queue.put(record, timeout=self.offer_timeout)
            return True
        except queue.Full:
            self._finish(1)
            self.dropped.increment()
            logging.warning(
                f"Failed to queue metadata for {record.path} - queue is full "
                f"(waited {self.offer_timeout}s), record dropped"
            )
            return False

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Blocks until every accepted record has been written (or its batch failed)."""
        with self._pending_cond:
            return self._pending_cond.wait_for(lambda: self._pending == 0, timeout=timeout)

    # --- Writer side ---

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="metadata-saver", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """Writes what is already queued, then stops the writer thread."""
        if not self._thread:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        if self._thread.is_alive():
            logging.warning("Metadata writer did not stop in time")
        else:
            self._thread = None

    def _run(self):
        logging.debug("Metadata writer started")
        while True:
            first = self._queue.get()
            if first is _STOP:
                break

            batch = [first]
            stop_requested = False
            while len(batch) < self.batch_size:
                try:
                    item = self._queue.get_nowait()
                except queue.Empty:
                    break
                if item is _STOP:
                    stop_requested = True
                    break
                batch.append(item)

            self._write_batch(batch)
            if stop_requested:
                break
        logging.debug("Metadata writer stopped")

    def _write_batch(self, batch: List[FileRecord]):
        try:
            self.store.batch_upsert(batch)
        except Exception as e:
            self.failed_batches.increment()
            logging.error(f"Error saving metadata batch of {len(batch)} records: {e}")
            self._finish(len(batch))
            return

        self.written.add(len(batch))
        logging.debug(f"Saved batch of {len(batch)} file metadata records")

        if self.on_persisted:
            try:
                self.on_persisted(batch)
            except Exception as e:
                logging.error(f"Post-persist hook failed for batch of {len(batch)}: {e}")
        self._finish(len(batch))

    def _finish(self, n: int):
        with self._pending_cond:
            self._pending -= n
            if self._pending <= 0:
                self._pending_cond.notify_all()
