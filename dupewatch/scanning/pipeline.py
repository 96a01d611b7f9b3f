import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from ..concurrency import AtomicCounter, InFlightTracker, ThreadPerTaskExecutor, make_hash_executor
from ..config import ProcessingConfig
from ..database.ops import MetadataStore
from ..exceptions import FileHashError, MetadataExtractionError
from ..metadata.extract import MetadataExtractor
from ..models import FileRecord, ScanJob
from .filesystem import DiskScanner
from .filters import PathFilter
from .hasher import FileHasher
from .persistence import PersistedCallback, PersistenceWriter

# Files admitted but not yet through hashing, per traversal worker
ADMISSION_FACTOR = 64


class _JobCounters:
    def __init__(self):
        self.processed = AtomicCounter()
        self.skipped = AtomicCounter()


class IngestionPipeline:
    """
    Walk -> filter -> metadata -> hash -> bounded queue -> batch writer.

    Three independent pools do the work: the traversal pool evaluates the
    filter and reads metadata, the hashing pool reads file contents, and one
    writer thread owns all ingestion writes to the store. Every per-file task
    is tracked so a scan finishes only when its last file has been handed to
    the queue.
    """

    def __init__(self,
                 store: MetadataStore,
                 path_filter: PathFilter,
                 processing: Optional[ProcessingConfig] = None,
                 hasher: Optional[FileHasher] = None,
                 extractor: Optional[MetadataExtractor] = None,
                 on_persisted: Optional[PersistedCallback] = None):
        self.processing = processing or ProcessingConfig()
        self.store = store
        self.filter = path_filter
        self.hasher = hasher or FileHasher(self.processing.hash_buffer_size)
        self.extractor = extractor or MetadataExtractor()
        self.scanner = DiskScanner()

        self.writer = PersistenceWriter(
            store,
            capacity=self.processing.queue_capacity,
            batch_size=self.processing.batch_size,
            offer_timeout=self.processing.offer_timeout,
            on_persisted=on_persisted,
        )

        parallelism = max(1, self.processing.parallelism)
        self.traversal_pool = ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="traverse")
        self.hash_pool = make_hash_executor(self.processing.hash_pool, self.processing.hashing_threads)
        self._drivers = ThreadPerTaskExecutor(thread_name_prefix="scan")
        self._admission = threading.BoundedSemaphore(parallelism * ADMISSION_FACTOR)

        self.inflight = InFlightTracker()
        self.processed = AtomicCounter()
        self.skipped = AtomicCounter()

        logging.info(
            f"IngestionPipeline initialized with {parallelism} traversal workers, "
            f"{self.processing.hashing_threads} hashing threads ({self.processing.hash_pool})"
        )

    # --- Lifecycle ---

    def start(self):
        self.writer.start()

    def shutdown(self, wait: bool = True):
        logging.info("Shutting down IngestionPipeline...")
        self._drivers.shutdown(wait=wait)
        self.traversal_pool.shutdown(wait=wait)
        self.hash_pool.shutdown(wait=wait)
        self.writer.stop(timeout=None if wait else 0)

    # --- Scans ---

    def walk(self, root: Union[Path, str]) -> "Future[ScanJob]":
        """Starts a scan of `root` and returns immediately."""
        return self._drivers.submit(self.run_job, Path(root))

    def walk_all(self, roots: Iterable[Union[Path, str]]) -> ScanJob:
        """Scans every root concurrently and joins them into one result."""
        futures = [self.walk(r) for r in roots]
        return combine_jobs([f.result() for f in futures])

    def run_job(self, root: Path) -> ScanJob:
        job = ScanJob(root=str(root))
        t0 = time.monotonic()
        logging.info(f"Starting directory scan: {root}")

        error = self.scanner.check_root(root)
        if error:
            logging.error(f"Error scanning directory {root}: {error}")
            job.error = error
            return job

        tracker = InFlightTracker(parent=self.inflight)
        counts = _JobCounters()
        try:
            for path in self.scanner.iter_files(root, on_skipped=lambda p: self._skip_link(p, counts)):
                self._admission.acquire()
                tracker.start()
                finish = self._finisher(tracker)
                try:
                    self.traversal_pool.submit(self._admit, path, counts, finish)
                except RuntimeError as e:
                    finish()
                    logging.warning(f"Traversal pool rejected {path}: {e}")
                    job.error = job.error or f"Error: {e}"
                    break
        except Exception as e:
            logging.error(f"Directory walk failed for {root}: {e}")
            job.error = f"Error: {e}"

        tracker.wait()

        job.processed_files = counts.processed.value
        job.skipped_files = counts.skipped.value
        job.duration_ms = int((time.monotonic() - t0) * 1000)
        logging.info(
            f"Completed directory scan: {root} in {job.duration_ms}ms. "
            f"Files processed: {job.processed_files}, skipped: {job.skipped_files}"
        )
        return job

    def _finisher(self, tracker: InFlightTracker) -> Callable[[], None]:
        done = threading.Event()

        def finish():
            if done.is_set():
                return
            done.set()
            self._admission.release()
            tracker.done()
        return finish

    # --- Per-file stages ---

    def _admit(self, path: Path, counts: _JobCounters, finish: Callable[[], None]):
        handed_off = False
        try:
            record = self._filter_and_extract(path, counts)
            if record is None:
                return
            self.hash_pool.submit(self._hash_and_queue, path, record, finish)
            handed_off = True
        except Exception as e:
            logging.warning(f"Failed to process file {path}: {e}")
        finally:
            if not handed_off:
                finish()

    def _hash_and_queue(self, path: Path, record: FileRecord, finish: Callable[[], None]):
        try:
            record.hash = self._hash(path)
            self.writer.offer(record)
        except Exception as e:
            logging.warning(f"Failed to process file {path}: {e}")
        finally:
            finish()

    def _filter_and_extract(self, path: Path, counts: Optional[_JobCounters] = None) -> Optional[FileRecord]:
        if not self.filter.should_index(path):
            self._count_skip(counts)
            return None
        try:
            record = self.extractor.extract(path)
        except MetadataExtractionError as e:
            logging.warning(str(e))
            self._count_skip(counts)
            return None
        self.processed.increment()
        if counts:
            counts.processed.increment()
        return record

    def _skip_link(self, path: Path, counts: _JobCounters):
        logging.debug(f"Skipping symlinked file: {path}")
        self._count_skip(counts)

    def _count_skip(self, counts: Optional[_JobCounters]):
        self.skipped.increment()
        if counts:
            counts.skipped.increment()

    def _hash(self, path: Path) -> Optional[str]:
        """A hash failure still indexes the file, just without a hash."""
        try:
            return self.hasher.hash(path)
        except FileHashError as e:
            logging.warning(f"Failed to generate hash: {e}")
            return None

    def ingest_file(self, path: Union[Path, str]) -> Optional[FileRecord]:
        """
        Runs the per-file task synchronously on the calling thread.
        Returns the queued record, or None if it was filtered, failed, or dropped.
        """
        path = Path(path)
        self.inflight.start()
        try:
            record = self._filter_and_extract(path)
            if record is None:
                return None
            record.hash = self._hash(path)
            return record if self.writer.offer(record) else None
        finally:
            self.inflight.done()

    # --- Introspection ---

    @property
    def active_tasks(self) -> int:
        return self.inflight.count

    @property
    def queue_size(self) -> int:
        return self.writer.queue_size


def combine_jobs(jobs: List[ScanJob]) -> ScanJob:
    if not jobs:
        return ScanJob(root="")
    result = jobs[0]
    for job in jobs[1:]:
        result = result.combine(job)
    return result
