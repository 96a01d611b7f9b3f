import logging
import threading
from concurrent.futures import Future
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import Settings, with_patterns
from .database.db import DBManager
from .database.ops import MetadataStore
from .dedupe.resolver import DuplicateResolver, SweepScheduler
from .models import FileRecord, ScanJob, ScanStatistics, SweepResult
from .scanning.filters import PathFilter
from .scanning.pipeline import IngestionPipeline, combine_jobs
from .watching.watcher import FilesystemWatcher

MAX_SCANS_REACHED = "Max concurrent scans reached"


class ScanCoordinator:
    """
    Admission control and bookkeeping for full-tree scans.

    A scan needs one permit; when none is free the request is rejected at
    once with an already-completed result instead of being queued.
    """

    def __init__(self, pipeline: IngestionPipeline, max_concurrent_scans: int = 3):
        self.pipeline = pipeline
        self.max_concurrent_scans = max_concurrent_scans
        self._permits = threading.BoundedSemaphore(max_concurrent_scans)
        self._active = 0
        self._lock = threading.Lock()

    def start_scan(self, path: Union[Path, str]) -> "Future[ScanJob]":
        if not self._permits.acquire(blocking=False):
            logging.warning(f"Scan of {path} rejected: {MAX_SCANS_REACHED}")
            future: Future = Future()
            future.set_result(ScanJob.rejected(str(path), MAX_SCANS_REACHED))
            return future

        with self._lock:
            self._active += 1
        try:
            future = self.pipeline.walk(path)
        except Exception:
            self._release()
            raise
        future.add_done_callback(lambda _: self._release())
        return future

    def start_scan_all(self, roots: List[Path]) -> "Future[ScanJob]":
        """One scan per root (each needs its own permit), joined into one result."""
        futures = [self.start_scan(r) for r in roots]
        combined: Future = Future()
        remaining = [len(futures)]
        lock = threading.Lock()

        def on_done(_):
            with lock:
                remaining[0] -= 1
                if remaining[0]:
                    return
            try:
                combined.set_result(combine_jobs([f.result() for f in futures]))
            except Exception as e:
                combined.set_exception(e)

        if not futures:
            combined.set_result(ScanJob(root=""))
        for f in futures:
            f.add_done_callback(on_done)
        return combined

    def _release(self):
        with self._lock:
            self._active -= 1
        self._permits.release()

    @property
    def is_scanning(self) -> bool:
        with self._lock:
            return self._active > 0

    def statistics(self) -> ScanStatistics:
        return ScanStatistics(
            total_processed=self.pipeline.processed.value,
            total_skipped=self.pipeline.skipped.value,
            active_tasks=self.pipeline.active_tasks,
            queue_size=self.pipeline.queue_size,
            is_scanning=self.is_scanning,
            dropped_records=self.pipeline.writer.dropped.value,
        )


class DupewatchApp:
    """
    Wires the store, pipeline, resolver and watchers together and exposes the
    control operations an API or CLI layer calls.
    """

    def __init__(self, settings: Settings, db_path: Optional[Union[Path, str]] = None):
        self.settings = settings
        self.db_manager = DBManager(db_path or settings.store.path)
        conn = self.db_manager.connect()
        self.store = MetadataStore(conn, self.db_manager.write_lock)

        self.path_filter = PathFilter(settings.file_filter)
        self.resolver = DuplicateResolver(self.store, settings.duplicate_detection)
        on_persisted = self._check_persisted if settings.duplicate_detection.check_on_ingest else None
        self.pipeline = IngestionPipeline(
            self.store, self.path_filter, settings.processing, on_persisted=on_persisted
        )
        self.coordinator = ScanCoordinator(self.pipeline, settings.processing.max_concurrent_scans)
        self.scheduler = SweepScheduler(self.resolver, settings.duplicate_detection.sweep_delay)

        self._watchers: List[FilesystemWatcher] = []
        self._watch_threads: List[threading.Thread] = []
        self._started = False

    # --- Lifecycle ---

    def start(self, schedule_sweeps: bool = True):
        self.pipeline.start()
        if schedule_sweeps and self.settings.duplicate_detection.auto_delete:
            self.scheduler.start()
        self._started = True

    def stop(self):
        logging.info("Shutting down dupewatch...")
        for w in self._watchers:
            w.stop()
        for t in self._watch_threads:
            t.join(timeout=10)
        self.scheduler.stop(timeout=30)
        self.pipeline.shutdown(wait=True)
        self.db_manager.close()
        self._started = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    def watch(self, roots: Optional[List[Path]] = None) -> List[threading.Thread]:
        """Starts one watcher thread per root."""
        threads = []
        for root in roots or self.settings.roots():
            watcher = FilesystemWatcher(self.pipeline, self.store)
            t = threading.Thread(target=watcher.run, args=(root,), name=f"watch-{Path(root).name}", daemon=True)
            self._watchers.append(watcher)
            self._watch_threads.append(t)
            t.start()
            threads.append(t)
        return threads

    def _check_persisted(self, records: List[FileRecord]):
        for rec in records:
            if rec.hash:
                self.resolver.check_one(rec)

    # --- Control surface ---

    def scan_directory(self, path: Union[Path, str]) -> "Future[ScanJob]":
        logging.info(f"Starting directory scan via control surface: {path}")
        return self.coordinator.start_scan(path)

    def scan_all(self) -> "Future[ScanJob]":
        return self.coordinator.start_scan_all(self.settings.roots())

    def force_duplicate_detection(self) -> SweepResult:
        return self.resolver.sweep()

    def update_filter_patterns(self, included: List[str], excluded: List[str]) -> Dict[str, Any]:
        patterns = self.path_filter.update_patterns(included, excluded)
        self.settings.file_filter = with_patterns(self.settings.file_filter, included, excluded)
        return {
            "included_patterns": len(patterns.included),
            "excluded_patterns": len(patterns.excluded),
        }

    def configuration(self) -> Dict[str, Any]:
        return self.settings.to_dict()

    def status(self) -> Dict[str, Any]:
        dd = self.settings.duplicate_detection
        return {
            "scanner": asdict(self.coordinator.statistics()),
            "duplicate_detection": asdict(self.resolver.statistics()),
            "file_filter": asdict(self.path_filter.statistics()),
            "storage": {
                "total_bytes": self.store.total_storage_used(),
                "potential_savings": self.store.potential_storage_savings(dd.min_file_size_for_duplication),
                "content_types": self.store.count_by_content_type(),
            },
            "configuration": {
                "monitored_paths": list(self.settings.monitored_paths),
                "processing_parallelism": self.settings.processing.parallelism,
                "batch_size": self.settings.processing.batch_size,
                "duplicate_check_delay": dd.sweep_delay,
                "deletion_strategy": self.resolver.strategy.value,
            },
        }
