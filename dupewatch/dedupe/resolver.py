import os
import logging
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

from tqdm import tqdm

from ..concurrency import AtomicCounter
from ..config import DuplicateConfig
from ..database.ops import MetadataStore
from ..exceptions import DatabaseError
from ..models import DeletionResult, DuplicateOutcome, DuplicateStatistics, FileRecord, SweepResult
from .strategies import RetentionStrategy, select_keeper


def latest_per_path(group: List[FileRecord]) -> List[FileRecord]:
    """Keeps only the newest row (highest id) for each path, in group order."""
    latest: Dict[Path, FileRecord] = {}
    for rec in group:
        current = latest.get(rec.path)
        if current is None or (rec.id or 0) > (current.id or 0):
            latest[rec.path] = rec
    return [rec for rec in group if latest[rec.path] is rec]


class DuplicateResolver:
    """
    Groups indexed files by content hash and deletes every member but one.

    Protected extensions and the minimum size only decide which records are
    gathered into a group; once a group exists the retention strategy alone
    picks the keeper. For each loser the file is removed first, then its
    record. A loser whose file is already gone just loses its record, and a
    keeper whose file is gone is dropped before the keeper is picked again.
    Only the newest row for a path takes part; older rows for it are dropped.
    """

    def __init__(self, store: MetadataStore, cfg: Optional[DuplicateConfig] = None):
        self.store = store
        self.cfg = cfg or DuplicateConfig()
        self.strategy = RetentionStrategy.parse(self.cfg.strategy)
        self._protected = tuple(e.lower() for e in self.cfg.protected_extensions)
        self._sweep_lock = threading.Lock()

        self.duplicates_detected = AtomicCounter()
        self.duplicates_deleted = AtomicCounter()
        self.space_reclaimed = AtomicCounter()

    # --- Candidate gathering ---

    def is_protected(self, record: FileRecord) -> bool:
        name = record.name.lower()
        return any(name.endswith(ext) for ext in self._protected)

    def _candidates(self, records: List[FileRecord]) -> List[FileRecord]:
        return [r for r in records if not self.is_protected(r)]

    # --- Entry points ---

    def check_one(self, record: FileRecord) -> DuplicateOutcome:
        """Looks for copies of one freshly ingested record."""
        if record.size < self.cfg.min_file_size_for_duplication:
            return DuplicateOutcome(False, message="File too small for duplicate detection")
        if self.is_protected(record):
            return DuplicateOutcome(False, message="Protected file extension")
        if not record.hash:
            return DuplicateOutcome(False, message="File has no hash")

        try:
            # The row may have been replaced since this record was handed to us
            current = self.store.find_by_id(record.id) if record.id is not None else None
            if current is None:
                return DuplicateOutcome(False, message="Record no longer indexed")
            record = current
            duplicates = self._candidates(self.store.find_by_hash_excluding(record.hash, record.id))
        except DatabaseError as e:
            logging.error(f"Error processing file for duplicates: {record.name}: {e}")
            return DuplicateOutcome(False, message=f"Error: {e}")

        # Rows for this same path are stale copies of the record, not duplicates
        copies = len({d.path for d in duplicates if d.path != record.path})
        if not copies:
            return DuplicateOutcome(False, message="No duplicates found")

        self.duplicates_detected.add(copies)

        if not self.cfg.auto_delete:
            logging.info(f"Found {copies} duplicates for file: {record.name} (auto-delete disabled)")
            return DuplicateOutcome(True, duplicate_count=copies,
                                    message="Duplicates found but not deleted")

        group = sorted(duplicates + [record], key=lambda r: r.id)
        result = self.resolve_group(group)
        return DuplicateOutcome(
            True,
            duplicate_count=copies,
            deleted_count=result.deleted_count,
            space_freed=result.space_freed,
            message=result.message,
        )

    def sweep(self) -> SweepResult:
        """Resolves every hash group in the store. Later sweeps pick up anything this one races with."""
        with self._sweep_lock:
            result = SweepResult()
            t0 = time.monotonic()
            logging.info("Starting scheduled duplicate detection...")
            try:
                hashes = self.store.find_duplicate_hashes(self.cfg.min_file_size_for_duplication)
            except DatabaseError as e:
                logging.error(f"Error during scheduled duplicate detection: {e}")
                return result

            if not hashes:
                logging.info("No duplicates found during scheduled check")
                return result

            logging.info(f"Found {len(hashes)} hash groups with duplicates")
            for file_hash in tqdm(hashes, desc="Resolving duplicates", unit="group", disable=None):
                try:
                    group = self._candidates(self.store.find_by_hash(file_hash))
                except DatabaseError as e:
                    logging.error(f"Failed to load duplicate group {file_hash}: {e}")
                    continue
                copies = len(latest_per_path(group)) - 1
                if copies < 1:
                    if len(group) > 1 and self.cfg.auto_delete:
                        self.resolve_group(group)
                    continue

                result.groups += 1
                result.duplicates_found += copies
                self.duplicates_detected.add(copies)
                if self.cfg.auto_delete:
                    deletion = self.resolve_group(group)
                    result.deleted_count += deletion.deleted_count
                    result.space_freed += deletion.space_freed

            result.duration_ms = int((time.monotonic() - t0) * 1000)
            logging.info(
                f"Duplicate sweep completed: {result.groups} groups, {result.duplicates_found} duplicates, "
                f"{result.deleted_count} deleted, {result.space_freed} bytes freed in {result.duration_ms}ms"
            )
            return result

    # --- Resolution ---

    def resolve_group(self, group: List[FileRecord]) -> DeletionResult:
        members = latest_per_path(group)
        for stale in group:
            if not any(stale is m for m in members):
                # Two rows for one file: drop the older row, never the file
                self._drop_record(stale)

        keeper = None
        while len(members) > 1:
            candidate = select_keeper(members, self.strategy)
            if os.path.exists(candidate.path):
                keeper = candidate
                break
            logging.warning(f"Kept copy is gone, removed from database: {candidate.path}")
            self._drop_record(candidate)
            members = [m for m in members if m is not candidate]
        if keeper is None:
            return DeletionResult(message="No duplicates to delete")

        result = DeletionResult(kept=keeper)
        for member in members:
            if member is keeper:
                continue
            freed = self._delete_member(member)
            if freed is not None:
                result.deleted_count += 1
                result.space_freed += freed

        self.duplicates_deleted.add(result.deleted_count)
        self.space_reclaimed.add(result.space_freed)
        result.message = (
            f"Deleted {result.deleted_count} duplicates, freed {result.space_freed} bytes, kept: {keeper.name}"
        )
        return result

    def _delete_member(self, record: FileRecord) -> Optional[int]:
        """
        Returns the bytes reclaimed, or None when no file was removed (the
        file was already gone and only its record was dropped, or removal failed).
        """
        path = record.path
        try:
            if os.path.exists(path):
                os.remove(path)
                self.store.delete(record)
                if self.cfg.enable_deduplication_logging:
                    logging.info(f"Deleted duplicate file: {path} (freed {record.size} bytes)")
                return record.size

            self.store.delete(record)
            logging.warning(f"File not found for deletion, removed from database: {path}")
            return None
        except (OSError, DatabaseError) as e:
            logging.error(f"Failed to delete duplicate file {path}: {e}")
            return None

    def _drop_record(self, record: FileRecord):
        try:
            self.store.delete(record)
        except DatabaseError as e:
            logging.error(f"Failed to remove stale record for {record.path}: {e}")

    def statistics(self) -> DuplicateStatistics:
        min_size = self.cfg.min_file_size_for_duplication
        return DuplicateStatistics(
            duplicates_detected=self.duplicates_detected.value,
            duplicates_deleted=self.duplicates_deleted.value,
            space_reclaimed=self.space_reclaimed.value,
            total_files=self.store.count(),
            duplicate_hash_groups=self.store.count_duplicate_hashes(min_size),
            auto_delete_enabled=self.cfg.auto_delete,
        )


class SweepScheduler:
    """Runs `sweep()` with a fixed delay between runs on a daemon thread."""

    def __init__(self, resolver: DuplicateResolver, delay: float):
        self.resolver = resolver
        self.delay = delay
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="duplicate-sweep", daemon=True)
        self._thread.start()
        logging.info(f"Scheduled duplicate detection every {self.delay} seconds")

    def _run(self):
        while not self._stop.wait(self.delay):
            try:
                self.resolver.sweep()
            except Exception as e:
                logging.error(f"Error during scheduled duplicate detection: {e}")

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
