"""
Live filesystem watcher.

Keeps the index current between scheduled scans. Every directory below the
root gets its own non-recursive watch, so the watcher always knows which
directories it is responsible for. New files go through the same
filter/metadata/hash path as a scan; deletions remove the matching records.
When the last watched directory disappears the watcher returns.

Uses the watchdog library for cross-platform event delivery.
"""
import os
import logging
import queue
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .. import config
from ..database.ops import MetadataStore
from ..scanning.pipeline import IngestionPipeline

_STOP = object()

# Event types that mean "a file with new content is at this path"
_CREATION_EVENTS = {"created", "closed"}
_HANDLED_EVENTS = _CREATION_EVENTS | {"deleted", "moved"}


def is_system_directory(path: Path) -> bool:
    name = path.name
    if not name:
        return False  # filesystem roots
    return name in config.SYSTEM_DIR_NAMES or name.startswith('$')


class QueueingEventHandler(FileSystemEventHandler):
    """Hands events from the observer thread to the watcher loop."""

    def __init__(self, events: queue.Queue):
        super().__init__()
        self.events = events

    def on_any_event(self, event: FileSystemEvent):
        if event.event_type in _HANDLED_EVENTS:
            self.events.put(event)


class FilesystemWatcher:
    """File system monitoring orchestrator."""

    def __init__(self,
                 pipeline: IngestionPipeline,
                 store: MetadataStore,
                 observer_factory: Callable[[], object] = Observer):
        self.pipeline = pipeline
        self.store = store
        self.events: queue.Queue = queue.Queue()
        self.handler = QueueingEventHandler(self.events)
        self.observer = observer_factory()

        # watch handle -> directory, plus the reverse for pruning
        self._watches: Dict[object, Path] = {}
        self._by_dir: Dict[Path, object] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    # --- Registration ---

    @property
    def watched_directories(self) -> Set[Path]:
        with self._lock:
            return set(self._by_dir)

    def register_all(self, start: Path, ingest_existing: bool = False) -> int:
        """
        Watches `start` and every directory below it, skipping system
        directories and subtrees we are not allowed to watch or list.
        With `ingest_existing`, files already present are ingested too
        (a directory that appears with content, e.g. moved in).
        """
        registered = 0
        stack = [Path(start)]
        while stack:
            current = stack.pop()
            if is_system_directory(current):
                logging.debug(f"Skipping system directory: {current}")
                continue
            if not self._register(current):
                continue
            registered += 1

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                logging.warning(f"Access denied to directory: {current} - Skipping. ({e})")
                continue

            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        stack.append(Path(entry.path))
                    elif ingest_existing and entry.is_file(follow_symlinks=False):
                        self.pipeline.ingest_file(Path(entry.path))
                except OSError as e:
                    logging.warning(f"Cannot inspect {entry.path}: {e}")
        return registered

    def _register(self, directory: Path) -> bool:
        with self._lock:
            if directory in self._by_dir:
                return True
        try:
            watch = self.observer.schedule(self.handler, str(directory), recursive=False)
        except OSError as e:
            logging.warning(f"Access denied to directory: {directory} - Skipping. ({e})")
            return False
        with self._lock:
            self._watches[watch] = directory
            self._by_dir[directory] = watch
        logging.debug(f"Watching {directory}")
        return True

    def prune(self, directory: Path) -> int:
        """Drops the watches for `directory` and everything below it."""
        with self._lock:
            doomed = [d for d in self._by_dir if d == directory or directory in d.parents]
            watches = [(d, self._by_dir.pop(d)) for d in doomed]
            for _, w in watches:
                self._watches.pop(w, None)

        for d, w in watches:
            try:
                self.observer.unschedule(w)
            except Exception as e:
                # The emitter may already have stopped itself when its directory vanished
                logging.debug(f"Unschedule of {d} failed: {e}")
            logging.info(f"Stopped watching removed directory: {d}")
        return len(watches)

    # --- Event loop ---

    def run(self, root: Path):
        """Blocks until stop() is called or the whole watched tree is gone."""
        root = Path(root).absolute()
        logging.info(f"Starting file system watcher on {root}")
        # Start first so that schedule() reports permission errors right away
        self.observer.start()
        try:
            self.register_all(root)
            if not self.watched_directories:
                logging.warning(f"Nothing to watch under {root}")
                return
            logging.info(f"File system observer started ({len(self.watched_directories)} directories)")
            while not self._stopped.is_set():
                batch = self._next_batch()
                if batch is None:
                    break
                for event in batch:
                    self.handle_event(event)
                if not self.watched_directories:
                    logging.info("All watched directories are gone, stopping watcher")
                    break
        finally:
            self.observer.stop()
            self.observer.join()
            logging.info("File system observer stopped")

    def _next_batch(self) -> Optional[List[FileSystemEvent]]:
        first = self.events.get()
        if first is _STOP:
            return None
        batch = [first]
        while True:
            try:
                item = self.events.get_nowait()
            except queue.Empty:
                break
            if item is _STOP:
                self._stopped.set()
                break
            batch.append(item)
        return batch

    def stop(self):
        self._stopped.set()
        self.events.put(_STOP)

    def handle_event(self, event: FileSystemEvent):
        """Processes one event. Errors are logged; the loop keeps going."""
        try:
            src = Path(os.fsdecode(event.src_path))
            if event.event_type in _CREATION_EVENTS:
                self._on_created(src, event.is_directory)
            elif event.event_type == "deleted":
                self._on_deleted(src, event.is_directory)
            elif event.event_type == "moved":
                dest = Path(os.fsdecode(event.dest_path))
                logging.info(f"Moved: {src} -> {dest}")
                self._on_deleted(src, event.is_directory)
                self._on_created(dest, event.is_directory)
        except Exception as e:
            logging.error(f"Unable to process {event.event_type} event for {event.src_path}: {e}")

    def _on_created(self, path: Path, is_directory: bool):
        if is_directory:
            if is_system_directory(path):
                return
            n = self.register_all(path, ingest_existing=True)
            logging.info(f"New directory watched: {path} ({n} directories)")
            return

        record = self.pipeline.ingest_file(path)
        if record:
            logging.info(f"New file processed: {path}")

    def _on_deleted(self, path: Path, is_directory: bool):
        removed = self.store.delete_by_path(str(path.parent), path.name)
        if removed:
            logging.info(f"File deleted and metadata removed: {path}")
        if is_directory or path in self.watched_directories:
            # Records under the old location would otherwise outlive their files
            removed = self.store.delete_by_directory_prefix(str(path))
            if removed:
                logging.info(f"Directory gone, removed {removed} records below {path}")
            self.prune(path)
