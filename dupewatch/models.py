from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

@dataclass
class FileRecord:
    """
    Represents one indexed file.
    """
    name: str
    directory: str          # absolute parent directory
    size: int
    last_modified: float    # mtime at extraction time (epoch seconds)
    content_type: Optional[str] = None
    hash: Optional[str] = None  # None until the file was read in full
    id: Optional[int] = None    # assigned by the store

    @property
    def path(self) -> Path:
        return Path(self.directory) / self.name

    @property
    def modified_at(self) -> datetime:
        return datetime.fromtimestamp(self.last_modified)


@dataclass
class ScanJob:
    """One root-directory scan. Discarded once reported."""
    root: str
    started_at: datetime = field(default_factory=datetime.now)
    processed_files: int = 0
    skipped_files: int = 0
    error: Optional[str] = None
    duration_ms: int = 0

    @classmethod
    def rejected(cls, root: str, reason: str) -> "ScanJob":
        return cls(root=root, error=reason)

    def combine(self, other: "ScanJob") -> "ScanJob":
        """Sums counts; the first error encountered wins."""
        return ScanJob(
            root=self.root if self.root == other.root else f"{self.root};{other.root}",
            started_at=min(self.started_at, other.started_at),
            processed_files=self.processed_files + other.processed_files,
            skipped_files=self.skipped_files + other.skipped_files,
            error=self.error if self.error is not None else other.error,
            duration_ms=max(self.duration_ms, other.duration_ms),
        )


@dataclass(frozen=True)
class ScanStatistics:
    total_processed: int
    total_skipped: int
    active_tasks: int
    queue_size: int
    is_scanning: bool
    dropped_records: int = 0


@dataclass(frozen=True)
class FilterStatistics:
    included_extensions: int
    excluded_extensions: int
    excluded_directories: int
    included_patterns: int
    excluded_patterns: int
    min_file_size: int
    max_file_size: int


@dataclass
class DeletionResult:
    deleted_count: int = 0
    space_freed: int = 0
    kept: Optional[FileRecord] = None
    message: str = ""


@dataclass
class DuplicateOutcome:
    duplicates_found: bool
    duplicate_count: int = 0
    deleted_count: int = 0
    space_freed: int = 0
    message: str = ""


@dataclass
class SweepResult:
    groups: int = 0
    duplicates_found: int = 0
    deleted_count: int = 0
    space_freed: int = 0
    duration_ms: int = 0


@dataclass(frozen=True)
class DuplicateStatistics:
    duplicates_detected: int
    duplicates_deleted: int
    space_reclaimed: int
    total_files: int
    duplicate_hash_groups: int
    auto_delete_enabled: bool
