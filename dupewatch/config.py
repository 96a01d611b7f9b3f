"""
Configuration defaults and settings for dupewatch.
"""
import os
import logging
from dataclasses import dataclass, field, asdict, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .exceptions import ConfigError

# --- File Filtering ---
EXCLUDED_EXTENSIONS = ('.tmp', '.log', '.cache', '.lock')
EXCLUDED_DIRECTORIES = ('$RECYCLE.BIN', 'System Volume Information', '.git', 'node_modules')

# Directory names the watcher never registers
SYSTEM_DIR_NAMES = {'$RECYCLE.BIN', 'System Volume Information'}

# Path fragments treated as system locations on platforms without a system attribute
POSIX_SYSTEM_FRAGMENTS = ('/proc/', '/sys/', '/dev/')

# --- Hashing & Performance ---
HASH_BUFFER_SIZE = 8 * 1024 * 1024  # 8 MiB read buffer
CPU_COUNT = os.cpu_count() or 1

# --- Processing ---
QUEUE_CAPACITY = 10000
BATCH_SIZE = 500
OFFER_TIMEOUT = 5.0  # seconds a producer waits on a full queue
MAX_CONCURRENT_SCANS = 3
HASH_POOL_KINDS = ('fixed', 'per_task')

# --- Duplicate Detection ---
MIN_FILE_SIZE_FOR_DUPLICATION = 1024  # 1 KB
PROTECTED_EXTENSIONS = ('.exe', '.dll', '.sys', '.ini')
SWEEP_DELAY = 30.0  # seconds between scheduled sweeps

# Alias kept for configuration files written against older strategy names
STRATEGY_ALIASES = {'KEEP_FIRST_FOUND': 'KEEP_FIRST_SEEN'}

# --- Storage ---
DEFAULT_DB_NAME = "dupewatch.db"


@dataclass(frozen=True)
class FilterConfig:
    included_extensions: Tuple[str, ...] = ()
    excluded_extensions: Tuple[str, ...] = EXCLUDED_EXTENSIONS
    excluded_directories: Tuple[str, ...] = EXCLUDED_DIRECTORIES
    included_patterns: Tuple[str, ...] = ()
    excluded_patterns: Tuple[str, ...] = ()
    min_file_size: int = 0
    max_file_size: int = 2 ** 63 - 1
    skip_hidden_files: bool = True
    skip_system_files: bool = True
    skip_read_only_files: bool = False


@dataclass
class ProcessingConfig:
    parallelism: int = CPU_COUNT
    hashing_threads: int = CPU_COUNT
    hash_pool: str = 'fixed'
    queue_capacity: int = QUEUE_CAPACITY
    batch_size: int = BATCH_SIZE
    offer_timeout: float = OFFER_TIMEOUT
    max_concurrent_scans: int = MAX_CONCURRENT_SCANS
    hash_buffer_size: int = HASH_BUFFER_SIZE


@dataclass
class DuplicateConfig:
    auto_delete: bool = True
    strategy: str = 'KEEP_OLDEST'
    min_file_size_for_duplication: int = MIN_FILE_SIZE_FOR_DUPLICATION
    protected_extensions: Tuple[str, ...] = PROTECTED_EXTENSIONS
    sweep_delay: float = SWEEP_DELAY
    check_on_ingest: bool = False
    enable_deduplication_logging: bool = True


@dataclass
class StoreConfig:
    path: str = DEFAULT_DB_NAME


@dataclass
class Settings:
    monitored_paths: List[str] = field(default_factory=list)
    file_filter: FilterConfig = field(default_factory=FilterConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    duplicate_detection: DuplicateConfig = field(default_factory=DuplicateConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    def roots(self) -> List[Path]:
        return [Path(p).expanduser() for p in self.monitored_paths]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _section(cls, data: Optional[Dict[str, Any]], name: str):
    """Builds one dataclass section, rejecting keys it does not define."""
    data = dict(data or {})
    known = set(cls.__dataclass_fields__)
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{name}': {', '.join(sorted(unknown))}")
    # YAML gives lists; frozen sections store tuples
    for key, value in data.items():
        if isinstance(value, list) and isinstance(cls.__dataclass_fields__[key].default, tuple):
            data[key] = tuple(value)
    return cls(**data)


def normalize_strategy(name: str) -> str:
    key = str(name).strip().upper()
    return STRATEGY_ALIASES.get(key, key)


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    data = dict(data or {})
    settings = Settings(
        monitored_paths=[str(p) for p in data.pop('monitored_paths', []) or []],
        file_filter=_section(FilterConfig, data.pop('file_filter', None), 'file_filter'),
        processing=_section(ProcessingConfig, data.pop('processing', None), 'processing'),
        duplicate_detection=_section(DuplicateConfig, data.pop('duplicate_detection', None), 'duplicate_detection'),
        store=_section(StoreConfig, data.pop('store', None), 'store'),
    )
    if data:
        raise ConfigError(f"Unknown configuration sections: {', '.join(sorted(data))}")

    # Validate the strategy name eagerly; the enum lives with the resolver
    from .dedupe.strategies import RetentionStrategy
    strategy = normalize_strategy(settings.duplicate_detection.strategy)
    if strategy not in RetentionStrategy.__members__:
        raise ConfigError(f"Unknown deletion strategy: {settings.duplicate_detection.strategy}")
    settings.duplicate_detection.strategy = strategy

    if settings.processing.hash_pool not in HASH_POOL_KINDS:
        raise ConfigError(f"Unknown hash pool kind: {settings.processing.hash_pool}")
    return settings


def load_config(path: Path) -> Settings:
    """Loads settings from a YAML file. Missing sections keep their defaults."""
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read configuration {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {path} must be a mapping")
    settings = settings_from_dict(data)
    logging.info(f"Loaded configuration from {path} ({len(settings.monitored_paths)} monitored paths)")
    return settings


def with_patterns(cfg: FilterConfig, included: List[str], excluded: List[str]) -> FilterConfig:
    return replace(cfg, included_patterns=tuple(included), excluded_patterns=tuple(excluded))
