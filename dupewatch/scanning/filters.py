"""
Decides whether a filesystem entry should be indexed.

The checks run in a fixed order and the first failing one wins. Any OSError
raised while probing the entry means "do not index".
"""
import os
import re
import stat
import logging
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Pattern, Tuple

from .. import config
from ..config import FilterConfig
from ..models import FilterStatistics

# Windows file attribute bits (st_file_attributes)
FILE_ATTRIBUTE_HIDDEN = 0x2
FILE_ATTRIBUTE_SYSTEM = 0x4


def file_extension(name: str) -> str:
    """Last dot-suffix including the dot, or '' for '.bashrc' and 'name.'."""
    idx = name.rfind('.')
    if 0 < idx < len(name) - 1:
        return name[idx:]
    return ''


def _normalize_ext(ext: str) -> str:
    ext = ext.strip().lower()
    if ext and not ext.startswith('.'):
        ext = '.' + ext
    return ext


def compile_patterns(patterns: Iterable[str], kind: str) -> Tuple[Pattern, ...]:
    """Compiles case-insensitive patterns, dropping malformed ones with a warning."""
    compiled = []
    for p in patterns:
        try:
            compiled.append(re.compile(p, re.IGNORECASE))
        except re.error as e:
            logging.warning(f"Invalid {kind} pattern {p!r}: {e}")
    return tuple(compiled)


@dataclass(frozen=True)
class PatternSet:
    included: Tuple[Pattern, ...] = ()
    excluded: Tuple[Pattern, ...] = ()

    @classmethod
    def build(cls, included: Iterable[str], excluded: Iterable[str]) -> "PatternSet":
        return cls(compile_patterns(included, "included"), compile_patterns(excluded, "excluded"))

    def allows(self, file_name: str) -> bool:
        if self.included and not any(p.fullmatch(file_name) for p in self.included):
            return False
        return not any(p.fullmatch(file_name) for p in self.excluded)


# --- System file probes ---

class SystemFileProbe:
    def is_system_file(self, path: Path, st: os.stat_result) -> bool:
        raise NotImplementedError

    def is_hidden(self, path: Path, st: os.stat_result) -> bool:
        raise NotImplementedError


class WindowsSystemProbe(SystemFileProbe):
    """Uses the DOS attribute bits reported by stat()."""

    def is_system_file(self, path: Path, st: os.stat_result) -> bool:
        return bool(getattr(st, 'st_file_attributes', 0) & FILE_ATTRIBUTE_SYSTEM)

    def is_hidden(self, path: Path, st: os.stat_result) -> bool:
        return bool(getattr(st, 'st_file_attributes', 0) & FILE_ATTRIBUTE_HIDDEN)


class PosixSystemProbe(SystemFileProbe):
    """No system attribute here, so fall back to name and location heuristics."""

    def is_system_file(self, path: Path, st: os.stat_result) -> bool:
        if path.name.startswith('.'):
            return True
        s = str(path)
        return any(frag in s for frag in config.POSIX_SYSTEM_FRAGMENTS)

    def is_hidden(self, path: Path, st: os.stat_result) -> bool:
        return path.name.startswith('.')


def system_probe_for_platform(platform: Optional[str] = None) -> SystemFileProbe:
    platform = platform or sys.platform
    if platform.startswith('win'):
        return WindowsSystemProbe()
    return PosixSystemProbe()


class PathFilter:
    def __init__(self, cfg: FilterConfig, probe: Optional[SystemFileProbe] = None):
        self.cfg = cfg
        self.probe = probe or system_probe_for_platform()
        self._included_exts = tuple(_normalize_ext(e) for e in cfg.included_extensions if e.strip())
        self._excluded_exts = tuple(_normalize_ext(e) for e in cfg.excluded_extensions if e.strip())
        # Readers grab the current reference; updates swap in a new set
        self._patterns = PatternSet.build(cfg.included_patterns, cfg.excluded_patterns)
        self._update_lock = threading.Lock()
        logging.info(
            f"Initialized file filters - {len(self._patterns.included)} included patterns, "
            f"{len(self._patterns.excluded)} excluded patterns"
        )

    @property
    def patterns(self) -> PatternSet:
        return self._patterns

    def update_patterns(self, included: Iterable[str], excluded: Iterable[str]) -> PatternSet:
        new_set = PatternSet.build(included, excluded)
        with self._update_lock:
            self._patterns = new_set
        logging.info(
            f"Updated file filter patterns - {len(new_set.included)} included, {len(new_set.excluded)} excluded"
        )
        return new_set

    def should_index(self, path: Path, st: Optional[os.stat_result] = None) -> bool:
        try:
            return self._check(Path(path), st)
        except OSError as e:
            logging.debug(f"Filter probe failed for {path}: {e}")
            return False

    def _check(self, path: Path, st: Optional[os.stat_result]) -> bool:
        cfg = self.cfg
        patterns = self._patterns

        # 1. Regular files only (symlinks are followed, like a plain stat)
        if st is None:
            st = os.stat(path)
        if not stat.S_ISREG(st.st_mode):
            return False

        # 2-4. Attribute flags
        if cfg.skip_hidden_files and self.probe.is_hidden(path, st):
            return False
        if cfg.skip_system_files and self.probe.is_system_file(path, st):
            return False
        if cfg.skip_read_only_files and not os.access(path, os.W_OK):
            return False

        # 5. Excluded directory fragments
        abs_path = os.path.abspath(path)
        if any(frag and frag in abs_path for frag in cfg.excluded_directories):
            return False

        # 6. Size window
        if st.st_size < cfg.min_file_size or st.st_size > cfg.max_file_size:
            return False

        # 7. Extensions
        ext = file_extension(path.name).lower()
        if self._included_exts and ext not in self._included_exts:
            return False
        if ext in self._excluded_exts:
            return False

        # 8. Name patterns
        return patterns.allows(path.name)

    def statistics(self) -> FilterStatistics:
        patterns = self._patterns
        return FilterStatistics(
            included_extensions=len(self._included_exts),
            excluded_extensions=len(self._excluded_exts),
            excluded_directories=len(self.cfg.excluded_directories),
            included_patterns=len(patterns.included),
            excluded_patterns=len(patterns.excluded),
            min_file_size=self.cfg.min_file_size,
            max_file_size=self.cfg.max_file_size,
        )
