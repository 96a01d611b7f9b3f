import os
import logging
from pathlib import Path
from typing import Callable, Iterator, Optional, Set

class DiskScanner:
    """Enumerates regular files below a root without following symlinks."""

    def check_root(self, root: Path) -> Optional[str]:
        """Returns an error message if the walk cannot even start."""
        try:
            with os.scandir(root):
                pass
        except OSError as e:
            return f"Error: {e}"
        return None

    def iter_files(self,
                   root: Path,
                   skip_dirs: Optional[Set[Path]] = None,
                   on_skipped: Optional[Callable[[Path], None]] = None) -> Iterator[Path]:
        """
        Depth-first walker using os.scandir for speed.

        Symlinks are not followed. A symlink to a regular file is reported
        through `on_skipped` instead of being yielded.
        """
        skip_dirs = skip_dirs or set()
        stack = [Path(root)]
        while stack:
            current = stack.pop()
            if skip_dirs and any(sd == current or sd in current.parents for sd in skip_dirs):
                continue

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                logging.warning(f"Cannot list {current}: {e}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            files = []
            for e in entries:
                try:
                    if e.is_dir(follow_symlinks=False):
                        dirs.append(Path(e.path))
                    elif e.is_file(follow_symlinks=False):
                        files.append(Path(e.path))
                    elif e.is_symlink() and e.is_file() and on_skipped:
                        on_skipped(Path(e.path))
                except OSError as err:
                    logging.warning(f"Cannot inspect {e.path}: {err}")

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

            for f in files:
                yield f
