import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Union

from .database.ops import MetadataStore
from .dedupe.resolver import DuplicateResolver
from .dedupe.strategies import select_keeper
from .models import FileRecord

HEADERS = [
    "Hash",
    "Action",
    "Path",
    "Size",
    "Last Modified",
    "On Disk",
    "Kept Copy",
]


class ReportGenerator:
    """
    Writes what a sweep would do, without touching the disk: one row per
    member of each duplicate group, marked KEEP or DELETE under the
    resolver's current strategy.
    """

    def __init__(self, store: MetadataStore, resolver: DuplicateResolver):
        self.store = store
        self.resolver = resolver

    def generate_duplicate_report(self, output_csv: Union[Path, str]) -> int:
        """Returns the number of duplicate groups written."""
        min_size = self.resolver.cfg.min_file_size_for_duplication
        hashes = self.store.find_duplicate_hashes(min_size)
        logging.info(f"Generating duplicate report for {len(hashes)} hash groups -> {output_csv}")

        groups = 0
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(HEADERS)

            for file_hash in hashes:
                group = [r for r in self.store.find_by_hash(file_hash) if not self.resolver.is_protected(r)]
                if len(group) < 2:
                    continue
                groups += 1
                for row in self._group_rows(file_hash, group):
                    writer.writerow(row)

        logging.info(f"Report complete. {groups} duplicate groups.")
        return groups

    def _group_rows(self, file_hash: str, group: List[FileRecord]) -> List[list]:
        keeper = select_keeper(group, self.resolver.strategy)
        rows = []
        for rec in group:
            action = "KEEP" if rec is keeper else "DELETE"
            rows.append([
                file_hash,
                action,
                str(rec.path),
                rec.size,
                datetime.fromtimestamp(rec.last_modified).isoformat(timespec="seconds"),
                "yes" if rec.path.exists() else "no",
                "" if rec is keeper else str(keeper.path),
            ])
        return rows
