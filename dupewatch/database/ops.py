import os
import sqlite3
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from ..exceptions import DatabaseError
from ..models import FileRecord

_COLUMNS = "id, file_name, file_directory, file_size, last_modified, content_type, file_hash"


def _row_to_record(row: Tuple) -> FileRecord:
    return FileRecord(
        id=row[0],
        name=row[1],
        directory=row[2],
        size=row[3],
        last_modified=row[4],
        content_type=row[5],
        hash=row[6],
    )


class MetadataStore:
    """
    SQLite-backed table of indexed files.

    Every public method runs as one transaction under the connection lock, so
    callers on different threads see each operation as all-or-nothing.
    sqlite3 errors surface as DatabaseError.
    """

    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.RLock] = None):
        self.conn = conn
        self.lock = lock or threading.RLock()

    def _query(self, sql: str, params: Tuple = ()) -> List[Tuple]:
        with self.lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise DatabaseError(f"Query failed: {e}") from e

    def _write(self, sql: str, params: Tuple = ()) -> int:
        with self.lock:
            try:
                with self.conn:
                    return self.conn.execute(sql, params).rowcount
            except sqlite3.Error as e:
                raise DatabaseError(f"Write failed: {e}") from e

    # --- Commands ---

    def batch_upsert(self, records: Iterable[FileRecord]) -> List[FileRecord]:
        """
        Inserts new records and rewrites ones that already carry an id.

        A new record replaces any existing row for the same path, so a file
        that is scanned again is re-created rather than indexed twice. Ids
        are assigned to the records only after the transaction commits.
        """
        records = list(records)
        if not records:
            return records

        assigned: List[Tuple[FileRecord, int]] = []
        with self.lock:
            try:
                with self.conn:
                    cur = self.conn.cursor()
                    for rec in records:
                        values = (rec.name, rec.directory, rec.size, rec.last_modified,
                                  rec.content_type, rec.hash)
                        if rec.id is None:
                            cur.execute(
                                "DELETE FROM file_metadata WHERE file_directory = ? AND file_name = ?",
                                (rec.directory, rec.name),
                            )
                            cur.execute("""
                                INSERT INTO file_metadata
                                (file_name, file_directory, file_size, last_modified, content_type, file_hash)
                                VALUES (?, ?, ?, ?, ?, ?)
                            """, values)
                            if cur.lastrowid is None:
                                raise DatabaseError("Database INSERT failed to return a row ID.")
                            assigned.append((rec, cur.lastrowid))
                        else:
                            cur.execute("""
                                INSERT OR REPLACE INTO file_metadata
                                (id, file_name, file_directory, file_size, last_modified, content_type, file_hash)
                                VALUES (?, ?, ?, ?, ?, ?, ?)
                            """, (rec.id,) + values)
            except sqlite3.Error as e:
                raise DatabaseError(f"Batch upsert of {len(records)} records failed: {e}") from e

        for rec, row_id in assigned:
            rec.id = row_id
        return records

    def delete(self, record: FileRecord) -> bool:
        if record.id is None:
            return False
        return self._write("DELETE FROM file_metadata WHERE id = ?", (record.id,)) > 0

    def delete_by_path(self, directory: str, name: str) -> int:
        return self._write(
            "DELETE FROM file_metadata WHERE file_directory = ? AND file_name = ?",
            (str(directory), name),
        )

    def delete_by_directory_prefix(self, directory: str) -> int:
        """Removes every record in `directory` or any directory below it."""
        directory = str(directory).rstrip(os.sep) or os.sep
        prefix = directory if directory.endswith(os.sep) else directory + os.sep
        return self._write(
            "DELETE FROM file_metadata WHERE file_directory = ? OR substr(file_directory, 1, ?) = ?",
            (directory, len(prefix), prefix),
        )

    # --- Queries ---

    def find_by_id(self, record_id: int) -> Optional[FileRecord]:
        rows = self._query(f"SELECT {_COLUMNS} FROM file_metadata WHERE id = ?", (record_id,))
        return _row_to_record(rows[0]) if rows else None

    def find_by_hash(self, file_hash: str) -> List[FileRecord]:
        rows = self._query(f"SELECT {_COLUMNS} FROM file_metadata WHERE file_hash = ? ORDER BY id", (file_hash,))
        return [_row_to_record(r) for r in rows]

    def find_by_hash_excluding(self, file_hash: str, exclude_id: Optional[int]) -> List[FileRecord]:
        rows = self._query(
            f"SELECT {_COLUMNS} FROM file_metadata WHERE file_hash = ? AND id != ? ORDER BY id",
            (file_hash, exclude_id if exclude_id is not None else -1),
        )
        return [_row_to_record(r) for r in rows]

    def find_duplicate_hashes(self, min_size: int) -> List[str]:
        """Hashes shared by more than one record of at least `min_size` bytes."""
        rows = self._query("""
            SELECT file_hash FROM file_metadata
            WHERE file_hash IS NOT NULL AND file_size >= ?
            GROUP BY file_hash
            HAVING COUNT(*) > 1
            ORDER BY MIN(id)
        """, (min_size,))
        return [r[0] for r in rows]

    def count(self) -> int:
        return self._query("SELECT COUNT(*) FROM file_metadata")[0][0]

    def count_duplicate_hashes(self, min_size: int) -> int:
        return self._query("""
            SELECT COUNT(*) FROM (
                SELECT file_hash FROM file_metadata
                WHERE file_hash IS NOT NULL AND file_size >= ?
                GROUP BY file_hash
                HAVING COUNT(*) > 1
            )
        """, (min_size,))[0][0]

    def find_by_path(self, directory: str, name: str) -> List[FileRecord]:
        rows = self._query(
            f"SELECT {_COLUMNS} FROM file_metadata WHERE file_directory = ? AND file_name = ? ORDER BY id",
            (str(directory), name),
        )
        return [_row_to_record(r) for r in rows]

    def find_by_size_between(self, min_size: int, max_size: int) -> List[FileRecord]:
        rows = self._query(
            f"SELECT {_COLUMNS} FROM file_metadata WHERE file_size BETWEEN ? AND ? ORDER BY id",
            (min_size, max_size),
        )
        return [_row_to_record(r) for r in rows]

    def find_by_directory_containing(self, fragment: str) -> List[FileRecord]:
        escaped = fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        rows = self._query(
            f"SELECT {_COLUMNS} FROM file_metadata WHERE file_directory LIKE ? ESCAPE '\\' ORDER BY id",
            (f"%{escaped}%",),
        )
        return [_row_to_record(r) for r in rows]

    def count_by_content_type(self) -> Dict[str, int]:
        rows = self._query("""
            SELECT content_type, COUNT(*) FROM file_metadata
            WHERE content_type IS NOT NULL
            GROUP BY content_type
        """)
        return {ctype: n for ctype, n in rows}

    def total_storage_used(self) -> int:
        return self._query("SELECT COALESCE(SUM(file_size), 0) FROM file_metadata")[0][0]

    def potential_storage_savings(self, min_size: int) -> int:
        """Bytes that would be freed by keeping one copy of each duplicate group."""
        return self._query("""
            SELECT COALESCE(SUM(size * (cnt - 1)), 0) FROM (
                SELECT MAX(file_size) AS size, COUNT(*) AS cnt FROM file_metadata
                WHERE file_hash IS NOT NULL AND file_size >= ?
                GROUP BY file_hash
                HAVING COUNT(*) > 1
            )
        """, (min_size,))[0][0]
