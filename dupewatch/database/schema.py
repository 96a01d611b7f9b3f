"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. One row per indexed file.
        # No uniqueness on path or hash: duplicates are exactly what we hunt for.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS file_metadata (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            file_name       TEXT NOT NULL,
            file_directory  TEXT NOT NULL,
            file_size       INTEGER NOT NULL,
            last_modified   REAL NOT NULL,
            content_type    TEXT,
            file_hash       TEXT                  -- NULL until the file was read in full
        );
        """)

        # 3. Indices for grouping and range queries
        conn.execute("CREATE INDEX IF NOT EXISTS idx_file_metadata_hash ON file_metadata(file_hash);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_file_metadata_size ON file_metadata(file_size);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_file_metadata_mtime ON file_metadata(last_modified);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_file_metadata_path ON file_metadata(file_directory, file_name);")

    logging.debug("Database schema initialized.")
