import pytest
import sqlite3
from dupewatch.config import FilterConfig, ProcessingConfig
from dupewatch.database.schema import init_schema
from dupewatch.database.ops import MetadataStore
from dupewatch.models import FileRecord

@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:", check_same_thread=False)
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def store(conn):
    """Returns a MetadataStore attached to the in-memory DB."""
    return MetadataStore(conn)

@pytest.fixture
def open_filter():
    """A filter config that lets every regular file through."""
    return FilterConfig(
        excluded_extensions=(),
        excluded_directories=(),
        skip_hidden_files=False,
        skip_system_files=False,
    )

@pytest.fixture
def small_processing():
    return ProcessingConfig(parallelism=2, hashing_threads=2, queue_capacity=100, batch_size=10, offer_timeout=1.0)

@pytest.fixture
def make_record():
    """Factory for unsaved FileRecords at an absolute path."""
    def _make(path, size=2048, mtime=1000.0, file_hash="h1", **kw):
        return FileRecord(
            name=path.name,
            directory=str(path.parent),
            size=size,
            last_modified=mtime,
            hash=file_hash,
            **kw,
        )
    return _make
