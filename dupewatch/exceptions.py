"""
Custom exception hierarchy for dupewatch.

Most of these are raised at the smallest possible scope (one file, one
directory, one watch event) and converted into a skip plus a log line by the
caller; none of them is meant to take the process down.
"""


class DupewatchError(Exception):
    """Base exception for all dupewatch errors."""
    pass


class FileHashError(DupewatchError):
    """Raised when a file cannot be read in full for hashing."""
    pass


class MetadataExtractionError(DupewatchError):
    """Raised when size/mtime cannot be read for a file."""
    pass


class DatabaseError(DupewatchError):
    """Raised when metadata store operations fail."""
    pass


class ConfigError(DupewatchError):
    """Raised when configuration cannot be loaded or is invalid."""
    pass
