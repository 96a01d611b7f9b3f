import hashlib
from pathlib import Path
from .. import config
from ..exceptions import FileHashError

class FileHasher:
    def __init__(self, buffer_size: int = config.HASH_BUFFER_SIZE):
        self.buffer_size = buffer_size

    def hash(self, path: Path) -> str:
        """
        Computes the SHA-256 digest of the whole file.

        Reads through a fixed-size buffer, so memory stays bounded no matter
        how large the file is. Equal digests are treated as equal content;
        there is no byte-by-byte re-verification.

        Raises:
            FileHashError: the file vanished, is unreadable, or the read failed.
        """
        h = hashlib.sha256()
        try:
            with open(path, 'rb') as f:
                while chunk := f.read(self.buffer_size):
                    h.update(chunk)
        except OSError as e:
            raise FileHashError(f"Cannot hash {path}: {e}") from e
        return h.hexdigest()
