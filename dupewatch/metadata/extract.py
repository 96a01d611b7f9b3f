import logging
import mimetypes
import os
from pathlib import Path
from typing import Optional

from ..exceptions import MetadataExtractionError
from ..models import FileRecord


class MetadataExtractor:
    """
    Reads the cheap, stat-level facts about a file.

    Content type is a best-effort guess from the file name (the same kind of
    answer a platform "probe content type" call gives); it is never fatal.
    """

    def extract(self, path: Path, st: Optional[os.stat_result] = None) -> FileRecord:
        """
        Returns a FileRecord without a hash.

        Raises:
            MetadataExtractionError: the file vanished or cannot be stat'ed.
        """
        path = Path(path)
        try:
            if st is None:
                st = path.stat()
        except OSError as e:
            raise MetadataExtractionError(f"Failed to extract metadata for {path}: {e}") from e

        return FileRecord(
            name=path.name,
            directory=os.path.abspath(path.parent),
            size=st.st_size,
            last_modified=st.st_mtime,
            content_type=self.guess_content_type(path),
        )

    def guess_content_type(self, path: Path) -> Optional[str]:
        try:
            content_type, _ = mimetypes.guess_type(path.name, strict=False)
            return content_type
        except Exception as e:
            logging.debug(f"Content type probe failed for {path}: {e}")
            return None
