import hashlib
from pathlib import Path
from dataclasses import dataclass

from .. import config
from ..exceptions import FileSystemError

@dataclass
class HashResult:
    value: str
    is_metadata: bool  # True if derived from path+size+mtime instead of content

class ContentHasher:
    def identify(self, path: Path) -> HashResult:
        """
        Computes the identity of a media file.

        Strategy:
        1. If file < HASH_SIZE_THRESHOLD:
           -> Full Read (SHA-256).

        2. If file >= HASH_SIZE_THRESHOLD:
           -> SHA-256 over (absolute path, size, mtime in ms), prefixed 'm-'.
           -> The content is never read. Two different large files that end up
              with the same path, size and mtime get the same identity; that is
              an accepted limitation.
        """
        try:
            st = path.stat()
        except OSError as e:
            # File might have been moved/deleted during scan
            raise FileSystemError(f"Cannot stat {path}: {e}") from e

        if st.st_size < config.HASH_SIZE_THRESHOLD:
            try:
                return HashResult(self._full_sha256(path), is_metadata=False)
            except OSError as e:
                raise FileSystemError(f"Cannot read {path}: {e}") from e

        return HashResult(self._metadata_hash(path, st.st_size, st.st_mtime_ns), is_metadata=True)

    def _full_sha256(self, path: Path) -> str:
        """Reads entire file. High I/O cost."""
        h = hashlib.sha256()
        with open(path, 'rb') as f:
            while chunk := f.read(config.HASH_CHUNK_SIZE):
                h.update(chunk)
        return h.hexdigest()

    def _metadata_hash(self, path: Path, size: int, mtime_ns: int) -> str:
        mtime_ms = mtime_ns // 1_000_000
        key = f"{path.resolve()}|{size}|{mtime_ms}"
        return f"m-{hashlib.sha256(key.encode('utf-8')).hexdigest()}"
