import os
import logging
from collections import deque
from pathlib import Path
from typing import Iterable, Iterator, Optional, List
from datetime import datetime
from concurrent.futures import ThreadPoolExecutor

from .. import config
from ..exceptions import FileSystemError
from ..models import MediaItem, MediaType
from ..metadata.extract import CaptureDateExtractor
from .hasher import ContentHasher

class MediaScanner:
    def __init__(self,
                 batch_size: int = config.SCAN_BATCH_SIZE,
                 max_workers: int = config.SCAN_WORKERS,
                 include_unknown: bool = False):
        self.hasher = ContentHasher()
        self.metadata = CaptureDateExtractor()
        self.batch_size = max(1, batch_size)
        self.max_workers = max(1, max_workers)
        self.include_unknown = include_unknown

    def scan(self, roots: Iterable[Path]) -> Iterator[MediaItem]:
        """
        Generator that yields a MediaItem for every media file under roots.

        Breadth-first: folders wait in one queue, files in another. Each
        iteration hashes up to `batch_size` files on the worker pool and
        yields them before the walk goes on, so a consumer can show partial
        results while the rest of the tree is still being read.
        Every call starts from scratch.
        """
        pending_dirs = deque(Path(r) for r in roots)
        pending_files: deque = deque()

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            while pending_dirs or pending_files:
                # Expand folders until a full batch of files is queued
                while pending_dirs and len(pending_files) < self.batch_size:
                    self._expand(pending_dirs.popleft(), pending_dirs, pending_files)

                batch: List[Path] = []
                while pending_files and len(batch) < self.batch_size:
                    batch.append(pending_files.popleft())
                if not batch:
                    continue

                for item in executor.map(self._process_single_file, batch):
                    if item is not None:
                        yield item

    def _expand(self, folder: Path, pending_dirs: deque, pending_files: deque):
        try:
            with os.scandir(folder) as it:
                entries = list(it)
        except OSError as e:
            # Permission denied or vanished: skip the subtree, keep scanning
            logging.warning(f"Skipping unreadable folder {folder}: {e}")
            return

        # Sort for stable traversal order
        entries.sort(key=lambda e: e.name.lower())
        for e in entries:
            try:
                if e.is_dir(follow_symlinks=False):
                    pending_dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False):
                    if self._wanted(e.name):
                        pending_files.append(Path(e.path))
            except OSError as err:
                logging.warning(f"Cannot inspect {e.path}: {err}")

    def _wanted(self, name: str) -> bool:
        if name.startswith("._"):
            return False
        if self.include_unknown:
            return True
        return MediaType.from_ext(os.path.splitext(name)[1]) != MediaType.UNKNOWN

    def _process_single_file(self, path: Path) -> Optional[MediaItem]:
        """Processes a single file and returns a MediaItem, or None on error/skip."""
        try:
            st = path.stat()
            if st.st_size > config.MAX_SCAN_FILE_SIZE:
                logging.info(f"Skipping oversized file {path} ({st.st_size} bytes)")
                return None

            ext = path.suffix.lower()
            media_type = MediaType.from_ext(ext)

            # Runs on a worker thread, never on the consumer's thread
            hash_res = self.hasher.identify(path)

            modified_at = datetime.fromtimestamp(st.st_mtime)
            created_at = self.metadata.capture_date(path, media_type) or modified_at

            return MediaItem(
                id=hash_res.value,
                path=path,
                name=path.stem,
                ext=ext,
                size_bytes=st.st_size,
                type=media_type,
                created_at=created_at,
                modified_at=modified_at,
                identity_is_metadata=hash_res.is_metadata,
            )
        except (OSError, FileSystemError) as e:
            logging.error(f"Failed to scan {path}: {e}")
            return None
