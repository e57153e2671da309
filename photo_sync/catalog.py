import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .models import MediaIndex, MediaItem, MediaType
from .scanning.filesystem import MediaScanner


class MediaCatalog:
    """
    In-memory index of local media, bucketed by calendar day.

    Rebuilt from a fresh scan every time; nothing here is persisted.
    """

    def __init__(self, scanner: Optional[MediaScanner] = None):
        self.scanner = scanner or MediaScanner()
        self._indices: Dict[str, MediaIndex] = {}
        self._by_id: Dict[str, MediaItem] = {}
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    def build(self, roots: Iterable[Path]) -> Dict[str, MediaIndex]:
        """Clears the catalog and fills it from a new scan of roots."""
        self.clear()
        count = 0
        for item in self.scanner.scan(roots):
            if self.add(item):
                count += 1
        logging.info(f"Catalog built: {count} items in {len(self._indices)} days")
        return self.indices()

    def start_background_scan(self, roots: Iterable[Path]) -> Future:
        """
        Runs build() on a background thread. indices() shows partial results
        while the scan is still running.
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="catalog-scan")
        return self._executor.submit(self.build, list(roots))

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def clear(self):
        with self._lock:
            self._indices.clear()
            self._by_id.clear()

    def add(self, item: MediaItem) -> bool:
        """Adds an item unless its identity is already catalogued."""
        with self._lock:
            if item.id in self._by_id:
                logging.debug(f"Duplicate content {item.path} == {self._by_id[item.id].path}")
                return False
            bucket = self._indices.get(item.date_path)
            if bucket is None:
                bucket = self._indices[item.date_path] = MediaIndex(item.date_path)
            bucket.add(item)
            self._by_id[item.id] = item
            return True

    def indices(self) -> Dict[str, MediaIndex]:
        """Snapshot of the buckets, newest day first."""
        with self._lock:
            return {
                key: MediaIndex(key, list(self._indices[key].items))
                for key in sorted(self._indices, reverse=True)
            }

    def all_items(self) -> List[MediaItem]:
        return [item for index in self.indices().values() for item in index.items]

    def find(self, media_id: str) -> Optional[MediaItem]:
        with self._lock:
            return self._by_id.get(media_id)

    def ids_of_type(self, media_type: MediaType) -> List[str]:
        return [item.id for item in self.all_items() if item.type == media_type]

    @property
    def total_count(self) -> int:
        with self._lock:
            return len(self._by_id)

    @property
    def image_count(self) -> int:
        return len(self.ids_of_type(MediaType.IMAGE))

    @property
    def video_count(self) -> int:
        return len(self.ids_of_type(MediaType.VIDEO))
