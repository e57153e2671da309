"""
User-defined albums, persisted as a JSON list in albums.json.

Local albums group any scanned media. Cloud albums only accept media whose
mapping is synced; the number of ids left out is kept on the album so the UI
can say how many are still waiting for upload.
"""
import json
import logging
import threading
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from . import config
from .exceptions import SerializationError
from .models import Album, AlbumType, CloudMediaMapping, SyncStatus
from .scanning.filesystem import MediaScanner


class AlbumService:

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._albums: Dict[str, Album] = {}
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise SerializationError(f"Cannot read albums {self.path}: {e}") from e
        if not isinstance(raw, list):
            raise SerializationError(f"Albums file {self.path} must contain a list")
        for entry in raw:
            try:
                album = Album.from_dict(entry)
            except SerializationError as e:
                logging.warning(f"Skipping album entry: {e}")
                continue
            self._albums[album.id] = album
        logging.debug(f"Loaded {len(self._albums)} albums")

    def _save(self):
        data = [a.to_dict() for a in self._albums.values()]
        config.write_text_atomic(self.path, json.dumps(data, indent=2, ensure_ascii=False))

    def _require(self, album_id: str) -> Album:
        album = self._albums.get(album_id)
        if album is None:
            raise KeyError(f"Album {album_id} does not exist")
        return album

    def _store(self, album: Album) -> Album:
        self._albums[album.id] = album
        self._save()
        return album

    # --- Queries ---

    def get(self, album_id: str) -> Optional[Album]:
        with self._lock:
            return self._albums.get(album_id)

    def all(self) -> List[Album]:
        with self._lock:
            return sorted(self._albums.values(), key=lambda a: a.created_at, reverse=True)

    # --- Creation ---

    def create_local_album(self, name: str, photo_ids: Iterable[str] = (),
                           description: Optional[str] = None,
                           cover_photo_id: Optional[str] = None,
                           local_folder_path: Optional[str] = None) -> Album:
        ids = _unique(photo_ids)
        album = Album(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            type=AlbumType.LOCAL,
            photo_ids=ids,
            cover_photo_id=cover_photo_id or (ids[0] if ids else None),
            local_folder_path=local_folder_path,
        )
        with self._lock:
            return self._store(album)

    def create_cloud_album(self, name: str, photo_ids: Iterable[str],
                           mapping: CloudMediaMapping,
                           description: Optional[str] = None,
                           cover_photo_id: Optional[str] = None) -> Album:
        requested = _unique(photo_ids)
        synced = _synced_only(requested, mapping)
        if cover_photo_id not in synced:
            cover_photo_id = synced[0] if synced else None
        album = Album(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            type=AlbumType.CLOUD,
            photo_ids=synced,
            cover_photo_id=cover_photo_id,
            is_synced=True,
            pending_cloud_photos_count=len(requested) - len(synced),
        )
        if album.pending_cloud_photos_count:
            logging.info(f"Cloud album {name}: {album.pending_cloud_photos_count} items not synced yet")
        with self._lock:
            return self._store(album)

    def create_album_from_directory(self, directory: Path,
                                    scanner: Optional[MediaScanner] = None) -> Album:
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Directory does not exist: {directory}")
        scanner = scanner or MediaScanner()
        ids = [item.id for item in scanner.scan([directory])]
        return self.create_local_album(directory.name, ids, local_folder_path=str(directory))

    # --- Updates ---

    def update_album(self, album: Album) -> Album:
        with self._lock:
            self._require(album.id)
            return self._store(album)

    def delete_album(self, album_id: str):
        with self._lock:
            if self._albums.pop(album_id, None) is not None:
                self._save()

    def add_photos(self, album_id: str, photo_ids: Iterable[str],
                   mapping: Optional[CloudMediaMapping] = None) -> Album:
        """
        Appends ids not yet in the album. For cloud albums `mapping` is
        required and unsynced ids are left out.
        """
        with self._lock:
            album = self._require(album_id)
            new_ids = [p for p in _unique(photo_ids) if p not in album.photo_ids]
            pending = album.pending_cloud_photos_count
            if album.type == AlbumType.CLOUD:
                if mapping is None:
                    raise ValueError("Adding to a cloud album needs the current mapping")
                synced = _synced_only(new_ids, mapping)
                pending = (pending or 0) + len(new_ids) - len(synced)
                new_ids = synced
            ids = album.photo_ids + new_ids
            cover = album.cover_photo_id or (new_ids[0] if new_ids else None)
            return self._store(replace(album, photo_ids=ids, cover_photo_id=cover,
                                       pending_cloud_photos_count=pending))

    def remove_photos(self, album_id: str, photo_ids: Iterable[str]) -> Album:
        with self._lock:
            album = self._require(album_id)
            drop = set(photo_ids)
            ids = [p for p in album.photo_ids if p not in drop]
            cover = album.cover_photo_id
            if cover in drop:
                cover = ids[0] if ids else None
            return self._store(replace(album, photo_ids=ids, cover_photo_id=cover))

    def set_cover(self, album_id: str, photo_id: str) -> Album:
        with self._lock:
            album = self._require(album_id)
            if photo_id not in album.photo_ids:
                raise ValueError(f"{photo_id} is not in album {album.name}")
            return self._store(replace(album, cover_photo_id=photo_id))

    def update_sync_status(self, album_id: str, is_synced: bool):
        with self._lock:
            album = self._albums.get(album_id)
            if album is not None:
                self._store(replace(album, is_synced=is_synced))

    def update_pending_cloud_count(self, album_id: str, count: int):
        with self._lock:
            album = self._albums.get(album_id)
            if album is not None:
                self._store(replace(album, pending_cloud_photos_count=count))


def _unique(ids: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            result.append(i)
    return result


def _synced_only(ids: List[str], mapping: CloudMediaMapping) -> List[str]:
    result = []
    for i in ids:
        m = mapping.find(i)
        if m is not None and m.sync_status == SyncStatus.SYNCED:
            result.append(i)
    return result
