import logging
import posixpath
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Any

from . import config
from .exceptions import SerializationError


class MediaType(Enum):
    IMAGE = "image"
    VIDEO = "video"
    UNKNOWN = "unknown"

    @classmethod
    def from_ext(cls, ext: str) -> "MediaType":
        return cls(config.EXT_TO_TYPE.get(ext.lower(), "unknown"))

    @classmethod
    def parse(cls, value: Any) -> "MediaType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class MediaItem:
    """
    Represents a media file found during a scan.
    """
    id: str
    path: Path
    name: str               # stem
    ext: str                # lower-case, with dot
    size_bytes: int
    type: MediaType
    created_at: datetime
    modified_at: datetime
    identity_is_metadata: bool = False  # True if id came from path+size+mtime

    @property
    def file_name(self) -> str:
        return self.path.name

    @property
    def date_path(self) -> str:
        return date_path_for(self.created_at)


def date_path_for(dt: datetime) -> str:
    """YYYY/MM/DD bucket key for a timestamp."""
    return config.DATE_PATH_PATTERN.format(year=dt.year, month=dt.month, day=dt.day)


def parse_date_path(date_path: str) -> Optional[datetime]:
    parts = date_path.split("/")
    if len(parts) != 3:
        return None
    try:
        return datetime(int(parts[0]), int(parts[1]), int(parts[2]))
    except ValueError:
        return None


@dataclass
class MediaIndex:
    """All items created on one calendar day, newest first."""
    date_path: str
    items: List[MediaItem] = field(default_factory=list)

    def add(self, item: MediaItem) -> bool:
        if any(existing.id == item.id for existing in self.items):
            return False
        self.items.append(item)
        self.items.sort(key=lambda i: i.created_at, reverse=True)
        return True

    def __len__(self) -> int:
        return len(self.items)


class SyncStatus(Enum):
    SYNCED = "synced"
    PENDING_UPLOAD = "pendingUpload"
    PENDING_DOWNLOAD = "pendingDownload"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Any) -> "SyncStatus":
        try:
            return cls(value)
        except ValueError:
            # Legacy 'error'/'conflict'/'unknown' and anything newer: retry next run
            return cls.FAILED


def _parse_dt(value: Any, default: Optional[datetime] = None) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return default if default is not None else datetime.now()


@dataclass
class MediaMapping:
    """Links one media item's local and remote locations for one device."""
    media_id: str
    local_path: str
    cloud_path: str
    media_type: str
    size_bytes: int
    created_at: datetime
    last_synced: datetime
    sync_status: SyncStatus = SyncStatus.SYNCED

    @property
    def file_name(self) -> str:
        return posixpath.basename(self.cloud_path)

    def with_status(self, status: SyncStatus) -> "MediaMapping":
        return replace(self, sync_status=status, last_synced=datetime.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mediaId': self.media_id,
            'localPath': self.local_path,
            'cloudPath': self.cloud_path,
            'mediaType': self.media_type,
            'size': self.size_bytes,
            'createdAt': self.created_at.isoformat(),
            'lastSynced': self.last_synced.isoformat(),
            'syncStatus': self.sync_status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaMapping":
        if not isinstance(data, dict):
            raise SerializationError(f"Mapping entry must be an object, got {type(data).__name__}")
        media_id = data.get('mediaId')
        cloud_path = data.get('cloudPath')
        if not media_id or not cloud_path:
            raise SerializationError("Mapping entry without mediaId/cloudPath")

        size = data.get('size', data.get('fileSize', 0))
        try:
            size = int(size or 0)
        except (TypeError, ValueError):
            size = 0

        now = datetime.now()
        return cls(
            media_id=str(media_id),
            local_path=str(data.get('localPath') or ''),
            cloud_path=str(cloud_path),
            media_type=str(data.get('mediaType') or MediaType.UNKNOWN.value),
            size_bytes=size,
            created_at=_parse_dt(data.get('createdAt'), now),
            last_synced=_parse_dt(data.get('lastSynced'), now),
            sync_status=SyncStatus.parse(data.get('syncStatus')),
        )


@dataclass
class CloudMediaMapping:
    """
    One device's inventory: every media item it knows, keyed by identity.
    """
    device_id: str
    device_name: str
    last_updated: datetime = field(default_factory=datetime.now)
    mappings: Dict[str, MediaMapping] = field(default_factory=dict)
    schema_version: int = config.MAPPING_SCHEMA_VERSION

    def find(self, media_id: str) -> Optional[MediaMapping]:
        return self.mappings.get(media_id)

    def add_or_update(self, mapping: MediaMapping):
        self.mappings[mapping.media_id] = mapping

    def remove(self, media_id: str) -> bool:
        return self.mappings.pop(media_id, None) is not None

    def media_ids(self) -> set:
        return set(self.mappings)

    def by_status(self, status: SyncStatus) -> List[MediaMapping]:
        return [m for m in self.mappings.values() if m.sync_status == status]

    def find_by_local_path(self, local_path: str) -> Optional[MediaMapping]:
        for m in self.mappings.values():
            if m.local_path == local_path:
                return m
        return None

    def find_by_cloud_path(self, cloud_path: str) -> Optional[MediaMapping]:
        for m in self.mappings.values():
            if m.cloud_path == cloud_path:
                return m
        return None

    def touch(self):
        self.last_updated = datetime.now()

    def copy(self) -> "CloudMediaMapping":
        return replace(self, mappings=dict(self.mappings))

    def __iter__(self) -> Iterator[MediaMapping]:
        return iter(self.mappings.values())

    def __len__(self) -> int:
        return len(self.mappings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schemaVersion': config.MAPPING_SCHEMA_VERSION,
            'deviceId': self.device_id,
            'deviceName': self.device_name,
            'lastUpdated': self.last_updated.isoformat(),
            'mappings': [m.to_dict() for m in self.mappings.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CloudMediaMapping":
        """
        Tolerant decode: unknown fields are ignored, missing ones defaulted.
        Entries that cannot be decoded are dropped with a warning; a document
        without a device id is rejected.
        """
        if not isinstance(data, dict):
            raise SerializationError("Mapping document must be a JSON object")
        device_id = data.get('deviceId')
        if not device_id:
            raise SerializationError("Mapping document has no deviceId")

        entries = data.get('mappings') or []
        if not isinstance(entries, list):
            raise SerializationError("'mappings' must be a list")

        mappings: Dict[str, MediaMapping] = {}
        for raw in entries:
            try:
                m = MediaMapping.from_dict(raw)
            except SerializationError as e:
                logging.warning(f"Skipping unreadable entry in mapping of {device_id}: {e}")
                continue
            mappings[m.media_id] = m

        try:
            version = int(data.get('schemaVersion', 1))
        except (TypeError, ValueError):
            version = 1

        return cls(
            device_id=str(device_id),
            device_name=str(data.get('deviceName') or device_id),
            last_updated=_parse_dt(data.get('lastUpdated')),
            mappings=mappings,
            schema_version=version,
        )


class TransferType(Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"


class TransferStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TransferTask:
    """One scheduled upload or download."""
    media_id: str
    type: TransferType
    file_name: str
    file_size: int
    local_path: str
    remote_path: str
    status: TransferStatus = TransferStatus.PENDING
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    error_message: Optional[str] = None

    @classmethod
    def for_upload(cls, mapping: MediaMapping) -> "TransferTask":
        return cls(
            media_id=mapping.media_id,
            type=TransferType.UPLOAD,
            file_name=Path(mapping.local_path).name,
            file_size=mapping.size_bytes,
            local_path=mapping.local_path,
            remote_path=mapping.cloud_path,
        )

    @classmethod
    def for_download(cls, mapping: MediaMapping) -> "TransferTask":
        return cls(
            media_id=mapping.media_id,
            type=TransferType.DOWNLOAD,
            file_name=mapping.file_name,
            file_size=mapping.size_bytes,
            local_path=mapping.local_path,
            remote_path=mapping.cloud_path,
        )

    @property
    def is_finished(self) -> bool:
        return self.status in (TransferStatus.COMPLETED, TransferStatus.FAILED)

    @property
    def duration(self):
        return (self.end_time or datetime.now()) - self.start_time

    def mark_in_progress(self):
        self.status = TransferStatus.IN_PROGRESS
        self.start_time = datetime.now()

    def mark_completed(self):
        self.status = TransferStatus.COMPLETED
        self.end_time = datetime.now()

    def mark_failed(self, error: str):
        self.status = TransferStatus.FAILED
        self.error_message = error
        self.end_time = datetime.now()


class AlbumType(Enum):
    LOCAL = "local"
    CLOUD = "cloud"


@dataclass
class Album:
    id: str
    name: str
    description: Optional[str] = None
    type: AlbumType = AlbumType.LOCAL
    photo_ids: List[str] = field(default_factory=list)
    cover_photo_id: Optional[str] = None
    is_synced: bool = False
    pending_cloud_photos_count: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.now)
    local_folder_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'type': self.type.value,
            'photoIds': list(self.photo_ids),
            'coverPhotoId': self.cover_photo_id,
            'isSynced': self.is_synced,
            'pendingCloudPhotosCount': self.pending_cloud_photos_count,
            'createdAt': self.created_at.isoformat(),
            'localFolderPath': self.local_folder_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Album":
        if not isinstance(data, dict) or not data.get('id') or not data.get('name'):
            raise SerializationError("Album entry needs an id and a name")
        try:
            album_type = AlbumType(data.get('type', 'local'))
        except ValueError:
            album_type = AlbumType.LOCAL
        return cls(
            id=str(data['id']),
            name=str(data['name']),
            description=data.get('description'),
            type=album_type,
            photo_ids=[str(p) for p in data.get('photoIds') or []],
            cover_photo_id=data.get('coverPhotoId'),
            is_synced=bool(data.get('isSynced', False)),
            pending_cloud_photos_count=data.get('pendingCloudPhotosCount'),
            created_at=_parse_dt(data.get('createdAt')),
            local_folder_path=data.get('localFolderPath'),
        )
