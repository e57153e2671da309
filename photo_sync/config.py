"""
Configuration constants and user settings for photo sync.
"""
import json
import os
import tempfile
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import List, Optional

from .exceptions import ConfigError

# --- File Type Definitions ---
IMAGE_EXTS = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.bmp', '.heic', '.heif'}
VIDEO_EXTS = {'.mp4', '.mov', '.avi', '.wmv', '.flv', '.mkv', '.3gp', '.webm'}

# Extension to Type Mapping
EXT_TO_TYPE = {}
for ext in IMAGE_EXTS: EXT_TO_TYPE[ext] = 'image'
for ext in VIDEO_EXTS: EXT_TO_TYPE[ext] = 'video'

# --- Metadata Parsing ---
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]

# --- Hashing & Performance ---
# Files smaller than this are hashed fully. Larger ones are identified by path+size+mtime.
HASH_SIZE_THRESHOLD = 50 * 1024 * 1024  # 50 MB
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading

# --- Scanning ---
SCAN_BATCH_SIZE = 20
SCAN_WORKERS = 3
MAX_SCAN_FILE_SIZE = 2 * 1024 * 1024 * 1024  # 2 GB, larger files are skipped

# --- Transfers ---
DEFAULT_MAX_CONCURRENT_TASKS = 5
TRANSFER_HISTORY_SIZE = 50
DEFAULT_REQUEST_TIMEOUT = 60  # seconds, per remote call

# --- Remote Layout ---
DEFAULT_UPLOAD_ROOT = "/PhotoSync"
MAPPINGS_DIR_NAME = ".mappings"
MAPPING_FILE_NAME = "mapping.json"
MAPPING_SCHEMA_VERSION = 2
DATE_PATH_PATTERN = "{year:04d}/{month:02d}/{day:02d}"

# --- Local State ---
LOCAL_MAPPING_FILE_NAME = "cloud_mapping.json"
DEVICE_FILE_NAME = "device.json"
ALBUMS_FILE_NAME = "albums.json"
SETTINGS_FILE_NAME = "settings.json"
LOG_FILE_NAME = "photo_sync.log"
MEDIA_DIR_NAME = "media"

PASSWORD_ENV_VAR = "PHOTO_SYNC_PASSWORD"


def default_state_dir() -> Path:
    return Path.home() / ".photo_sync"


def write_text_atomic(path: Path, text: str):
    """
    Writes text next to `path` and renames it into place, so a crash
    mid-write never leaves a truncated file behind.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


@dataclass
class SyncSettings:
    """
    User-facing settings consumed by the sync engine (read-only to it).
    """
    server_url: str = ""
    username: Optional[str] = None
    password: Optional[str] = None
    upload_root: str = DEFAULT_UPLOAD_ROOT
    max_concurrent_tasks: int = DEFAULT_MAX_CONCURRENT_TASKS
    scan_folders: List[str] = field(default_factory=list)
    auto_sync: bool = False
    auto_sync_interval: int = 15 * 60
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    media_root: Optional[str] = None
    state_dir: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.max_concurrent_tasks, int) or self.max_concurrent_tasks < 1:
            raise ConfigError(f"max_concurrent_tasks must be a positive integer, got {self.max_concurrent_tasks!r}")
        if not isinstance(self.scan_folders, list):
            raise ConfigError("scan_folders must be a list of paths")
        if self.auto_sync_interval <= 0:
            raise ConfigError("auto_sync_interval must be positive")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser() if self.state_dir else default_state_dir()

    @property
    def media_path(self) -> Path:
        if self.media_root:
            return Path(self.media_root).expanduser()
        return self.state_path / MEDIA_DIR_NAME

    @property
    def scan_paths(self) -> List[Path]:
        return [Path(p).expanduser() for p in self.scan_folders]

    @classmethod
    def load(cls, path: Path) -> "SyncSettings":
        """
        Reads settings from a JSON file. Missing file -> defaults.
        Unknown keys are ignored so older builds can read newer files.
        """
        data = {}
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise ConfigError(f"Cannot read settings {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Settings file {path} must contain a JSON object")

        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        try:
            settings = cls(**kwargs)
        except TypeError as e:
            raise ConfigError(f"Invalid settings in {path}: {e}") from e

        env_password = os.environ.get(PASSWORD_ENV_VAR)
        if env_password:
            settings.password = env_password
        return settings

    def save(self, path: Path):
        data = asdict(self)
        # Never persist a password that only came from the environment
        if os.environ.get(PASSWORD_ENV_VAR) == self.password:
            data["password"] = None
        write_text_atomic(path, json.dumps(data, indent=2))
