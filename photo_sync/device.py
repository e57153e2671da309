import json
import logging
import platform
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from . import config
from .exceptions import SerializationError


def default_device_name() -> str:
    node = platform.node() or "unknown"
    return f"{node} ({platform.system() or 'unknown'})"


@dataclass
class DeviceInfo:
    """Identity of this installation, stable across runs."""
    uuid: str
    name: str
    last_sync_time: Optional[datetime] = None
    path: Optional[Path] = None

    @classmethod
    def load_or_create(cls, state_dir: Path) -> "DeviceInfo":
        path = Path(state_dir) / config.DEVICE_FILE_NAME
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise SerializationError(f"Cannot read device info {path}: {e}") from e
            if not isinstance(data, dict) or not data.get("uuid"):
                raise SerializationError(f"Device info {path} has no uuid")
            last_sync = data.get("lastSyncTime")
            try:
                last_sync = datetime.fromisoformat(last_sync) if last_sync else None
            except ValueError:
                last_sync = None
            return cls(uuid=data["uuid"],
                       name=data.get("name") or default_device_name(),
                       last_sync_time=last_sync,
                       path=path)

        info = cls(uuid=str(uuid.uuid4()), name=default_device_name(), path=path)
        info.save()
        logging.info(f"Registered new device {info.uuid} ({info.name})")
        return info

    def rename(self, name: str):
        if not name.strip():
            raise ValueError("Device name cannot be empty")
        self.name = name.strip()
        self.save()

    def record_sync(self, when: Optional[datetime] = None):
        self.last_sync_time = when or datetime.now()
        self.save()

    def to_dict(self):
        return {
            "uuid": self.uuid,
            "name": self.name,
            "lastSyncTime": self.last_sync_time.isoformat() if self.last_sync_time else None,
        }

    def save(self):
        if self.path is None:
            return
        config.write_text_atomic(self.path, json.dumps(self.to_dict(), indent=2))
