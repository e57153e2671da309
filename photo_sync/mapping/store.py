import json
import logging
import tempfile
from pathlib import Path
from typing import List, Optional

from .. import config
from ..exceptions import NotFoundError, RemoteError, SerializationError
from ..models import CloudMediaMapping
from ..remote.base import RemoteFileSystem
from . import paths


def encode_mapping(mapping: CloudMediaMapping) -> str:
    return json.dumps(mapping.to_dict(), indent=2, ensure_ascii=False)


def decode_mapping(text: str, source: str) -> CloudMediaMapping:
    if not text.strip():
        raise SerializationError(f"Mapping document {source} is empty")
    try:
        data = json.loads(text)
    except ValueError as e:
        raise SerializationError(f"Mapping document {source} is not valid JSON: {e}") from e
    return CloudMediaMapping.from_dict(data)


class MappingStore:
    """
    Persists this device's mapping locally and mirrors it to
    {upload_root}/.mappings/{device_id}/mapping.json; reads peers' copies.
    """

    def __init__(self,
                 remote: RemoteFileSystem,
                 local_file: Path,
                 device_id: str,
                 device_name: str,
                 upload_root: str = config.DEFAULT_UPLOAD_ROOT):
        self.remote = remote
        self.local_file = Path(local_file)
        self.device_id = device_id
        self.device_name = device_name
        self.upload_root = paths.normalize_root(upload_root)

    # --- Local copy ---

    def load(self) -> CloudMediaMapping:
        """
        Reads the local document, or starts an empty mapping for this device.
        A corrupt document is an error: it is the local source of truth and
        must not be replaced silently.
        """
        if not self.local_file.exists():
            logging.info(f"No local mapping at {self.local_file}; starting a new one")
            return CloudMediaMapping(device_id=self.device_id, device_name=self.device_name)

        try:
            text = self.local_file.read_text(encoding="utf-8")
        except OSError as e:
            raise SerializationError(f"Cannot read local mapping {self.local_file}: {e}") from e

        mapping = decode_mapping(text, str(self.local_file))
        if mapping.device_id != self.device_id:
            raise SerializationError(
                f"Local mapping {self.local_file} belongs to device {mapping.device_id}, "
                f"expected {self.device_id}"
            )
        mapping.device_name = self.device_name
        logging.debug(f"Loaded local mapping with {len(mapping)} entries")
        return mapping

    def save(self, mapping: CloudMediaMapping):
        """Atomic write: temp file + rename; the previous file survives a failed write."""
        try:
            config.write_text_atomic(self.local_file, encode_mapping(mapping))
        except OSError as e:
            raise SerializationError(f"Cannot write local mapping {self.local_file}: {e}") from e
        logging.debug(f"Saved local mapping ({len(mapping)} entries) to {self.local_file}")

    # --- Remote copies ---

    def publish(self, mapping: CloudMediaMapping):
        device_dir = paths.device_dir(self.upload_root, mapping.device_id)
        self.remote.create_directory_recursive(device_dir)

        with tempfile.TemporaryDirectory(prefix="photo_sync_") as tmp:
            tmp_file = Path(tmp) / config.MAPPING_FILE_NAME
            tmp_file.write_text(encode_mapping(mapping), encoding="utf-8")
            self.remote.upload_file(paths.mapping_file(self.upload_root, mapping.device_id), tmp_file)
        logging.info(f"Published mapping of {mapping.device_id} ({len(mapping)} entries)")

    def list_peers(self) -> List[str]:
        """Device ids that have a directory under .mappings (self included)."""
        try:
            entries = self.remote.list_directory(paths.mappings_dir(self.upload_root))
        except NotFoundError:
            return []
        return sorted(e.name for e in entries if e.is_directory)

    def fetch_peer(self, device_id: str) -> CloudMediaMapping:
        device_dir = paths.device_dir(self.upload_root, device_id)
        entries = self.remote.list_directory(device_dir)
        if not any(not e.is_directory and e.name.lower() == config.MAPPING_FILE_NAME for e in entries):
            raise NotFoundError(f"Device {device_id} has no {config.MAPPING_FILE_NAME}")

        with tempfile.TemporaryDirectory(prefix="photo_sync_") as tmp:
            tmp_file = Path(tmp) / config.MAPPING_FILE_NAME
            self.remote.download_file(paths.mapping_file(self.upload_root, device_id), tmp_file)
            try:
                text = tmp_file.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise SerializationError(f"Cannot read mapping of {device_id}: {e}") from e

        return decode_mapping(text, f"{device_dir}/{config.MAPPING_FILE_NAME}")

    def fetch_all(self, exclude: Optional[str] = None) -> List[CloudMediaMapping]:
        """Every readable device mapping; unreadable ones are skipped with a warning."""
        result = []
        for device_id in self.list_peers():
            if device_id == exclude:
                continue
            try:
                result.append(self.fetch_peer(device_id))
            except (RemoteError, SerializationError) as e:
                logging.warning(f"Skipping device {device_id}: {e}")
        return result

    def delete_device(self, device_id: str):
        self.remote.delete_directory(paths.device_dir(self.upload_root, device_id))
        logging.info(f"Deleted mapping directory of device {device_id}")
