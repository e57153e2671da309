import logging
import os
import shutil
from pathlib import Path
from typing import List

from ..exceptions import ConnectivityError, NotFoundError, TransferError
from .base import RemoteEntry, RemoteFileSystem, normalize_remote_path


class LocalDirectoryRemote(RemoteFileSystem):
    """
    Remote store backed by a mounted directory (NAS share, USB disk).
    Behaves like the WebDAV client: writes into a missing parent fail
    with NotFoundError instead of creating it.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def _resolve(self, path: str) -> Path:
        rel = normalize_remote_path(path).lstrip("/")
        return self.base_dir / rel if rel else self.base_dir

    def connect(self) -> bool:
        return self.base_dir.is_dir() and os.access(self.base_dir, os.W_OK)

    def list_directory(self, path: str) -> List[RemoteEntry]:
        target = self._resolve(path)
        if not target.is_dir():
            raise NotFoundError(f"No such remote directory: {path}")
        base = normalize_remote_path(path).rstrip("/")
        entries = []
        try:
            for child in sorted(target.iterdir(), key=lambda p: p.name):
                entries.append(RemoteEntry(
                    path=f"{base}/{child.name}",
                    name=child.name,
                    is_directory=child.is_dir(),
                ))
        except OSError as e:
            raise ConnectivityError(f"Cannot list {path}: {e}") from e
        return entries

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def create_directory(self, path: str):
        target = self._resolve(path)
        if not target.parent.is_dir():
            raise NotFoundError(f"Parent of {path} does not exist")
        try:
            target.mkdir(exist_ok=True)
        except OSError as e:
            raise TransferError(f"Cannot create {path}: {e}") from e

    def upload_file(self, remote_path: str, local_path: Path):
        target = self._resolve(remote_path)
        if not target.parent.is_dir():
            raise NotFoundError(f"Parent of {remote_path} does not exist")
        tmp = target.with_name(f".{target.name}.part")
        try:
            shutil.copyfile(local_path, tmp)
            os.replace(tmp, target)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise TransferError(f"Upload of {local_path} to {remote_path} failed: {e}") from e

    def download_file(self, remote_path: str, local_path: Path):
        source = self._resolve(remote_path)
        if not source.is_file():
            raise NotFoundError(f"No such remote file: {remote_path}")
        local_path = Path(local_path)
        tmp = local_path.with_name(f".{local_path.name}.part")
        try:
            shutil.copyfile(source, tmp)
            os.replace(tmp, local_path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise TransferError(f"Download of {remote_path} failed: {e}") from e

    def delete_file(self, path: str):
        target = self._resolve(path)
        if not target.is_file():
            raise NotFoundError(f"No such remote file: {path}")
        try:
            target.unlink()
        except OSError as e:
            raise TransferError(f"Cannot delete {path}: {e}") from e

    def delete_directory(self, path: str):
        target = self._resolve(path)
        if target == self.base_dir:
            raise TransferError("Refusing to delete the remote root")
        if not target.is_dir():
            raise NotFoundError(f"No such remote directory: {path}")
        try:
            shutil.rmtree(target)
        except OSError as e:
            raise TransferError(f"Cannot delete {path}: {e}") from e
        logging.debug(f"Deleted remote directory {path}")
