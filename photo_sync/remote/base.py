"""
Contract for the remote store used as the only synchronisation medium.
"""
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List

from ..exceptions import NotFoundError


@dataclass
class RemoteEntry:
    path: str
    name: str
    is_directory: bool


def normalize_remote_path(path: str) -> str:
    """'/a//b/' -> '/a/b'; '' -> '/'."""
    norm = posixpath.normpath("/" + (path or "").strip("/"))
    return "/" if norm in ("/", "//") else norm


class RemoteFileSystem(ABC):
    """
    Hierarchical store with list/put/get/delete/mkdir and nothing else:
    no locking, no transactions.

    Every call may raise ConnectivityError or TransferError for transport
    problems, and NotFoundError when the path is missing.
    """

    @abstractmethod
    def connect(self) -> bool:
        """Checks reachability and credentials."""

    @abstractmethod
    def list_directory(self, path: str) -> List[RemoteEntry]:
        """Immediate children of `path` (not including `path` itself)."""

    @abstractmethod
    def create_directory(self, path: str):
        """Creates one directory level; the parent must exist."""

    @abstractmethod
    def upload_file(self, remote_path: str, local_path: Path):
        """Writes a local file to `remote_path`; the parent must exist."""

    @abstractmethod
    def download_file(self, remote_path: str, local_path: Path):
        """Reads `remote_path` into `local_path` (parent must exist)."""

    @abstractmethod
    def delete_file(self, path: str):
        pass

    @abstractmethod
    def delete_directory(self, path: str):
        """Removes a directory and everything below it."""

    def exists(self, path: str) -> bool:
        parent, name = posixpath.split(normalize_remote_path(path))
        if not name:
            return True
        try:
            entries = self.list_directory(parent)
        except NotFoundError:
            return False
        return any(e.name == name for e in entries)

    def create_directory_recursive(self, path: str):
        """Creates `path` and any missing ancestors."""
        current = ""
        for part in normalize_remote_path(path).strip("/").split("/"):
            if not part:
                continue
            current = f"{current}/{part}"
            if not self.exists(current):
                self.create_directory(current)
