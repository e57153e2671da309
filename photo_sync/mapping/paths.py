"""
Remote layout:

    {upload_root}/{YYYY}/{MM}/{DD}/{file_name}          media content
    {upload_root}/.mappings/{device_id}/mapping.json    one document per device
"""
import posixpath
from datetime import datetime
from pathlib import Path, PurePosixPath

from .. import config
from ..models import date_path_for
from ..remote.base import normalize_remote_path


def normalize_root(upload_root: str) -> str:
    return normalize_remote_path(upload_root or "/")


def cloud_path_for(upload_root: str, created_at: datetime, file_name: str) -> str:
    return posixpath.join(normalize_root(upload_root), date_path_for(created_at), file_name)


def mappings_dir(upload_root: str) -> str:
    return posixpath.join(normalize_root(upload_root), config.MAPPINGS_DIR_NAME)


def device_dir(upload_root: str, device_id: str) -> str:
    return posixpath.join(mappings_dir(upload_root), device_id)


def mapping_file(upload_root: str, device_id: str) -> str:
    return posixpath.join(device_dir(upload_root, device_id), config.MAPPING_FILE_NAME)


def relative_cloud_path(upload_root: str, cloud_path: str) -> str:
    """
    Path of a media file below the upload root ('2024/05/01/a.jpg').
    Paths written by a device with a different upload root keep everything
    after their leading slash.
    """
    root = normalize_root(upload_root)
    path = normalize_remote_path(cloud_path)
    prefix = root.rstrip("/") + "/"
    if path.startswith(prefix):
        return path[len(prefix):]
    return path.lstrip("/")


def local_target_for(media_root: Path, upload_root: str, cloud_path: str) -> Path:
    """
    Local download target mirroring the remote layout under media_root.
    '..' and empty components are dropped, so a peer document can never
    point outside media_root.
    """
    rel = PurePosixPath(relative_cloud_path(upload_root, cloud_path))
    parts = [p for p in rel.parts if p not in ("", ".", "..", "/")]
    if not parts:
        raise ValueError(f"Cloud path {cloud_path!r} has no file name")
    return Path(media_root).joinpath(*parts)


def with_identity_suffix(name: str, media_id: str) -> str:
    """'IMG_1.jpg' -> 'IMG_1_3fa9c2d1.jpg' for disambiguating equal file names."""
    stem, ext = posixpath.splitext(name)
    tag = media_id[2:10] if media_id.startswith("m-") else media_id[:8]
    return f"{stem}_{tag}{ext}"
