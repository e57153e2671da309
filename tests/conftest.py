import pytest
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

from photo_sync.catalog import MediaCatalog
from photo_sync.mapping.store import MappingStore
from photo_sync.metadata.extract import CaptureDateExtractor
from photo_sync.remote.local import LocalDirectoryRemote
from photo_sync.scanning.filesystem import MediaScanner
from photo_sync.sync.coordinator import SyncCoordinator
from photo_sync.sync.orchestrator import SyncOrchestrator
from photo_sync.sync.progress import ProgressChannel
from photo_sync.transfer.scheduler import TransferScheduler

CAPTURE_DATE = datetime(2024, 5, 1, 12, 0, 0)
UPLOAD_ROOT = "/PhotoSync"


def write_media(folder: Path, name: str, content: bytes) -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    p = folder / name
    p.write_bytes(content)
    return p


@pytest.fixture
def fixed_capture_date(monkeypatch):
    """Every scanned file reports CAPTURE_DATE, so cloud paths are predictable."""
    monkeypatch.setattr(CaptureDateExtractor, "capture_date", lambda self, path, media_type: CAPTURE_DATE)
    return CAPTURE_DATE


@pytest.fixture
def remote_dir(tmp_path):
    d = tmp_path / "remote"
    d.mkdir()
    return d


@pytest.fixture
def remote(remote_dir):
    return LocalDirectoryRemote(remote_dir)


@pytest.fixture
def make_store(tmp_path, remote):
    def _make(device_id: str, remote_fs=None) -> MappingStore:
        return MappingStore(
            remote_fs or remote,
            tmp_path / device_id / "cloud_mapping.json",
            device_id=device_id,
            device_name=f"{device_id} laptop",
            upload_root=UPLOAD_ROOT,
        )
    return _make


@pytest.fixture
def make_device(tmp_path, remote, make_store, fixed_capture_date):
    """
    Builds a device with its own photo folder, download folder and mapping
    file, all sharing one LocalDirectoryRemote.
    """
    schedulers = []

    def _make(device_id: str, remote_fs=None, max_concurrent: int = 2):
        base = tmp_path / device_id
        photos = base / "photos"
        photos.mkdir(parents=True, exist_ok=True)
        media = base / "media"
        fs = remote_fs or remote

        channel = ProgressChannel()
        scheduler = TransferScheduler(max_concurrent=max_concurrent, channel=channel)
        schedulers.append(scheduler)
        store = make_store(device_id, fs)
        coordinator = SyncCoordinator()
        orchestrator = SyncOrchestrator(
            remote=fs,
            store=store,
            catalog=MediaCatalog(MediaScanner(max_workers=2)),
            scheduler=scheduler,
            scan_roots=[photos],
            media_root=media,
            coordinator=coordinator,
            channel=channel,
        )
        return SimpleNamespace(
            id=device_id,
            photos=photos,
            media=media,
            store=store,
            scheduler=scheduler,
            channel=channel,
            coordinator=coordinator,
            orchestrator=orchestrator,
            sync=orchestrator.run,
        )

    yield _make
    for s in schedulers:
        s.shutdown()
