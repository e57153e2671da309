import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from . import config
from .albums import AlbumService
from .catalog import MediaCatalog
from .config import SyncSettings
from .device import DeviceInfo
from .exceptions import ConfigError, SyncInProgressError
from .mapping.store import MappingStore
from .models import MediaIndex
from .remote.base import RemoteFileSystem
from .remote.local import LocalDirectoryRemote
from .remote.webdav import WebDavClient
from .sync.coordinator import SyncCoordinator
from .sync.orchestrator import SyncOrchestrator, SyncResult
from .sync.progress import ProgressChannel
from .sync.reconciler import DeviceReconciler
from .transfer.scheduler import TransferScheduler

FILE_URL_PREFIX = "file://"


def build_remote(settings: SyncSettings) -> RemoteFileSystem:
    """file:///mnt/nas -> mounted directory, anything else -> WebDAV server."""
    if not settings.server_url:
        raise ConfigError("server_url is not configured")
    if settings.server_url.startswith(FILE_URL_PREFIX):
        return LocalDirectoryRemote(Path(settings.server_url[len(FILE_URL_PREFIX):]))
    return WebDavClient(
        settings.server_url,
        username=settings.username,
        password=settings.password,
        timeout=settings.request_timeout,
    )


class PhotoSyncApp:
    """
    Wires settings, device identity, the remote and the sync components
    together. One instance per process; the coordinator it owns keeps syncs
    and device operations from overlapping.
    """

    def __init__(self, settings: SyncSettings, remote: Optional[RemoteFileSystem] = None):
        self.settings = settings
        state_dir = settings.state_path
        state_dir.mkdir(parents=True, exist_ok=True)

        self.device = DeviceInfo.load_or_create(state_dir)
        self.remote = remote or build_remote(settings)
        self.channel = ProgressChannel()
        self.coordinator = SyncCoordinator()
        self.store = MappingStore(
            self.remote,
            state_dir / config.LOCAL_MAPPING_FILE_NAME,
            device_id=self.device.uuid,
            device_name=self.device.name,
            upload_root=settings.upload_root,
        )
        self.catalog = MediaCatalog()
        self.scheduler = TransferScheduler(settings.max_concurrent_tasks, channel=self.channel)
        self.albums = AlbumService(state_dir / config.ALBUMS_FILE_NAME)
        self.reconciler = DeviceReconciler(self.store, settings.media_path,
                                           coordinator=self.coordinator, channel=self.channel)
        self._orchestrator: Optional[SyncOrchestrator] = None

    def scan(self) -> Dict[str, MediaIndex]:
        return self.catalog.build(self.settings.scan_paths)

    def sync(self) -> SyncResult:
        orchestrator = SyncOrchestrator(
            remote=self.remote,
            store=self.store,
            catalog=self.catalog,
            scheduler=self.scheduler,
            scan_roots=self.settings.scan_paths,
            media_root=self.settings.media_path,
            coordinator=self.coordinator,
            channel=self.channel,
        )
        self._orchestrator = orchestrator
        try:
            result = orchestrator.run()
        finally:
            self._orchestrator = None
        if result.success:
            self.device.record_sync()
        return result

    def cancel(self):
        if self._orchestrator is not None:
            self._orchestrator.cancel()

    def watch(self,
              stop: Optional[threading.Event] = None,
              on_result: Optional[Callable[[SyncResult], None]] = None):
        """Syncs every auto_sync_interval seconds until `stop` is set."""
        if not self.settings.auto_sync:
            logging.warning("auto_sync is disabled in the settings; nothing to watch")
            return
        stop = stop or threading.Event()
        interval = self.settings.auto_sync_interval
        logging.info(f"Auto sync every {interval}s")
        while not stop.is_set():
            try:
                result = self.sync()
            except SyncInProgressError as e:
                logging.warning(f"Skipping scheduled sync: {e}")
            else:
                if on_result is not None:
                    on_result(result)
            stop.wait(interval)

    def close(self):
        self.scheduler.shutdown()
        self.catalog.shutdown()
