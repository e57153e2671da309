import logging
import posixpath
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from ..catalog import MediaCatalog
from ..exceptions import (ConnectivityError, NotFoundError, PhotoSyncError,
                          RemoteError, SerializationError, SyncCancelledError,
                          TransferError)
from ..mapping import paths
from ..mapping.store import MappingStore
from ..models import (CloudMediaMapping, MediaItem, MediaMapping, SyncStatus,
                      TransferStatus, TransferTask, TransferType)
from ..remote.base import RemoteFileSystem
from ..transfer.scheduler import TransferScheduler
from .coordinator import ActivityState, SyncCoordinator
from .progress import ProgressChannel, SyncEvent, SyncPhase

CANCELLED = "cancelled"
WAIT_POLL_SECONDS = 0.2


@dataclass
class SyncResult:
    success: bool
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    uploaded: int = 0
    downloaded: int = 0
    failed: int = 0
    cancelled: bool = False
    tasks: List[TransferTask] = field(default_factory=list)


class SyncOrchestrator:
    """
    Runs one synchronisation pass:

        prepare -> publish local mapping -> merge peers -> create directories
        -> upload + download -> persist -> done

    The loaded mapping is copied into a working mapping; the local file is
    only rewritten at persist, so an aborted run leaves local state as it was.
    Worker threads only move bytes. Status changes are applied here after
    the transfers have finished.
    """

    def __init__(self,
                 remote: RemoteFileSystem,
                 store: MappingStore,
                 catalog: MediaCatalog,
                 scheduler: TransferScheduler,
                 scan_roots: Iterable[Path],
                 media_root: Path,
                 coordinator: Optional[SyncCoordinator] = None,
                 channel: Optional[ProgressChannel] = None):
        self.remote = remote
        self.store = store
        self.catalog = catalog
        self.scheduler = scheduler
        self.scan_roots = [Path(p) for p in scan_roots]
        self.media_root = Path(media_root)
        self.coordinator = coordinator or SyncCoordinator()
        self.channel = channel or scheduler.channel or ProgressChannel()
        self.upload_root = store.upload_root
        self._cancel = threading.Event()
        self._warnings: List[str] = []

    def cancel(self):
        """Requests cancellation; honoured at the next phase boundary."""
        logging.info("Sync cancellation requested")
        self._cancel.set()

    def run(self) -> SyncResult:
        """
        Runs a full pass. Raises SyncInProgressError if a sync or device
        operation is already running; every other failure is reported in the
        returned SyncResult.
        """
        with self.coordinator.activity(ActivityState.SYNCING):
            self._cancel.clear()
            self._warnings = []
            started = time.monotonic()
            try:
                result = self._run()
            except SyncCancelledError:
                logging.warning("Sync cancelled before any transfer; local state unchanged")
                result = SyncResult(success=False, error=CANCELLED, cancelled=True)
            except PhotoSyncError as e:
                logging.error(f"Sync failed: {e}")
                result = SyncResult(success=False, error=str(e))
            result.warnings = list(self._warnings)

            logging.info(
                f"Sync finished in {time.monotonic() - started:.1f}s: "
                f"{result.uploaded} uploaded, {result.downloaded} downloaded, {result.failed} failed"
            )
            self._emit(SyncEvent(kind="done",
                                 message=result.error or "Sync complete",
                                 phase=SyncPhase.DONE,
                                 progress=self.scheduler.progress,
                                 success=result.success))
            return result

    def _run(self) -> SyncResult:
        # 1. Prepare
        self._phase(SyncPhase.PREPARE, "Checking connection and scanning local media")
        if not self.remote.connect():
            raise ConnectivityError("Remote storage is not reachable")
        loaded = self.store.load()
        self.catalog.build(self.scan_roots)
        working = loaded.copy()
        self._check_cancel()

        # 2. Publish the mapping as it was before this run
        self._phase(SyncPhase.PUBLISH_LOCAL, "Publishing local mapping")
        try:
            self.store.publish(loaded)
        except (TransferError, NotFoundError) as e:
            self._warn(f"Could not publish local mapping: {e}")
        self._check_cancel()

        # 3. Merge peers
        self._phase(SyncPhase.MERGE_PEERS, "Merging mappings of other devices")
        added = self._merge_peers(working)
        logging.info(f"Merged {added} new items from other devices")
        self._check_cancel()

        # 4. Plan and create remote directories
        self._phase(SyncPhase.CREATE_DIRECTORIES, "Creating remote directories")
        self._plan(working, self.catalog.all_items())
        uploads = working.by_status(SyncStatus.PENDING_UPLOAD)
        downloads = working.by_status(SyncStatus.PENDING_DOWNLOAD)
        self._create_directories(uploads)
        self._check_cancel()

        # 5-6. Transfers
        tasks = self._transfer(uploads, downloads)
        self._apply(working, tasks)

        # 7. Persist
        self._phase(SyncPhase.PERSIST, "Saving mapping")
        working.touch()
        self.store.save(working)
        error = None
        try:
            self.store.publish(working)
        except RemoteError as e:
            error = f"Mapping saved locally but not published: {e}"
            logging.error(error)

        done = [t for t in tasks if t.status == TransferStatus.COMPLETED]
        failed = [t for t in tasks if t.status == TransferStatus.FAILED]
        cancelled = self._cancel.is_set()
        if error is None and failed:
            error = f"{len(failed)} of {len(tasks)} transfers failed"
        if cancelled and error is None:
            error = CANCELLED
        return SyncResult(
            success=error is None,
            error=error,
            uploaded=sum(1 for t in done if t.type == TransferType.UPLOAD),
            downloaded=sum(1 for t in done if t.type == TransferType.DOWNLOAD),
            failed=len(failed),
            cancelled=cancelled,
            tasks=tasks,
        )

    # --- Merge ---

    def _merge_peers(self, working: CloudMediaMapping) -> int:
        added = 0
        try:
            peer_ids = self.store.list_peers()
        except TransferError as e:
            self._warn(f"Cannot list other devices: {e}")
            return 0
        for device_id in peer_ids:
            if device_id == working.device_id:
                continue
            try:
                peer = self.store.fetch_peer(device_id)
            except (NotFoundError, TransferError, SerializationError) as e:
                self._warn(f"Skipping device {device_id}: {e}")
                continue
            added += merge_into(working, peer, self.media_root, self.upload_root)
        return added

    # --- Planning ---

    def _plan(self, working: CloudMediaMapping, items: List[MediaItem]):
        """
        Decides the transfer direction of every entry. Scanned items missing
        from the mapping become uploads; entries the peers announced that
        turn out to be present locally become synced without a transfer.
        """
        claimed: Dict[str, str] = {m.cloud_path: m.media_id for m in working}
        scanned: Set[str] = set()

        for item in items:
            scanned.add(item.id)
            existing = working.find(item.id)
            local_path = str(item.path)

            if existing is None:
                known = working.find_by_local_path(local_path)
                if known is not None and known.sync_status == SyncStatus.SYNCED and known.size_bytes == item.size_bytes:
                    # Same file under a new metadata identity (e.g. touched after download)
                    continue
                cloud_path = paths.cloud_path_for(self.upload_root, item.created_at, item.file_name)
                owner = claimed.get(cloud_path)
                if owner is not None and owner != item.id:
                    cloud_path = posixpath.join(posixpath.dirname(cloud_path),
                                                paths.with_identity_suffix(item.file_name, item.id))
                claimed[cloud_path] = item.id
                working.add_or_update(MediaMapping(
                    media_id=item.id,
                    local_path=local_path,
                    cloud_path=cloud_path,
                    media_type=item.type.value,
                    size_bytes=item.size_bytes,
                    created_at=item.created_at,
                    last_synced=datetime.now(),
                    sync_status=SyncStatus.PENDING_UPLOAD,
                ))
            elif existing.sync_status == SyncStatus.PENDING_DOWNLOAD:
                working.add_or_update(_relocated(existing, local_path, SyncStatus.SYNCED))
            elif existing.sync_status in (SyncStatus.PENDING_UPLOAD, SyncStatus.FAILED):
                working.add_or_update(_relocated(existing, local_path, SyncStatus.PENDING_UPLOAD))

        for m in working.by_status(SyncStatus.FAILED):
            if m.media_id in scanned:
                continue
            if m.local_path and Path(m.local_path).is_file():
                working.add_or_update(m.with_status(SyncStatus.PENDING_UPLOAD))
                continue
            try:
                in_cloud = self.remote.exists(m.cloud_path)
            except TransferError as e:
                self._warn(f"Cannot check {m.cloud_path}, retrying {m.file_name} later: {e}")
                continue
            if in_cloud:
                working.add_or_update(m.with_status(SyncStatus.PENDING_DOWNLOAD))
            else:
                # Neither copy exists any more
                working.remove(m.media_id)
                self._warn(f"Dropped {m.file_name}: missing locally and never uploaded")

    def _create_directories(self, uploads: List[MediaMapping]):
        directories = sorted({posixpath.dirname(m.cloud_path) for m in uploads})
        for directory in directories:
            try:
                self.remote.create_directory_recursive(directory)
            except RemoteError as e:
                raise TransferError(f"Cannot create remote directory {directory}: {e}") from e
        logging.debug(f"Ensured {len(directories)} remote directories")

    # --- Transfers ---

    def _transfer(self, uploads: List[MediaMapping], downloads: List[MediaMapping]) -> List[TransferTask]:
        total = len(uploads) + len(downloads)
        self.scheduler.expect(total)
        if not total:
            logging.info("Nothing to transfer")
            return []

        tasks: List[TransferTask] = []
        self._phase(SyncPhase.UPLOAD, f"Uploading {len(uploads)} files")
        for m in uploads:
            task = TransferTask.for_upload(m)
            tasks.append(task)
            self.scheduler.submit(task, self._upload)

        self._phase(SyncPhase.DOWNLOAD, f"Downloading {len(downloads)} files")
        for m in downloads:
            task = TransferTask.for_download(m)
            tasks.append(task)
            self.scheduler.submit(task, self._download)

        while not self.scheduler.wait(timeout=WAIT_POLL_SECONDS):
            if self._cancel.is_set():
                self.scheduler.cancel_pending()
        if self._cancel.is_set():
            self.scheduler.cancel_pending()
        return tasks

    def _upload(self, task: TransferTask):
        self.remote.upload_file(task.remote_path, Path(task.local_path))

    def _download(self, task: TransferTask):
        target = Path(task.local_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        self.remote.download_file(task.remote_path, target)

    @staticmethod
    def _apply(working: CloudMediaMapping, tasks: List[TransferTask]):
        for task in tasks:
            m = working.find(task.media_id)
            if m is None:
                continue
            if task.status == TransferStatus.COMPLETED:
                working.add_or_update(m.with_status(SyncStatus.SYNCED))
            elif task.status == TransferStatus.FAILED and task.error_message != CANCELLED:
                working.add_or_update(m.with_status(SyncStatus.FAILED))

    # --- Events ---

    def _check_cancel(self):
        if self._cancel.is_set():
            raise SyncCancelledError("Sync cancelled")

    def _phase(self, phase: SyncPhase, message: str):
        logging.info(f"[{phase.value}] {message}")
        self._emit(SyncEvent(kind="phase", message=message, phase=phase))

    def _warn(self, message: str):
        logging.warning(message)
        self._warnings.append(message)
        self._emit(SyncEvent(kind="warning", message=message))

    def _emit(self, event: SyncEvent):
        self.channel.publish(event)


def merge_into(working: CloudMediaMapping,
               peer: CloudMediaMapping,
               media_root: Path,
               upload_root: str) -> int:
    """
    Adds every identity of `peer` unknown to `working` as a pending download.
    Known identities are never touched. Returns the number of entries added.
    """
    taken = {m.local_path for m in working}
    added = 0
    for m in peer:
        if working.find(m.media_id) is not None:
            continue
        try:
            target = paths.local_target_for(media_root, upload_root, m.cloud_path)
        except ValueError as e:
            logging.warning(f"Ignoring entry {m.media_id} of {peer.device_id}: {e}")
            continue
        if target.exists() or str(target) in taken:
            target = target.with_name(paths.with_identity_suffix(target.name, m.media_id))
        taken.add(str(target))
        working.add_or_update(MediaMapping(
            media_id=m.media_id,
            local_path=str(target),
            cloud_path=m.cloud_path,
            media_type=m.media_type,
            size_bytes=m.size_bytes,
            created_at=m.created_at,
            last_synced=datetime.now(),
            sync_status=SyncStatus.PENDING_DOWNLOAD,
        ))
        added += 1
    return added


def _relocated(m: MediaMapping, local_path: str, status: SyncStatus) -> MediaMapping:
    updated = m.with_status(status)
    updated.local_path = local_path
    return updated
