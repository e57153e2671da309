import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..exceptions import RemoteError
from ..mapping.store import MappingStore
from ..models import CloudMediaMapping
from .coordinator import ActivityState, SyncCoordinator
from .orchestrator import merge_into
from .progress import ProgressChannel, SyncEvent, SyncPhase


@dataclass
class ReconcileResult:
    device_id: str
    partial: bool = False
    error: Optional[str] = None
    merged: int = 0
    deleted: int = 0
    delete_failures: int = 0

    @property
    def success(self) -> bool:
        return self.error is None


class DeviceReconciler:
    """Removes other devices' mappings, optionally with their media or after merging them."""

    def __init__(self,
                 store: MappingStore,
                 media_root: Path,
                 coordinator: Optional[SyncCoordinator] = None,
                 channel: Optional[ProgressChannel] = None):
        self.store = store
        self.remote = store.remote
        self.media_root = Path(media_root)
        self.coordinator = coordinator or SyncCoordinator()
        self.channel = channel

    def list_devices(self) -> List[CloudMediaMapping]:
        """Every readable device mapping on the remote, this device included."""
        return self.store.fetch_all()

    def delete_device(self, device_id: str) -> ReconcileResult:
        """Deletes only the device's mapping directory."""
        self._refuse_self(device_id)
        with self.coordinator.activity(ActivityState.RECONCILING):
            self._emit(f"Deleting mapping of device {device_id}")
            result = ReconcileResult(device_id=device_id)
            self._delete_mapping_dir(result)
            return result

    def delete_device_with_files(self, device_id: str) -> ReconcileResult:
        """
        Deletes every media file the device listed, then its mapping directory.
        File deletions are best effort; failures are counted, not retried.
        """
        self._refuse_self(device_id)
        with self.coordinator.activity(ActivityState.RECONCILING):
            self._emit(f"Deleting device {device_id} and its files")
            target = self.store.fetch_peer(device_id)
            result = ReconcileResult(device_id=device_id)

            for m in target:
                try:
                    self.remote.delete_file(m.cloud_path)
                    result.deleted += 1
                except RemoteError as e:
                    result.delete_failures += 1
                    logging.warning(f"Could not delete {m.cloud_path}: {e}")
            logging.info(f"Deleted {result.deleted} files of {device_id}, {result.delete_failures} failures")

            self._delete_mapping_dir(result)
            return result

    def merge_and_delete(self, device_id: str) -> ReconcileResult:
        """
        Adopts the device's entries into the local mapping as pending
        downloads, commits the local mapping, then deletes only the device's
        mapping directory. Media on the remote is left in place.
        """
        self._refuse_self(device_id)
        with self.coordinator.activity(ActivityState.RECONCILING):
            self._emit(f"Merging device {device_id} into this device")
            target = self.store.fetch_peer(device_id)
            local = self.store.load()

            result = ReconcileResult(device_id=device_id)
            result.merged = merge_into(local, target, self.media_root, self.store.upload_root)
            local.touch()
            self.store.save(local)
            self.store.publish(local)
            logging.info(f"Merged {result.merged} entries of {device_id} into the local mapping")

            self._delete_mapping_dir(result)
            return result

    def _delete_mapping_dir(self, result: ReconcileResult):
        try:
            self.store.delete_device(result.device_id)
        except RemoteError as e:
            result.partial = True
            result.error = f"Mapping directory of {result.device_id} was not deleted: {e}"
            logging.error(result.error)

    def _refuse_self(self, device_id: str):
        if device_id == self.store.device_id:
            raise ValueError("Refusing to remove the current device")

    def _emit(self, message: str):
        logging.info(message)
        if self.channel is not None:
            self.channel.publish(SyncEvent(kind="phase", message=message, phase=SyncPhase.RECONCILE))


def describe(mapping: CloudMediaMapping) -> str:
    """One-line summary used by `devices list`."""
    return (f"{mapping.device_id}  {mapping.device_name}  "
            f"{len(mapping)} items  updated {mapping.last_updated:%Y-%m-%d %H:%M}")
