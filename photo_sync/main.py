import argparse
import logging
import queue
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from tqdm import tqdm

from . import config
from .config import SyncSettings
from .core import PhotoSyncApp
from .exceptions import PhotoSyncError
from .sync.orchestrator import SyncResult
from .sync.reconciler import describe


def setup_logging(state_dir: Path, verbose: bool):
    """Logs to the console and to photo_sync.log in the state directory."""
    log_level = logging.DEBUG if verbose else logging.INFO

    state_dir.mkdir(parents=True, exist_ok=True)
    log_file = state_dir / config.LOG_FILE_NAME

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv=None):
    p = argparse.ArgumentParser(prog="photo-sync",
                                description="Photo Sync: mirror local photos and videos through WebDAV")

    p.add_argument("--config", type=Path, default=None,
                   help="Settings file (default: <state-dir>/settings.json)")
    p.add_argument("--state-dir", type=Path, default=None,
                   help="Directory for mapping, device and log files (default: ~/.photo_sync)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("scan", help="Scan local folders and print per-day counts")

    sync_p = sub.add_parser("sync", help="Run one synchronisation")
    sync_p.add_argument("--show-tasks", action="store_true", help="Print the transfer history after the run")

    sub.add_parser("watch", help="Sync repeatedly while auto_sync is enabled")

    devices = sub.add_parser("devices", help="Manage other devices' mappings")
    dsub = devices.add_subparsers(dest="devices_command", required=True)
    dsub.add_parser("list", help="List devices known on the remote")
    delete_p = dsub.add_parser("delete", help="Delete a device's mapping")
    delete_p.add_argument("device_id")
    delete_p.add_argument("--with-files", action="store_true",
                          help="Also delete every remote media file the device listed")
    merge_p = dsub.add_parser("merge", help="Adopt a device's entries, then delete its mapping")
    merge_p.add_argument("device_id")

    return p.parse_args(argv)


def load_settings(args) -> SyncSettings:
    state_dir = args.state_dir.expanduser() if args.state_dir else config.default_state_dir()
    settings_file = args.config or state_dir / config.SETTINGS_FILE_NAME
    settings = SyncSettings.load(settings_file)
    if args.state_dir:
        settings.state_dir = str(state_dir)
    return settings


def run_sync_with_progress(app: PhotoSyncApp) -> SyncResult:
    """Runs the sync on a worker thread and renders its events with tqdm."""
    events = app.channel.subscribe()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync")
    future = executor.submit(app.sync)
    try:
        with tqdm(total=100, desc="Sync", unit="%") as bar:
            while True:
                try:
                    event = events.get(timeout=0.5)
                except queue.Empty:
                    if future.done():
                        break
                    continue
                if event.kind == "phase" and event.phase is not None:
                    bar.set_description(event.phase.value)
                elif event.progress is not None:
                    bar.n = event.progress
                    bar.set_postfix_str(event.message[:40])
                    bar.refresh()
                if event.kind == "done":
                    break
    except KeyboardInterrupt:
        # Stop at the next phase boundary, then let the run persist what it has
        logging.warning("Cancelling sync...")
        app.cancel()
        future.result()
        raise
    finally:
        executor.shutdown(wait=True)
        app.channel.unsubscribe(events)
    return future.result()


def print_tasks(result: SyncResult):
    for task in result.tasks:
        error = f"  {task.error_message}" if task.error_message else ""
        print(f"{task.status.value:<10} {task.type.value:<8} {task.file_name}{error}")


def cmd_scan(app: PhotoSyncApp) -> int:
    indices = app.scan()
    for date_path, index in indices.items():
        print(f"{date_path}  {len(index)}")
    print(f"Total: {app.catalog.total_count} ({app.catalog.image_count} images, "
          f"{app.catalog.video_count} videos)")
    return 0


def cmd_sync(app: PhotoSyncApp, show_tasks: bool) -> int:
    result = run_sync_with_progress(app)
    for warning in result.warnings:
        logging.warning(warning)
    if show_tasks:
        print_tasks(result)
    if result.success:
        logging.info(f"Sync OK: {result.uploaded} uploaded, {result.downloaded} downloaded")
        return 0
    logging.error(f"Sync failed: {result.error}")
    return 1


def cmd_devices(app: PhotoSyncApp, args) -> int:
    if args.devices_command == "list":
        for mapping in app.reconciler.list_devices():
            marker = "*" if mapping.device_id == app.device.uuid else " "
            print(f"{marker} {describe(mapping)}")
        return 0

    if args.devices_command == "delete" and args.with_files:
        result = app.reconciler.delete_device_with_files(args.device_id)
        logging.info(f"Deleted {result.deleted} files ({result.delete_failures} failures)")
    elif args.devices_command == "delete":
        result = app.reconciler.delete_device(args.device_id)
    else:
        result = app.reconciler.merge_and_delete(args.device_id)
        logging.info(f"Merged {result.merged} entries from {args.device_id}")

    if result.partial:
        logging.error(result.error)
        return 1
    return 0


def main(argv=None):
    args = parse_args(argv)

    try:
        settings = load_settings(args)
    except PhotoSyncError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(settings.state_path, args.verbose)
    logging.info("=== Photo Sync Started ===")

    app = None
    try:
        app = PhotoSyncApp(settings)
        logging.info(f"Device: {app.device.name} ({app.device.uuid})")

        if args.command == "scan":
            code = cmd_scan(app)
        elif args.command == "sync":
            code = cmd_sync(app, args.show_tasks)
        elif args.command == "watch":
            stop = threading.Event()
            try:
                app.watch(stop, on_result=lambda r: logging.info(
                    f"Run {'OK' if r.success else 'failed'}: {r.uploaded} up, {r.downloaded} down"))
            except KeyboardInterrupt:
                stop.set()
                app.cancel()
            code = 0
        else:
            code = cmd_devices(app, args)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error during photo sync.")
        sys.exit(1)
    finally:
        if app is not None:
            app.close()

    sys.exit(code)


if __name__ == "__main__":
    main()
