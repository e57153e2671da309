import json
import pytest
import threading
import time
from pathlib import Path

from photo_sync import config
from photo_sync.config import SyncSettings
from photo_sync.core import PhotoSyncApp, build_remote
from photo_sync.device import DeviceInfo
from photo_sync.exceptions import ConfigError, SerializationError, SyncInProgressError
from photo_sync.main import parse_args, run_sync_with_progress
from photo_sync.remote.local import LocalDirectoryRemote
from photo_sync.remote.webdav import WebDavClient
from photo_sync.sync.coordinator import ActivityState, SyncCoordinator
from photo_sync.sync.orchestrator import SyncResult
from photo_sync.sync.progress import ProgressChannel, SyncEvent

from conftest import write_media

def test_settings_defaults(tmp_path):
    s = SyncSettings.load(tmp_path / "missing.json")
    assert s.upload_root == "/PhotoSync"
    assert s.max_concurrent_tasks == 5
    assert s.auto_sync is False

def test_settings_load_ignores_unknown_keys(tmp_path, monkeypatch):
    monkeypatch.delenv(config.PASSWORD_ENV_VAR, raising=False)
    p = tmp_path / "settings.json"
    p.write_text(json.dumps({"server_url": "https://x/dav", "max_concurrent_tasks": 2, "theme": "dark"}))
    s = SyncSettings.load(p)
    assert s.server_url == "https://x/dav"
    assert s.max_concurrent_tasks == 2

@pytest.mark.parametrize("content", [
    "not json",
    "[1]",
    json.dumps({"max_concurrent_tasks": 0}),
    json.dumps({"scan_folders": "/one/path"}),
    json.dumps({"request_timeout": -1}),
])
def test_settings_invalid(tmp_path, content):
    p = tmp_path / "settings.json"
    p.write_text(content)
    with pytest.raises(ConfigError):
        SyncSettings.load(p)

def test_password_from_environment_is_not_saved(tmp_path, monkeypatch):
    monkeypatch.setenv(config.PASSWORD_ENV_VAR, "from-env")
    p = tmp_path / "settings.json"
    p.write_text(json.dumps({"password": "stored"}))

    s = SyncSettings.load(p)
    assert s.password == "from-env"
    s.save(p)
    assert json.loads(p.read_text())["password"] is None

def test_settings_paths(tmp_path):
    s = SyncSettings(state_dir=str(tmp_path), scan_folders=[str(tmp_path / "pics")])
    assert s.media_path == tmp_path / "media"
    assert s.scan_paths == [tmp_path / "pics"]

def test_build_remote():
    assert isinstance(build_remote(SyncSettings(server_url="file:///mnt/nas")), LocalDirectoryRemote)
    assert isinstance(build_remote(SyncSettings(server_url="https://x/dav", username="u", password="p")), WebDavClient)
    with pytest.raises(ConfigError):
        build_remote(SyncSettings())

def test_device_identity_is_stable(tmp_path):
    first = DeviceInfo.load_or_create(tmp_path)
    second = DeviceInfo.load_or_create(tmp_path)
    assert first.uuid == second.uuid
    assert len(first.uuid) == 36

    second.rename("Kitchen PC")
    second.record_sync()
    third = DeviceInfo.load_or_create(tmp_path)
    assert third.name == "Kitchen PC"
    assert third.last_sync_time is not None

def test_device_file_without_uuid(tmp_path):
    (tmp_path / config.DEVICE_FILE_NAME).write_text("{}")
    with pytest.raises(SerializationError):
        DeviceInfo.load_or_create(tmp_path)

def test_coordinator_excludes_overlap():
    c = SyncCoordinator()
    with c.activity(ActivityState.SYNCING):
        assert c.is_busy
        with pytest.raises(SyncInProgressError):
            with c.activity(ActivityState.RECONCILING):
                pass
    assert c.state == ActivityState.IDLE

def test_coordinator_released_on_error():
    c = SyncCoordinator()
    with pytest.raises(RuntimeError):
        with c.activity(ActivityState.SYNCING):
            raise RuntimeError("boom")
    assert not c.is_busy

def test_progress_channel_fan_out():
    channel = ProgressChannel()
    q = channel.subscribe()
    seen = []
    channel.listen(seen.append)

    def broken(event):
        raise RuntimeError("listener bug")

    channel.listen(broken)
    channel.publish(SyncEvent(kind="warning", message="hello"))
    assert q.get_nowait().message == "hello"
    assert [e.message for e in seen] == ["hello"]

    channel.unsubscribe(q)
    channel.publish(SyncEvent(kind="warning", message="again"))
    assert q.empty()

def test_parse_args():
    args = parse_args(["--state-dir", "/tmp/x", "-v", "sync", "--show-tasks"])
    assert args.command == "sync"
    assert args.show_tasks
    assert args.verbose
    assert args.state_dir == Path("/tmp/x")

    args = parse_args(["devices", "delete", "dev-b", "--with-files"])
    assert (args.devices_command, args.device_id, args.with_files) == ("delete", "dev-b", True)

def test_app_end_to_end(fixed_capture_date, tmp_path):
    remote_dir = tmp_path / "nas"
    remote_dir.mkdir()
    photos = tmp_path / "photos"
    write_media(photos, "a.jpg", b"AAA")
    settings = SyncSettings(
        server_url=f"file://{remote_dir}",
        scan_folders=[str(photos)],
        state_dir=str(tmp_path / "state"),
        auto_sync=True,
        auto_sync_interval=1,
    )
    app = PhotoSyncApp(settings)
    try:
        result = app.sync()
        assert result.success
        assert (remote_dir / "PhotoSync/2024/05/01/a.jpg").exists()
        assert app.device.last_sync_time is not None
        assert [t.file_name for t in app.scheduler.completed_tasks()] == ["a.jpg"]

        stop = threading.Event()
        results = []

        def on_result(r):
            results.append(r)
            stop.set()

        app.watch(stop, on_result=on_result)
        assert len(results) == 1
        assert results[0].tasks == []
    finally:
        app.close()

class InterruptedQueue:
    def get(self, timeout=None):
        raise KeyboardInterrupt

class SlowApp:
    """Sync that runs for seconds unless cancelled."""

    def __init__(self):
        self.channel = ProgressChannel()
        self.channel.subscribe = lambda: InterruptedQueue()
        self.channel.unsubscribe = lambda q: None
        self.started = threading.Event()
        self.cancelled = threading.Event()
        self.finished_at = None

    def sync(self):
        self.started.set()
        self.cancelled.wait(timeout=5)
        self.finished_at = time.monotonic()
        return SyncResult(success=False, cancelled=self.cancelled.is_set())

    def cancel(self):
        self.started.wait(timeout=5)
        self.cancelled.set()

def test_ctrl_c_cancels_running_sync():
    app = SlowApp()
    began = time.monotonic()
    with pytest.raises(KeyboardInterrupt):
        run_sync_with_progress(app)

    assert app.cancelled.is_set()
    assert app.finished_at - began < 4
