import pytest
from datetime import datetime, timedelta
from pathlib import Path

from photo_sync.exceptions import SerializationError
from photo_sync.models import (Album, AlbumType, CloudMediaMapping, MediaIndex, MediaItem,
                               MediaMapping, MediaType, SyncStatus, TransferStatus,
                               TransferTask, TransferType, date_path_for, parse_date_path)

def make_item(media_id, created, name="a.jpg"):
    return MediaItem(
        id=media_id, path=Path("/photos") / name, name=Path(name).stem, ext=".jpg",
        size_bytes=1, type=MediaType.IMAGE, created_at=created, modified_at=created,
    )

def make_mapping(media_id="id1", status=SyncStatus.SYNCED, cloud_path="/PhotoSync/2024/05/01/a.jpg"):
    now = datetime(2024, 5, 1, 12, 0)
    return MediaMapping(media_id, "/photos/a.jpg", cloud_path, "image", 10, now, now, status)

def test_date_path_helpers():
    assert date_path_for(datetime(2024, 5, 1, 23, 59)) == "2024/05/01"
    assert parse_date_path("2024/05/01") == datetime(2024, 5, 1)
    assert parse_date_path("2024/13/01") is None
    assert parse_date_path("nope") is None

def test_media_index_dedupes_and_sorts_newest_first():
    idx = MediaIndex("2024/05/01")
    morning = make_item("a", datetime(2024, 5, 1, 8))
    evening = make_item("b", datetime(2024, 5, 1, 20))
    assert idx.add(morning)
    assert idx.add(evening)
    assert not idx.add(make_item("a", datetime(2024, 5, 1, 9)))
    assert [i.id for i in idx.items] == ["b", "a"]
    assert len(idx) == 2

def test_mapping_entry_dict_keys():
    d = make_mapping().to_dict()
    assert d["mediaId"] == "id1"
    assert d["cloudPath"] == "/PhotoSync/2024/05/01/a.jpg"
    assert d["syncStatus"] == "synced"
    assert d["size"] == 10
    assert d["createdAt"] == "2024-05-01T12:00:00"

def test_mapping_entry_accepts_legacy_fields():
    m = MediaMapping.from_dict({
        "mediaId": "x",
        "cloudPath": "/PhotoSync/2020/01/01/x.jpg",
        "fileSize": "42",
        "syncStatus": "conflict",
        "unexpected": True,
    })
    assert m.size_bytes == 42
    assert m.sync_status == SyncStatus.FAILED
    assert m.media_type == "unknown"
    assert m.file_name == "x.jpg"

@pytest.mark.parametrize("raw", [{}, {"mediaId": "x"}, {"cloudPath": "/a"}, "not a dict"])
def test_mapping_entry_rejects_incomplete(raw):
    with pytest.raises(SerializationError):
        MediaMapping.from_dict(raw)

def test_sync_status_parse():
    assert SyncStatus.parse("pendingUpload") == SyncStatus.PENDING_UPLOAD
    assert SyncStatus.parse("error") == SyncStatus.FAILED
    assert SyncStatus.parse(None) == SyncStatus.FAILED

def test_cloud_mapping_lookups():
    cm = CloudMediaMapping("dev", "Dev")
    cm.add_or_update(make_mapping("a"))
    cm.add_or_update(make_mapping("b", SyncStatus.PENDING_UPLOAD, "/PhotoSync/2024/05/01/b.jpg"))
    # Same identity replaces the entry
    cm.add_or_update(make_mapping("a", SyncStatus.FAILED))

    assert len(cm) == 2
    assert cm.find("a").sync_status == SyncStatus.FAILED
    assert [m.media_id for m in cm.by_status(SyncStatus.PENDING_UPLOAD)] == ["b"]
    assert cm.find_by_cloud_path("/PhotoSync/2024/05/01/b.jpg").media_id == "b"
    assert cm.find_by_local_path("/nowhere") is None
    assert cm.remove("a")
    assert not cm.remove("a")
    assert cm.media_ids() == {"b"}

def test_cloud_mapping_copy_is_independent():
    cm = CloudMediaMapping("dev", "Dev")
    cm.add_or_update(make_mapping("a"))
    working = cm.copy()
    working.add_or_update(make_mapping("b"))
    assert len(cm) == 1
    assert len(working) == 2

def test_cloud_mapping_decode_skips_bad_entries():
    cm = CloudMediaMapping.from_dict({
        "deviceId": "dev",
        "mappings": [
            make_mapping("ok").to_dict(),
            {"mediaId": "broken"},
            "garbage",
        ],
        "futureField": {"x": 1},
    })
    assert cm.media_ids() == {"ok"}
    assert cm.device_name == "dev"
    assert cm.schema_version == 1

def test_cloud_mapping_decode_requires_device_id():
    with pytest.raises(SerializationError):
        CloudMediaMapping.from_dict({"mappings": []})
    with pytest.raises(SerializationError):
        CloudMediaMapping.from_dict({"deviceId": "d", "mappings": {"a": 1}})

def test_cloud_mapping_encode_has_schema_version():
    d = CloudMediaMapping("dev", "Dev").to_dict()
    assert d["schemaVersion"] == 2
    assert d["deviceId"] == "dev"
    assert d["mappings"] == []

def test_transfer_task_lifecycle():
    task = TransferTask.for_upload(make_mapping())
    assert task.type == TransferType.UPLOAD
    assert task.file_name == "a.jpg"
    assert task.status == TransferStatus.PENDING
    assert not task.is_finished

    task.mark_in_progress()
    assert task.status == TransferStatus.IN_PROGRESS
    task.mark_failed("boom")
    assert task.is_finished
    assert task.error_message == "boom"
    assert task.duration >= timedelta(0)

def test_download_task_uses_cloud_name():
    m = make_mapping(cloud_path="/PhotoSync/2024/05/01/a_1234abcd.jpg")
    task = TransferTask.for_download(m)
    assert task.type == TransferType.DOWNLOAD
    assert task.file_name == "a_1234abcd.jpg"
    assert task.remote_path == m.cloud_path

def test_album_decode_defaults():
    album = Album.from_dict({"id": "1", "name": "Trip", "type": "mystery", "photoIds": ["a", "b"]})
    assert album.type == AlbumType.LOCAL
    assert album.photo_ids == ["a", "b"]
    assert Album.from_dict(album.to_dict()).name == "Trip"
    with pytest.raises(SerializationError):
        Album.from_dict({"id": "1"})
