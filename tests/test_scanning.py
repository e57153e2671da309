import hashlib
import os
import pytest
from pathlib import Path
from datetime import datetime

from photo_sync import config
from photo_sync.catalog import MediaCatalog
from photo_sync.exceptions import FileSystemError
from photo_sync.models import MediaType
from photo_sync.scanning.filesystem import MediaScanner
from photo_sync.scanning.hasher import ContentHasher

from conftest import CAPTURE_DATE, write_media

LARGE_SIZE = 60 * 1024 * 1024

def make_sparse(path: Path, size: int) -> Path:
    with open(path, "wb") as f:
        f.truncate(size)
    return path

def test_small_file_identity_is_content_hash(tmp_path):
    data = b"hello world" * 10
    p = write_media(tmp_path, "a.jpg", data)

    res = ContentHasher().identify(p)
    assert res.value == hashlib.sha256(data).hexdigest()
    assert not res.is_metadata

def test_same_content_same_identity(tmp_path):
    a = write_media(tmp_path / "one", "a.jpg", b"same bytes")
    b = write_media(tmp_path / "two", "renamed.jpg", b"same bytes")
    c = write_media(tmp_path, "c.jpg", b"other bytes")

    hasher = ContentHasher()
    assert hasher.identify(a).value == hasher.identify(b).value
    assert hasher.identify(a).value != hasher.identify(c).value

def test_large_file_uses_metadata_identity(tmp_path):
    p = make_sparse(tmp_path / "big.mp4", LARGE_SIZE)
    hasher = ContentHasher()

    first = hasher.identify(p)
    assert first.is_metadata
    assert first.value.startswith("m-")
    # Stable while path, size and mtime are unchanged
    assert hasher.identify(p).value == first.value

    st = p.stat()
    os.utime(p, ns=(st.st_atime_ns, st.st_mtime_ns + 5_000_000_000))
    assert hasher.identify(p).value != first.value

def test_large_file_identity_depends_on_path(tmp_path):
    a = make_sparse(tmp_path / "a.mp4", LARGE_SIZE)
    b = make_sparse(tmp_path / "b.mp4", LARGE_SIZE)
    st = a.stat()
    os.utime(b, ns=(st.st_atime_ns, st.st_mtime_ns))

    hasher = ContentHasher()
    assert hasher.identify(a).value != hasher.identify(b).value

def test_threshold_boundary(tmp_path):
    below = make_sparse(tmp_path / "below.mp4", config.HASH_SIZE_THRESHOLD - 1)
    at = make_sparse(tmp_path / "at.mp4", config.HASH_SIZE_THRESHOLD)

    hasher = ContentHasher()
    assert not hasher.identify(below).is_metadata
    assert hasher.identify(at).is_metadata

def test_missing_file_raises(tmp_path):
    with pytest.raises(FileSystemError):
        ContentHasher().identify(tmp_path / "gone.jpg")

def test_classify_extension():
    assert MediaType.from_ext('.JPG') == MediaType.IMAGE
    assert MediaType.from_ext('.heic') == MediaType.IMAGE
    assert MediaType.from_ext('.mp4') == MediaType.VIDEO
    assert MediaType.from_ext('.xyz') == MediaType.UNKNOWN

def test_scanner_produces_items(fixed_capture_date, tmp_path):
    write_media(tmp_path, "a.jpg", b"aaa")
    write_media(tmp_path / "sub" / "deeper", "b.mov", b"bbb")
    write_media(tmp_path, "notes.txt", b"not media")
    write_media(tmp_path, "._a.jpg", b"apple double")

    items = list(MediaScanner().scan([tmp_path]))

    by_name = {i.file_name: i for i in items}
    assert set(by_name) == {"a.jpg", "b.mov"}
    assert by_name["a.jpg"].type == MediaType.IMAGE
    assert by_name["b.mov"].type == MediaType.VIDEO
    assert by_name["a.jpg"].created_at == CAPTURE_DATE
    assert by_name["a.jpg"].size_bytes == 3

def test_scanner_include_unknown(fixed_capture_date, tmp_path):
    write_media(tmp_path, "notes.txt", b"x")
    items = list(MediaScanner(include_unknown=True).scan([tmp_path]))
    assert [i.type for i in items] == [MediaType.UNKNOWN]

def test_scanner_falls_back_to_mtime(monkeypatch, tmp_path):
    from photo_sync.metadata.extract import CaptureDateExtractor
    monkeypatch.setattr(CaptureDateExtractor, "capture_date", lambda self, p, t: None)

    p = write_media(tmp_path, "a.png", b"png-ish")
    ts = datetime(2020, 1, 2, 3, 4, 5).timestamp()
    os.utime(p, (ts, ts))

    [item] = list(MediaScanner().scan([tmp_path]))
    assert item.created_at == datetime(2020, 1, 2, 3, 4, 5)
    assert item.date_path == "2020/01/02"

def test_scanner_skips_oversized_files(fixed_capture_date, monkeypatch, tmp_path):
    monkeypatch.setattr(config, "MAX_SCAN_FILE_SIZE", 10)
    write_media(tmp_path, "small.jpg", b"12345")
    write_media(tmp_path, "huge.jpg", b"x" * 11)

    names = [i.file_name for i in MediaScanner().scan([tmp_path])]
    assert names == ["small.jpg"]

def test_scanner_skips_missing_root(fixed_capture_date, tmp_path):
    write_media(tmp_path / "ok", "a.jpg", b"a")
    items = list(MediaScanner().scan([tmp_path / "missing", tmp_path / "ok"]))
    assert len(items) == 1

def test_scanner_batches_many_files(fixed_capture_date, tmp_path):
    for i in range(45):
        write_media(tmp_path / f"d{i % 4}", f"img{i}.jpg", f"content {i}".encode())

    items = list(MediaScanner(batch_size=7, max_workers=3).scan([tmp_path]))
    assert len(items) == 45
    assert len({i.id for i in items}) == 45

def test_catalog_buckets_and_dedupes(monkeypatch, tmp_path):
    from photo_sync.metadata.extract import CaptureDateExtractor
    dates = {
        "a.jpg": datetime(2024, 5, 1, 9, 0),
        "b.jpg": datetime(2024, 5, 1, 18, 0),
        "c.mp4": datetime(2023, 12, 31, 23, 0),
        "dup.jpg": datetime(2024, 5, 1, 9, 0),
    }
    monkeypatch.setattr(CaptureDateExtractor, "capture_date", lambda self, p, t: dates[p.name])

    write_media(tmp_path, "a.jpg", b"A")
    write_media(tmp_path, "b.jpg", b"B")
    write_media(tmp_path, "c.mp4", b"C")
    write_media(tmp_path / "copy", "dup.jpg", b"A")

    catalog = MediaCatalog()
    indices = catalog.build([tmp_path])

    assert list(indices) == ["2024/05/01", "2023/12/31"]
    day = indices["2024/05/01"]
    assert [i.file_name for i in day.items] == ["b.jpg", "a.jpg"]
    assert catalog.total_count == 3
    assert catalog.image_count == 2
    assert catalog.video_count == 1

def test_catalog_rebuild_starts_fresh(fixed_capture_date, tmp_path):
    write_media(tmp_path, "a.jpg", b"A")
    catalog = MediaCatalog()
    catalog.build([tmp_path])
    (tmp_path / "a.jpg").unlink()
    write_media(tmp_path, "b.jpg", b"B")

    catalog.build([tmp_path])
    assert [i.file_name for i in catalog.all_items()] == ["b.jpg"]

def test_catalog_background_scan(fixed_capture_date, tmp_path):
    write_media(tmp_path, "a.jpg", b"A")
    catalog = MediaCatalog()
    try:
        future = catalog.start_background_scan([tmp_path])
        indices = future.result(timeout=30)
    finally:
        catalog.shutdown()
    assert sum(len(i) for i in indices.values()) == 1
