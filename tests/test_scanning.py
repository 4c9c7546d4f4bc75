import hashlib
import os
import pytest
from datetime import datetime, timedelta, UTC
from types import SimpleNamespace
from photo_mapper import config
from photo_mapper.exceptions import UpstreamUnavailable
from photo_mapper.models import SyncAction, SyncLogEntry, SyncStatus
from photo_mapper.metadata.extract import LocationMetadata, MetadataExtractor
from photo_mapper.scanning.filesystem import LocalFolderSource, _changed_at
from photo_mapper.scanning.hasher import FileHasher
from photo_mapper.sync.engine import SyncEngine

def test_full_checksum_for_small_files(tmp_path):
    p = tmp_path / "sample.jpg"
    data = b"hello world" * 10
    p.write_bytes(data)

    assert FileHasher().compute_checksum(p) == hashlib.sha256(data).hexdigest()

def test_sparse_checksum_for_large_files(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "SPARSE_HASH_THRESHOLD", 1024)
    p = tmp_path / "big.dng"
    p.write_bytes(b"a" * 20_000)

    checksum = FileHasher().compute_checksum(p)
    assert checksum.startswith("s-")

    # Same header/footer, different length
    p.write_bytes(b"a" * 20_001)
    assert FileHasher().compute_checksum(p) != checksum

@pytest.fixture
def collection(tmp_path):
    root = tmp_path / "trip"
    (root / "day1").mkdir(parents=True)
    (root / ".thumbs").mkdir()
    (root / "b.jpg").write_bytes(b"b")
    (root / "day1" / "a.JPG").write_bytes(b"a")
    (root / "notes.txt").write_text("not a photo")
    (root / ".thumbs" / "hidden.jpg").write_bytes(b"h")
    return root

def test_iter_files_skips_hidden_and_non_images(collection):
    source = LocalFolderSource({"trip": collection})
    files = list(source._iter_files(collection))

    assert collection / "b.jpg" in files
    assert collection / "day1" / "a.JPG" in files
    assert len(files) == 2

def test_list_items_pages_and_ids(collection):
    source = LocalFolderSource({"trip": collection}, page_size=1)
    pages = list(source.list_items("trip"))

    assert len(pages) == 2
    items = [i for page in pages for i in page]
    assert {i.id for i in items} == {"trip/b.jpg", "trip/day1/a.JPG"}
    assert all(i.collection_id == "trip" for i in items)
    assert all(i.mime_type == "image/jpeg" for i in items)
    assert all(i.modified_at.tzinfo is not None for i in items)

def test_list_items_modified_after(collection):
    source = LocalFolderSource({"trip": collection})
    later = datetime.now(UTC) + timedelta(hours=1)
    assert [i for page in source.list_items("trip", modified_after=later) for i in page] == []

def test_changed_at_takes_later_of_mtime_and_ctime():
    stat_result = SimpleNamespace(st_mtime=1_000.0, st_ctime=5_000.0)
    assert _changed_at(stat_result) == datetime.fromtimestamp(5_000.0, UTC)

    stat_result = SimpleNamespace(st_mtime=9_000.0, st_ctime=5_000.0)
    assert _changed_at(stat_result) == datetime.fromtimestamp(9_000.0, UTC)

def test_imported_file_with_preserved_mtime_is_listed(collection):
    """Copies made with cp -p or rsync -a keep an old mtime but get a fresh ctime."""
    imported = collection / "imported.jpg"
    imported.write_bytes(b"i")
    backdated = (datetime.now(UTC) - timedelta(days=1)).timestamp()
    os.utime(imported, (backdated, backdated))

    source = LocalFolderSource({"trip": collection})
    since = datetime.now(UTC) - timedelta(hours=1)
    items = {i.id: i for page in source.list_items("trip", modified_after=since) for i in page}

    assert "trip/imported.jpg" in items
    assert items["trip/imported.jpg"].modified_at == datetime.fromtimestamp(backdated, UTC)

def test_incremental_sync_picks_up_backdated_import(collection, db_ops, cfg):
    db_ops.append_log(SyncLogEntry(timestamp=datetime.now(UTC) - timedelta(minutes=1), collection_id="trip",
                                   action=SyncAction.FULL.value, status=SyncStatus.COMPLETED.value))

    imported = collection / "imported.jpg"
    imported.write_bytes(b"i")
    backdated = datetime(2020, 1, 1, tzinfo=UTC).timestamp()
    os.utime(imported, (backdated, backdated))

    result = SyncEngine(db_ops, LocalFolderSource({"trip": collection}), cfg).incremental_sync("trip")

    assert result.records_seen >= 1
    # No GPS in the bytes, so it is remembered rather than stored
    assert db_ops.get_unlocated("trip/imported.jpg") == (datetime.fromtimestamp(backdated, UTC), FileHasher().compute_checksum(imported))

def test_fetch_details_fills_checksum_and_location(monkeypatch, collection):
    meta = LocationMetadata(latitude=45.0, longitude=7.5, altitude=300.0, captured_at=datetime(2023, 7, 1, 10, 0))
    monkeypatch.setattr(MetadataExtractor, "get_location_metadata", lambda self, p: meta)

    source = LocalFolderSource({"trip": collection})
    item = next(iter(source.list_items("trip")))[0]
    item = source.fetch_details(source.fetch_checksum(item))

    assert (item.latitude, item.longitude, item.altitude) == (45.0, 7.5, 300.0)
    assert item.captured_at == datetime(2023, 7, 1, 10, 0)
    assert item.checksum

def test_exists_by_id(collection):
    source = LocalFolderSource({"trip": collection})
    assert source.exists_by_id("trip/day1/a.JPG")
    assert not source.exists_by_id("trip/day1/gone.jpg")

def test_unreachable_collection_raises(tmp_path):
    source = LocalFolderSource({"trip": tmp_path / "unmounted"})
    with pytest.raises(UpstreamUnavailable):
        list(source.list_items("trip"))
    with pytest.raises(UpstreamUnavailable):
        source.exists_by_id("trip/a.jpg")
    with pytest.raises(UpstreamUnavailable):
        list(source.list_items("unknown"))
