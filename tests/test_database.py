import pytest
from datetime import datetime, timedelta, UTC
from photo_mapper.database.db import DBManager
from photo_mapper.exceptions import StoreUnavailable
from photo_mapper.models import PhotoRecord, SourceFile, SyncLogEntry, SyncAction, SyncStatus

METERS_PER_DEGREE = 111194.93  # one degree of latitude on the 6371 km sphere

def make_record(pid, lat, lng, collection_id="c1", name=None):
    return PhotoRecord(
        id=pid,
        name=name or f"{pid}.jpg",
        mime_type="image/jpeg",
        latitude=lat,
        longitude=lng,
        source_modified_at=datetime(2024, 1, 1, tzinfo=UTC),
        collection_id=collection_id,
    )

def test_upsert_replaces_by_id(db_ops):
    """Writing the same id twice leaves one row holding the latest values."""
    db_ops.upsert_photo(make_record("p1", 10.0, 20.0, name="old.jpg"))
    db_ops.upsert_photo(make_record("p1", 11.0, 21.0, name="new.jpg"))
    db_ops.commit()

    assert db_ops.count_photos() == 1
    rec = db_ops.get_photo("p1")
    assert rec.name == "new.jpg"
    assert (rec.latitude, rec.longitude) == (11.0, 21.0)
    assert rec.processed_at is not None

def test_update_keeps_row_order(db_ops):
    for pid in ("a", "b", "c"):
        db_ops.upsert_photo(make_record(pid, 1.0, 1.0))
    db_ops.upsert_photo(make_record("a", 2.0, 2.0))

    assert [r.id for r in db_ops.scan_all(10)] == ["a", "b", "c"]

def test_scan_all_respects_limit(db_ops):
    for i in range(5):
        db_ops.upsert_photo(make_record(f"p{i}", 0.0, 0.0))
    assert len(db_ops.scan_all(3)) == 3

def test_scan_by_bounds(db_ops):
    db_ops.upsert_photo(make_record("origin", 0.0, 0.0))
    db_ops.upsert_photo(make_record("outside", 2.0, 2.0))
    db_ops.upsert_photo(make_record("inside", -0.5, 0.5))

    found = db_ops.scan_by_bounds(north=1.0, south=-1.0, east=1.0, west=-1.0, limit=10)
    assert [r.id for r in found] == ["origin", "inside"]

def test_scan_by_bounds_edges_inclusive(db_ops):
    db_ops.upsert_photo(make_record("edge", 1.0, -1.0))
    found = db_ops.scan_by_bounds(north=1.0, south=-1.0, east=1.0, west=-1.0, limit=10)
    assert [r.id for r in found] == ["edge"]

def test_scan_by_radius_filters_and_orders_by_distance(db_ops):
    db_ops.upsert_photo(make_record("far", 1001 / METERS_PER_DEGREE, 0.0))
    db_ops.upsert_photo(make_record("edge", 999 / METERS_PER_DEGREE, 0.0))
    db_ops.upsert_photo(make_record("near", 500 / METERS_PER_DEGREE, 0.0))

    found = db_ops.scan_by_radius(0.0, 0.0, 1000.0, limit=10)
    assert [r.id for r in found] == ["near", "edge"]

def test_scan_by_radius_ties_keep_row_order(db_ops):
    db_ops.upsert_photo(make_record("north", 0.001, 0.0))
    db_ops.upsert_photo(make_record("south", -0.001, 0.0))

    found = db_ops.scan_by_radius(0.0, 0.0, 500.0, limit=10)
    assert [r.id for r in found] == ["north", "south"]

def test_scan_by_radius_across_antimeridian(db_ops):
    db_ops.upsert_photo(make_record("east_side", 0.0, 179.9995))
    db_ops.upsert_photo(make_record("west_side", 0.0, -179.9995))

    found = db_ops.scan_by_radius(0.0, 180.0, 100.0, limit=10)
    assert {r.id for r in found} == {"east_side", "west_side"}

def test_scan_by_radius_limit_applies_after_sort(db_ops):
    db_ops.upsert_photo(make_record("far", 0.005, 0.0))
    db_ops.upsert_photo(make_record("near", 0.001, 0.0))

    found = db_ops.scan_by_radius(0.0, 0.0, 10_000.0, limit=1)
    assert [r.id for r in found] == ["near"]

def test_delete_photo(db_ops):
    db_ops.upsert_photo(make_record("p1", 0.0, 0.0))
    assert db_ops.delete_photo("p1") is True
    assert db_ops.delete_photo("p1") is False
    assert db_ops.get_photo("p1") is None

def test_collections_and_counts(db_ops):
    db_ops.upsert_photo(make_record("a", 0.0, 0.0, collection_id="c1"))
    db_ops.upsert_photo(make_record("b", 0.0, 0.0, collection_id="c1"))
    db_ops.upsert_photo(make_record("c", 0.0, 0.0, collection_id="c2"))

    assert db_ops.list_collections() == {"c1": 2, "c2": 1}
    assert list(db_ops.iter_collection_photo_ids("c1")) == ["a", "b"]
    assert db_ops.count_photos_with_valid_coords() == 3

def test_out_of_range_coordinates_rejected_by_store(db_ops):
    import sqlite3
    with pytest.raises(sqlite3.IntegrityError):
        db_ops.upsert_photo(make_record("bad", 91.0, 0.0))

def _log(db_ops, ts, action=SyncAction.FULL, status=SyncStatus.COMPLETED, cid="c1"):
    db_ops.append_log(SyncLogEntry(timestamp=ts, collection_id=cid, action=action.value, status=status.value))

def test_watermark_uses_latest_sync(db_ops):
    t0 = datetime(2024, 1, 1, tzinfo=UTC)
    _log(db_ops, t0)
    _log(db_ops, t0 + timedelta(hours=1), action=SyncAction.INCREMENTAL)
    _log(db_ops, t0 + timedelta(hours=2), action=SyncAction.CLEANUP)
    _log(db_ops, t0 + timedelta(hours=3), action=SyncAction.AUTOMATED, status=SyncStatus.PARTIAL)

    assert db_ops.last_sync_timestamp("c1") == t0 + timedelta(hours=1)
    assert db_ops.last_sync_timestamp("other") is None

    # A bounded run that got through everything counts
    _log(db_ops, t0 + timedelta(hours=4), action=SyncAction.AUTOMATED)
    assert db_ops.last_sync_timestamp("c1") == t0 + timedelta(hours=4)

def test_watermark_completed_only(db_ops):
    t0 = datetime(2024, 1, 1, tzinfo=UTC)
    _log(db_ops, t0)
    _log(db_ops, t0 + timedelta(hours=1), status=SyncStatus.FAILED)

    assert db_ops.last_sync_timestamp("c1") == t0 + timedelta(hours=1)
    assert db_ops.last_sync_timestamp("c1", completed_only=True) == t0

def test_recent_logs_newest_first(db_ops):
    t0 = datetime(2024, 1, 1, tzinfo=UTC)
    _log(db_ops, t0, cid="c1")
    _log(db_ops, t0 + timedelta(minutes=1), cid="c2")
    _log(db_ops, t0 + timedelta(minutes=2), cid="c1")

    entries = db_ops.recent_logs(10)
    assert [e.collection_id for e in entries] == ["c1", "c2", "c1"]
    assert entries[0].timestamp == t0 + timedelta(minutes=2)
    assert len(db_ops.recent_logs(10, collection_id="c1")) == 2

def test_unlocated_items_and_known_versions(db_ops):
    modified = datetime(2024, 3, 1, tzinfo=UTC)
    item = SourceFile(id="c1/plain.jpg", name="plain.jpg", mime_type="image/jpeg",
                      modified_at=modified, collection_id="c1", checksum="v1")
    db_ops.mark_unlocated(item)
    db_ops.upsert_photo(make_record("c1/geo.jpg", 1.0, 1.0))

    assert db_ops.get_unlocated("c1/plain.jpg") == (modified, "v1")
    assert db_ops.known_versions("c1") == {
        "c1/plain.jpg": modified,
        "c1/geo.jpg": datetime(2024, 1, 1, tzinfo=UTC),
    }
    assert db_ops.known_versions("c2") == {}

    db_ops.forget_unlocated("c1/plain.jpg")
    assert db_ops.get_unlocated("c1/plain.jpg") is None

def test_missing_table_read_raises_store_unavailable(db_ops):
    db_ops.conn.execute("DROP TABLE photos")
    with pytest.raises(StoreUnavailable):
        db_ops.scan_all(10)

def test_missing_table_write_recreates_schema(db_ops):
    db_ops.conn.execute("DROP TABLE photos")
    db_ops.upsert_photo(make_record("p1", 0.0, 0.0))
    db_ops.commit()
    assert db_ops.count_photos() == 1

def test_lease_exclusive_until_expiry(db_ops):
    assert db_ops.try_acquire_lease("sync:c1", "owner-a", now=100.0, expires_at=200.0)
    assert not db_ops.try_acquire_lease("sync:c1", "owner-b", now=150.0, expires_at=250.0)
    assert db_ops.get_lease("sync:c1") == ("owner-a", 200.0)

    # Expired leases can be taken over
    assert db_ops.try_acquire_lease("sync:c1", "owner-b", now=200.0, expires_at=300.0)
    assert db_ops.get_lease("sync:c1") == ("owner-b", 300.0)

    # The old owner can no longer renew or release it
    assert not db_ops.renew_lease("sync:c1", "owner-a", 400.0)
    db_ops.release_lease("sync:c1", "owner-a")
    assert db_ops.get_lease("sync:c1") == ("owner-b", 300.0)

    db_ops.release_lease("sync:c1", "owner-b")
    assert db_ops.get_lease("sync:c1") is None

def test_db_manager_creates_schema(tmp_path):
    with DBManager(tmp_path / "store.db") as conn:
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"photos", "sync_log", "sync_leases", "schema_version"} <= tables

def test_db_manager_unreachable_path(tmp_path):
    manager = DBManager(tmp_path / "missing_dir" / "store.db")
    with pytest.raises(StoreUnavailable):
        manager.connect()
