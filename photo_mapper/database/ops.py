import sqlite3
import logging
from datetime import datetime, UTC
from typing import Optional, Tuple, List, Dict, Any, Iterator, Callable

from ..exceptions import StoreUnavailable
from ..geo import distance_meters, latitude_band
from ..models import PhotoRecord, SourceFile, SyncAction, SyncLogEntry, SyncStatus, WATERMARK_ACTIONS
from .schema import init_schema

PHOTO_COLUMNS = (
    "id", "name", "mime_type", "latitude", "longitude", "altitude", "captured_at",
    "source_modified_at", "size_bytes", "thumbnail_url", "view_url", "download_url",
    "collection_id", "checksum", "processed_at",
)
_SELECT_PHOTOS = f"SELECT {', '.join(PHOTO_COLUMNS)} FROM photos"

LOG_COLUMNS = (
    "timestamp", "collection_id", "action", "records_seen", "records_with_location",
    "error_count", "duration_ms", "status",
)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_photo(row: Tuple) -> PhotoRecord:
    (pid, name, mime_type, lat, lng, alt, captured, modified, size_bytes,
     thumb, view, download, collection_id, checksum, processed) = row
    return PhotoRecord(
        id=pid,
        name=name,
        mime_type=mime_type,
        latitude=lat,
        longitude=lng,
        altitude=alt,
        captured_at=_parse_dt(captured),
        source_modified_at=_parse_dt(modified),
        size_bytes=size_bytes,
        thumbnail_url=thumb,
        view_url=view,
        download_url=download,
        collection_id=collection_id,
        checksum=checksum,
        processed_at=_parse_dt(processed),
    )


def _is_missing_table(err: sqlite3.OperationalError) -> bool:
    return "no such table" in str(err)


class DBOperations:
    """
    Metadata store operations over a single SQLite connection.

    Reads against a missing table raise StoreUnavailable. Writes against a
    missing table re-apply the schema once and retry.
    """
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # --- Internal helpers ---

    def _read(self, sql: str, params: Tuple = ()) -> List[Tuple]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"Store read failed: {e}") from e

    def _write(self, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except sqlite3.OperationalError as e:
            if not _is_missing_table(e):
                raise StoreUnavailable(f"Store write failed: {e}") from e
            logging.warning(f"Store table missing ({e}); re-creating schema.")
            try:
                init_schema(self.conn)
                return fn()
            except sqlite3.OperationalError as retry_err:
                raise StoreUnavailable(f"Store write failed after schema init: {retry_err}") from retry_err

    def commit(self):
        try:
            self.conn.commit()
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"Commit failed: {e}") from e

    # --- Photo Records ---

    def upsert_photo(self, rec: PhotoRecord) -> PhotoRecord:
        """
        Inserts or replaces a photo by id.
        Updates keep the original rowid, so natural scan order is stable.
        """
        rec.processed_at = datetime.now(UTC)
        values = (
            rec.id, rec.name, rec.mime_type, rec.latitude, rec.longitude, rec.altitude,
            rec.captured_at.isoformat() if rec.captured_at else None,
            rec.source_modified_at.isoformat(),
            rec.size_bytes, rec.thumbnail_url, rec.view_url, rec.download_url,
            rec.collection_id, rec.checksum or "", rec.processed_at.isoformat(),
        )
        placeholders = ", ".join("?" for _ in PHOTO_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in PHOTO_COLUMNS if c != "id")

        def do_upsert():
            self.conn.execute(
                f"INSERT INTO photos ({', '.join(PHOTO_COLUMNS)}) VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {updates}",
                values,
            )

        self._write(do_upsert)
        return rec

    def get_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        rows = self._read(f"{_SELECT_PHOTOS} WHERE id = ?", (photo_id,))
        return _row_to_photo(rows[0]) if rows else None

    def delete_photo(self, photo_id: str) -> bool:
        cur = self._write(lambda: self.conn.execute("DELETE FROM photos WHERE id = ?", (photo_id,)))
        return cur.rowcount > 0

    # --- Unlocated Items ---

    def mark_unlocated(self, item: SourceFile):
        """Remembers the version of an item that had no usable coordinates."""
        values = (item.id, item.collection_id, item.modified_at.isoformat(), item.checksum or "")
        self._write(lambda: self.conn.execute(
            "INSERT INTO unlocated_items (id, collection_id, source_modified_at, checksum) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET collection_id = excluded.collection_id, "
            "source_modified_at = excluded.source_modified_at, checksum = excluded.checksum",
            values,
        ))

    def forget_unlocated(self, item_id: str):
        self._write(lambda: self.conn.execute("DELETE FROM unlocated_items WHERE id = ?", (item_id,)))

    def get_unlocated(self, item_id: str) -> Optional[Tuple[datetime, str]]:
        """Returns (source_modified_at, checksum) of the remembered version, if any."""
        rows = self._read("SELECT source_modified_at, checksum FROM unlocated_items WHERE id = ?", (item_id,))
        return (_parse_dt(rows[0][0]), rows[0][1]) if rows else None

    def known_versions(self, collection_id: str) -> Dict[str, datetime]:
        """
        Maps every item id the store has seen in a collection, located or not,
        to the source modification time it was last processed at.
        """
        rows = self._read(
            "SELECT id, source_modified_at FROM photos WHERE collection_id = ? "
            "UNION ALL "
            "SELECT id, source_modified_at FROM unlocated_items WHERE collection_id = ?",
            (collection_id, collection_id),
        )
        return {pid: _parse_dt(ts) for pid, ts in rows}

    # --- Queries ---

    def scan_all(self, limit: int) -> List[PhotoRecord]:
        """Returns up to `limit` photos in natural row order."""
        rows = self._read(f"{_SELECT_PHOTOS} ORDER BY rowid LIMIT ?", (limit,))
        return [_row_to_photo(r) for r in rows]

    def scan_by_bounds(self, north: float, south: float, east: float, west: float, limit: int) -> List[PhotoRecord]:
        """
        Returns photos inside the rectangle, edges inclusive, in row order.
        Expects east >= west; the query layer normalizes reversed input.
        """
        rows = self._read(
            f"{_SELECT_PHOTOS} "
            "WHERE latitude BETWEEN ? AND ? AND longitude BETWEEN ? AND ? "
            "ORDER BY rowid LIMIT ?",
            (south, north, west, east, limit),
        )
        return [_row_to_photo(r) for r in rows]

    def scan_by_radius(self, center_lat: float, center_lng: float, radius_meters: float, limit: int) -> List[PhotoRecord]:
        """
        Returns photos within radius_meters of the center, nearest first.
        Ties keep row order (sorted() is stable), then the list is cut at `limit`.
        """
        # Prefilter on latitude only; a longitude window breaks at the antimeridian and poles
        south, north = latitude_band(center_lat, radius_meters)
        rows = self._read(
            f"{_SELECT_PHOTOS} WHERE latitude BETWEEN ? AND ? ORDER BY rowid",
            (south, north),
        )

        matches: List[Tuple[float, PhotoRecord]] = []
        for row in rows:
            rec = _row_to_photo(row)
            d = distance_meters(center_lat, center_lng, rec.latitude, rec.longitude)
            if d <= radius_meters:
                matches.append((d, rec))

        matches = sorted(matches, key=lambda m: m[0])
        return [rec for _, rec in matches[:limit]]

    def iter_collection_photo_ids(self, collection_id: str) -> Iterator[str]:
        rows = self._read("SELECT id FROM photos WHERE collection_id = ? ORDER BY rowid", (collection_id,))
        for (pid,) in rows:
            yield pid

    def count_photos(self) -> int:
        return self._read("SELECT COUNT(*) FROM photos")[0][0]

    def count_photos_with_valid_coords(self) -> int:
        rows = self._read("""
            SELECT COUNT(*) FROM photos
            WHERE latitude BETWEEN -90 AND 90 AND longitude BETWEEN -180 AND 180
        """)
        return rows[0][0]

    def list_collections(self) -> Dict[str, int]:
        """Returns {collection_id: photo_count}."""
        rows = self._read("SELECT collection_id, COUNT(*) FROM photos GROUP BY collection_id ORDER BY collection_id")
        return {cid: n for cid, n in rows}

    # --- Sync Log ---

    def append_log(self, entry: SyncLogEntry):
        values = (
            entry.timestamp.isoformat(), entry.collection_id, entry.action,
            entry.records_seen, entry.records_with_location, entry.error_count,
            entry.duration_ms, entry.status,
        )

        def do_insert():
            with self.conn:
                self.conn.execute(
                    f"INSERT INTO sync_log ({', '.join(LOG_COLUMNS)}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    values,
                )

        self._write(do_insert)

    def last_sync_timestamp(self, collection_id: str, completed_only: bool = False) -> Optional[datetime]:
        """
        Timestamp of the most recent full or incremental sync for a collection.
        A bounded run counts only once it completed, since a stopped one left
        listed items behind. With completed_only, failed and partial runs of
        any kind do not count.
        """
        sql = (
            "SELECT timestamp FROM sync_log WHERE collection_id = ? "
            "AND (action IN (?, ?) OR (action = ? AND status = ?))"
        )
        params: Tuple = (collection_id, *WATERMARK_ACTIONS, SyncAction.AUTOMATED.value, SyncStatus.COMPLETED.value)
        if completed_only:
            sql += " AND status = ?"
            params = params + (SyncStatus.COMPLETED.value,)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT 1"

        rows = self._read(sql, params)
        return _parse_dt(rows[0][0]) if rows else None

    def recent_logs(self, limit: int, collection_id: Optional[str] = None) -> List[SyncLogEntry]:
        sql = f"SELECT {', '.join(LOG_COLUMNS)} FROM sync_log"
        params: Tuple = ()
        if collection_id is not None:
            sql += " WHERE collection_id = ?"
            params = (collection_id,)
        sql += " ORDER BY id DESC LIMIT ?"
        rows = self._read(sql, params + (limit,))
        return [
            SyncLogEntry(
                timestamp=_parse_dt(ts), collection_id=cid, action=action,
                records_seen=seen, records_with_location=with_loc, error_count=errs,
                duration_ms=dur, status=status,
            )
            for ts, cid, action, seen, with_loc, errs, dur, status in rows
        ]

    # --- Sync Leases ---

    def try_acquire_lease(self, name: str, owner: str, now: float, expires_at: float) -> bool:
        """
        Takes the named lease if it is free or expired. The UPDATE and INSERT run
        in one transaction, so two processes cannot both succeed.
        """
        def do_acquire():
            with self.conn:
                cur = self.conn.execute(
                    "UPDATE sync_leases SET owner = ?, expires_at = ? WHERE name = ? AND (expires_at <= ? OR owner = ?)",
                    (owner, expires_at, name, now, owner),
                )
                if cur.rowcount == 0:
                    cur = self.conn.execute(
                        "INSERT OR IGNORE INTO sync_leases (name, owner, expires_at) VALUES (?, ?, ?)",
                        (name, owner, expires_at),
                    )
                return cur.rowcount == 1

        return self._write(do_acquire)

    def renew_lease(self, name: str, owner: str, expires_at: float) -> bool:
        def do_renew():
            with self.conn:
                cur = self.conn.execute(
                    "UPDATE sync_leases SET expires_at = ? WHERE name = ? AND owner = ?",
                    (expires_at, name, owner),
                )
                return cur.rowcount == 1

        return self._write(do_renew)

    def release_lease(self, name: str, owner: str):
        def do_release():
            with self.conn:
                self.conn.execute("DELETE FROM sync_leases WHERE name = ? AND owner = ?", (name, owner))

        self._write(do_release)

    def get_lease(self, name: str) -> Optional[Tuple[str, float]]:
        """Returns (owner, expires_at) for a lease row, expired or not."""
        rows = self._read("SELECT owner, expires_at FROM sync_leases WHERE name = ?", (name,))
        return (rows[0][0], rows[0][1]) if rows else None
