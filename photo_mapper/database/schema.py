"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup and after a table goes missing.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Photo Records
        # One row per source file with valid coordinates. rowid gives the
        # natural scan order and survives in-place updates.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS photos (
            id                  TEXT PRIMARY KEY,
            name                TEXT NOT NULL,
            mime_type           TEXT NOT NULL,
            latitude            REAL NOT NULL CHECK (latitude BETWEEN -90 AND 90),
            longitude           REAL NOT NULL CHECK (longitude BETWEEN -180 AND 180),
            altitude            REAL,
            captured_at         TEXT,
            source_modified_at  TEXT NOT NULL,
            size_bytes          INTEGER,
            thumbnail_url       TEXT NOT NULL DEFAULT '',
            view_url            TEXT NOT NULL DEFAULT '',
            download_url        TEXT NOT NULL DEFAULT '',
            collection_id       TEXT NOT NULL,
            checksum            TEXT NOT NULL DEFAULT '',
            processed_at        TEXT NOT NULL
        );
        """)

        # 3. Sync Log (append-only)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS sync_log (
            id                      INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp               TEXT NOT NULL,
            collection_id           TEXT NOT NULL,
            action                  TEXT NOT NULL,
            records_seen            INTEGER NOT NULL DEFAULT 0,
            records_with_location   INTEGER NOT NULL DEFAULT 0,
            error_count             INTEGER NOT NULL DEFAULT 0,
            duration_ms             INTEGER NOT NULL DEFAULT 0,
            status                  TEXT NOT NULL
        );
        """)

        # 4. Sync Leases (mutual exclusion across processes)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS sync_leases (
            name        TEXT PRIMARY KEY,
            owner       TEXT NOT NULL,
            expires_at  REAL NOT NULL
        );
        """)

        # 5. Items seen without usable coordinates
        # Remembered so unchanged ones are not re-read on every run.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS unlocated_items (
            id                  TEXT PRIMARY KEY,
            collection_id       TEXT NOT NULL,
            source_modified_at  TEXT NOT NULL,
            checksum            TEXT NOT NULL DEFAULT ''
        );
        """)

        # 6. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_photos_lat ON photos(latitude);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_photos_lng ON photos(longitude);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_photos_collection ON photos(collection_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_sync_log_collection ON sync_log(collection_id, timestamp);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_unlocated_collection ON unlocated_items(collection_id);")

    logging.debug("Database schema initialized.")
