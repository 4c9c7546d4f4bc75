from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SyncAction(str, Enum):
    FULL = "full-sync"
    INCREMENTAL = "incremental-sync"
    CLEANUP = "cleanup"
    AUTOMATED = "automated-incremental"


class SyncStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


# Actions whose log entries anchor the incremental watermark
WATERMARK_ACTIONS = (SyncAction.FULL.value, SyncAction.INCREMENTAL.value)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


@dataclass(frozen=True)
class Coordinates:
    """A validated coordinate triple."""
    latitude: float
    longitude: float
    altitude: Optional[float] = None


@dataclass
class SourceFile:
    """
    One item as reported by the source collaborator.
    Coordinates are raw values; they are validated by the sync engine.
    """
    id: str
    name: str
    mime_type: str
    modified_at: datetime
    collection_id: str
    size_bytes: Optional[int] = None
    checksum: str = ""
    latitude: Optional[Any] = None
    longitude: Optional[Any] = None
    altitude: Optional[Any] = None
    captured_at: Optional[datetime] = None


@dataclass
class PhotoRecord:
    """
    Represents a processed photo with a valid location.
    """
    id: str
    name: str
    mime_type: str
    latitude: float
    longitude: float
    source_modified_at: datetime
    collection_id: str
    altitude: Optional[float] = None
    captured_at: Optional[datetime] = None
    size_bytes: Optional[int] = None

    # Derived display links, regenerated on every sync
    thumbnail_url: str = ""
    view_url: str = ""
    download_url: str = ""

    checksum: str = ""
    processed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "mimeType": self.mime_type,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "capturedAt": _iso(self.captured_at),
            "sourceModifiedAt": _iso(self.source_modified_at),
            "sizeBytes": self.size_bytes,
            "thumbnailUrl": self.thumbnail_url,
            "viewUrl": self.view_url,
            "downloadUrl": self.download_url,
            "collectionId": self.collection_id,
            "checksum": self.checksum,
            "processedAt": _iso(self.processed_at),
        }


@dataclass
class SyncLogEntry:
    """Append-only audit row written at the end of every sync or cleanup run."""
    timestamp: datetime
    collection_id: str
    action: str
    records_seen: int = 0
    records_with_location: int = 0
    error_count: int = 0
    duration_ms: int = 0
    status: str = SyncStatus.COMPLETED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "collectionId": self.collection_id,
            "action": self.action,
            "recordsSeen": self.records_seen,
            "recordsWithLocation": self.records_with_location,
            "errorCount": self.error_count,
            "durationMs": self.duration_ms,
            "status": self.status,
        }


@dataclass
class SyncResult:
    records_seen: int = 0
    records_with_location: int = 0
    records_written: int = 0
    records_unchanged: int = 0
    records_without_location: int = 0
    records_removed: int = 0  # stored rows whose new version lost its location
    errors: int = 0
    duration_ms: int = 0
    status: str = SyncStatus.COMPLETED.value
    remaining: int = 0  # items a bounded run did not attempt

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recordsSeen": self.records_seen,
            "recordsWithLocation": self.records_with_location,
            "recordsWritten": self.records_written,
            "recordsUnchanged": self.records_unchanged,
            "recordsWithoutLocation": self.records_without_location,
            "recordsRemoved": self.records_removed,
            "errors": self.errors,
            "durationMs": self.duration_ms,
            "status": self.status,
            "remaining": self.remaining,
        }


@dataclass
class CleanupResult:
    removed: int = 0
    checked: int = 0
    probe_errors: int = 0
    duration_ms: int = 0
    status: str = SyncStatus.COMPLETED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "removed": self.removed,
            "checked": self.checked,
            "probeErrors": self.probe_errors,
            "durationMs": self.duration_ms,
            "status": self.status,
        }


@dataclass
class QueryParams:
    """Parsed and normalized query parameters."""
    kind: str                       # all / bbox / radius
    limit: int
    north: Optional[float] = None
    south: Optional[float] = None
    east: Optional[float] = None
    west: Optional[float] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_meters: Optional[float] = None
