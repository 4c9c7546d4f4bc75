import csv
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

PHOTO_HEADERS = [
    "id", "name", "mimeType", "latitude", "longitude", "altitude", "capturedAt",
    "sourceModifiedAt", "sizeBytes", "collectionId", "viewUrl", "thumbnailUrl",
    "downloadUrl", "checksum", "processedAt",
]

HISTORY_HEADERS = [
    "timestamp", "collectionId", "action", "status", "recordsSeen",
    "recordsWithLocation", "errorCount", "durationMs",
]

class ReportGenerator:
    """Writes query results and sync history as CSV for spreadsheets and GIS tools."""

    def write_photos_csv(self, photos: Iterable[Dict[str, Any]], output_csv: Path) -> int:
        return self._write(output_csv, PHOTO_HEADERS, photos)

    def write_history_csv(self, entries: Iterable[Dict[str, Any]], output_csv: Path) -> int:
        return self._write(output_csv, HISTORY_HEADERS, entries)

    def _write(self, output_csv: Path, headers: List[str], rows: Iterable[Dict[str, Any]]) -> int:
        output_csv.parent.mkdir(parents=True, exist_ok=True)
        count = 0
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=headers)
            writer.writeheader()
            for row in rows:
                writer.writerow({k: ("" if row.get(k) is None else row.get(k)) for k in headers})
                count += 1

        logging.info(f"Wrote {count} rows to {output_csv}")
        return count
