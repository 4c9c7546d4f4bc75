import logging
import time
from datetime import datetime, UTC
from typing import Callable

from tqdm import tqdm

from ..config import MapperConfig
from ..database.ops import DBOperations
from ..exceptions import StoreUnavailable
from ..models import CleanupResult, SyncAction, SyncLogEntry, SyncStatus
from ..scanning.source import SourceCollaborator

class GarbageCollector:
    """
    Removes store rows whose source file no longer exists.

    By default a row is deleted only when the source answers "not found".
    A probe that raises leaves the row in place unless cfg.delete_on_probe_error
    is set.
    """
    def __init__(self,
                 db_ops: DBOperations,
                 source: SourceCollaborator,
                 cfg: MapperConfig,
                 clock: Callable[[], float] = time.monotonic):
        self.db = db_ops
        self.source = source
        self.cfg = cfg
        self.clock = clock

    def cleanup(self, collection_id: str) -> CleanupResult:
        started_at = datetime.now(UTC)
        t0 = self.clock()
        result = CleanupResult()

        try:
            # Materialize first; rows are deleted while we walk them
            photo_ids = list(self.db.iter_collection_photo_ids(collection_id))
            logging.info(f"Cleanup: checking {len(photo_ids)} records in {collection_id}")

            for photo_id in tqdm(photo_ids, desc=f"Cleaning {collection_id}", disable=not self.cfg.show_progress):
                result.checked += 1
                try:
                    exists = self.source.exists_by_id(photo_id)
                except Exception as e:
                    result.probe_errors += 1
                    if not self.cfg.delete_on_probe_error:
                        logging.warning(f"Existence probe failed for {photo_id}; keeping it: {e}")
                        continue
                    logging.warning(f"Existence probe failed for {photo_id}; deleting it: {e}")
                    exists = False

                if not exists and self.db.delete_photo(photo_id):
                    result.removed += 1
                    logging.debug(f"Removed orphaned record {photo_id}")

            self.db.commit()

            result.status = SyncStatus.PARTIAL.value if result.probe_errors else SyncStatus.COMPLETED.value
            result.duration_ms = int((self.clock() - t0) * 1000)
            self._write_log(started_at, collection_id, result)

        except StoreUnavailable as e:
            logging.error(f"Store unavailable during cleanup of {collection_id}: {e}")
            result.status = SyncStatus.FAILED.value
            result.duration_ms = int((self.clock() - t0) * 1000)
            try:
                self._write_log(started_at, collection_id, result)
            except StoreUnavailable:
                logging.error("Could not record the failed cleanup in the sync log.")
            raise

        logging.info(f"Cleanup of {collection_id} removed {result.removed} of {result.checked} records "
                     f"({result.probe_errors} probe errors).")
        return result

    def _write_log(self, started_at: datetime, collection_id: str, result: CleanupResult):
        self.db.append_log(SyncLogEntry(
            timestamp=started_at,
            collection_id=collection_id,
            action=SyncAction.CLEANUP.value,
            records_seen=result.checked,
            records_with_location=result.checked - result.removed,
            error_count=result.probe_errors,
            duration_ms=result.duration_ms,
            status=result.status,
        ))
