import logging
import time
from datetime import datetime, UTC
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import quote

from tqdm import tqdm

from .. import config
from ..config import MapperConfig
from ..database.ops import DBOperations
from ..exceptions import CoordinateValidationError, PartialProcessingError, StoreUnavailable
from ..geo import validate_coordinates
from ..models import Coordinates, PhotoRecord, SourceFile, SyncAction, SyncLogEntry, SyncResult, SyncStatus
from ..scanning.source import SourceCollaborator
from .detector import classify, ChangeKind
from .lease import SyncLease


class SyncState(str, Enum):
    INIT = "init"
    LISTING = "listing"
    PROCESSING = "processing"
    LOGGING = "logging"
    DONE = "done"
    FAILED = "failed"


class SyncEngine:
    """
    Pulls a collection from the source collaborator into the metadata store.

    Each run holds the collection's lease for its whole duration, processes
    items one at a time, and ends with exactly one sync log entry.
    """
    def __init__(self,
                 db_ops: DBOperations,
                 source: SourceCollaborator,
                 cfg: MapperConfig,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.db = db_ops
        self.source = source
        self.cfg = cfg
        self.clock = clock
        self.sleep = sleep
        self.state = SyncState.INIT

    # --- Public Entry Points ---

    def full_sync(self, collection_id: str, force_reprocess: bool = False) -> SyncResult:
        """Lists every item in the collection. With force_reprocess, unchanged items are rewritten too."""
        return self._run(collection_id, SyncAction.FULL, since=None, force=force_reprocess)

    def incremental_sync(self, collection_id: str) -> SyncResult:
        """Processes items modified after the watermark; without one, lists everything."""
        since = self._watermark(collection_id)
        return self._run(collection_id, SyncAction.INCREMENTAL, since=since)

    def bounded_incremental_sync(self, collection_id: str, max_items: int, max_duration_ms: int) -> SyncResult:
        """
        Incremental sync that stops between items once max_items have needed
        work (new or modified) or max_duration_ms has elapsed. Items left over are reported
        in `remaining` and picked up by the next run.
        """
        since = self._watermark(collection_id)
        return self._run(collection_id, SyncAction.AUTOMATED, since=since,
                         max_items=max_items, max_duration_ms=max_duration_ms)

    # --- Run Orchestration ---

    def _watermark(self, collection_id: str) -> Optional[datetime]:
        since = self.db.last_sync_timestamp(collection_id, completed_only=self.cfg.watermark_requires_success)
        if since is None:
            logging.info(f"No previous sync for {collection_id}; listing the whole collection.")
        return since

    def _set_state(self, state: SyncState):
        logging.debug(f"Sync state: {self.state.value} -> {state.value}")
        self.state = state

    def _run(self,
             collection_id: str,
             action: SyncAction,
             since: Optional[datetime],
             force: bool = False,
             max_items: Optional[int] = None,
             max_duration_ms: Optional[int] = None) -> SyncResult:
        lease = SyncLease(self.db, f"sync:{collection_id}", self.cfg.lease_seconds)
        with lease:
            return self._execute(lease, collection_id, action, since, force, max_items, max_duration_ms)

    def _execute(self,
                 lease: SyncLease,
                 collection_id: str,
                 action: SyncAction,
                 since: Optional[datetime],
                 force: bool,
                 max_items: Optional[int],
                 max_duration_ms: Optional[int]) -> SyncResult:
        started_at = datetime.now(UTC)
        t0 = self.clock()
        result = SyncResult()
        self._set_state(SyncState.INIT)
        logging.info(f"Starting {action.value} for {collection_id}"
                     + (f" (modified after {since.isoformat()})" if since else ""))

        try:
            # --- Step 1: Listing ---
            self._set_state(SyncState.LISTING)
            try:
                items = self._list_all(collection_id, since)
            except StoreUnavailable:
                raise
            except Exception as e:
                logging.error(f"Listing failed for {collection_id}: {e}")
                self._set_state(SyncState.FAILED)
                result.status = SyncStatus.FAILED.value
                result.duration_ms = self._elapsed_ms(t0)
                self._write_log(started_at, collection_id, action, result)
                return result

            result.records_seen = len(items)
            if max_items is not None or max_duration_ms is not None:
                items = self._pending_first(collection_id, items)

            # --- Step 2: Per-file Processing ---
            self._set_state(SyncState.PROCESSING)
            attempted = 0
            budget_used = 0
            stopped_early = False
            for item in tqdm(items, desc=f"Syncing {collection_id}", disable=not self.cfg.show_progress):
                if max_items is not None and budget_used >= max_items:
                    stopped_early = True
                    break
                if max_duration_ms is not None and self._elapsed_ms(t0) >= max_duration_ms:
                    stopped_early = True
                    break

                attempted += 1
                # Current items are cheap; only real work counts against max_items
                if self._process_item(item, force, result):
                    budget_used += 1

                if attempted % self.cfg.batch_size == 0:
                    self.db.commit()
                    if not lease.renew():
                        stopped_early = True
                        break
                    # Upstream rate limits
                    if self.cfg.throttle_seconds > 0:
                        self.sleep(self.cfg.throttle_seconds)

            self.db.commit()
            result.remaining = len(items) - attempted
            if stopped_early:
                logging.info(f"Stopped after {attempted} items; {result.remaining} left for the next run.")

            if result.errors > 0 or stopped_early:
                result.status = SyncStatus.PARTIAL.value
            else:
                result.status = SyncStatus.COMPLETED.value

            # --- Step 3: Logging ---
            self._set_state(SyncState.LOGGING)
            result.duration_ms = self._elapsed_ms(t0)
            self._write_log(started_at, collection_id, action, result)
            self._set_state(SyncState.DONE)

        except StoreUnavailable as e:
            self._set_state(SyncState.FAILED)
            logging.error(f"Store unavailable during {action.value} of {collection_id}: {e}")
            result.status = SyncStatus.FAILED.value
            result.duration_ms = self._elapsed_ms(t0)
            try:
                self._write_log(started_at, collection_id, action, result)
            except StoreUnavailable:
                logging.error("Could not record the failed run in the sync log.")
            raise

        logging.info(
            f"{action.value} of {collection_id} {result.status}: seen={result.records_seen} "
            f"written={result.records_written} unchanged={result.records_unchanged} "
            f"no_location={result.records_without_location} removed={result.records_removed} errors={result.errors} "
            f"in {result.duration_ms} ms"
        )
        return result

    def _list_all(self, collection_id: str, since: Optional[datetime]) -> List[SourceFile]:
        items: List[SourceFile] = []
        for page in self.source.list_items(collection_id, modified_after=since):
            items.extend(page)
        logging.debug(f"Listed {len(items)} items in {collection_id}")
        return items

    def _pending_first(self, collection_id: str, items: List[SourceFile]) -> List[SourceFile]:
        """
        Moves items the store has never seen, or saw at another modification
        time, ahead of the rest so a budget-limited run reaches them first.
        """
        known = self.db.known_versions(collection_id)
        pending = [i for i in items if known.get(i.id) != i.modified_at]
        settled = [i for i in items if known.get(i.id) == i.modified_at]
        logging.debug(f"{len(pending)} of {len(items)} listed items look new or modified")
        return pending + settled

    def _process_item(self, item: SourceFile, force: bool, result: SyncResult) -> bool:
        """
        Handles one source file. Anything other than a store outage is counted
        as a per-item error and the run moves on.
        Returns False only when the item was already current.
        """
        try:
            existing = self.db.get_photo(item.id)
            item = self.source.fetch_checksum(item)

            if existing is None and not force:
                seen = self.db.get_unlocated(item.id)
                if seen == (item.modified_at, item.checksum or ""):
                    result.records_without_location += 1
                    return False

            change = classify(item, existing)
            if change == ChangeKind.CURRENT and not force:
                result.records_unchanged += 1
                result.records_with_location += 1
                return False

            item = self.source.fetch_details(item)
            try:
                coords = validate_coordinates(item.latitude, item.longitude, item.altitude)
            except CoordinateValidationError as e:
                result.records_without_location += 1
                logging.debug(f"No usable location for {item.id}: {e.reason}")
                # A stale located version must not outlive the file's new content
                if existing is not None and self.db.delete_photo(item.id):
                    result.records_removed += 1
                self.db.mark_unlocated(item)
                return True

            self.db.upsert_photo(self._build_record(item, coords))
            self.db.forget_unlocated(item.id)
            result.records_written += 1
            result.records_with_location += 1
            logging.debug(f"Stored {item.id} ({change.value})")
            return True

        except StoreUnavailable:
            raise
        except Exception as e:
            err = PartialProcessingError(item.id, e)
            logging.error(str(err))
            result.errors += 1
            return True

    def _build_record(self, item: SourceFile, coords: Coordinates) -> PhotoRecord:
        quoted_id = quote(item.id, safe="")
        base = self.cfg.base_url.rstrip("/")
        return PhotoRecord(
            id=item.id,
            name=item.name,
            mime_type=item.mime_type,
            latitude=coords.latitude,
            longitude=coords.longitude,
            altitude=coords.altitude,
            captured_at=item.captured_at,
            source_modified_at=item.modified_at,
            size_bytes=item.size_bytes,
            thumbnail_url=config.THUMBNAIL_URL_TEMPLATE.format(base_url=base, id=quoted_id, size=config.THUMBNAIL_SIZE),
            view_url=config.VIEW_URL_TEMPLATE.format(base_url=base, id=quoted_id),
            download_url=config.DOWNLOAD_URL_TEMPLATE.format(base_url=base, id=quoted_id),
            collection_id=item.collection_id,
            checksum=item.checksum or "",
        )

    def _write_log(self, started_at: datetime, collection_id: str, action: SyncAction, result: SyncResult):
        self.db.append_log(SyncLogEntry(
            timestamp=started_at,
            collection_id=collection_id,
            action=action.value,
            records_seen=result.records_seen,
            records_with_location=result.records_with_location,
            error_count=result.errors,
            duration_ms=result.duration_ms,
            status=result.status,
        ))

    def _elapsed_ms(self, t0: float) -> int:
        return int((self.clock() - t0) * 1000)
