import hmac
import logging
from typing import Any, Dict, List, Mapping, Optional

from .config import MapperConfig
from .database.db import DBManager
from .database.ops import DBOperations
from .exceptions import AuthenticationError, SyncInProgress
from .models import SyncResult
from .query.cache import ResponseCache
from .query.engine import QueryEngine, parse_query, cache_key, KIND_ALL
from .scanning.filesystem import LocalFolderSource
from .scanning.source import SourceCollaborator
from .sync.cleanup import GarbageCollector
from .sync.engine import SyncEngine

class PhotoMapperApp:
    """
    The operations exposed to the request handler.

    Owns the store connection, the response cache and the source collaborator;
    the sync engine, query engine and garbage collector are built on top.
    """
    def __init__(self, cfg: MapperConfig, source: Optional[SourceCollaborator] = None):
        self.cfg = cfg
        self.db_manager = DBManager(cfg.db_path)
        self.source = source if source is not None else LocalFolderSource(cfg.collections, cfg.page_size)
        self.cache = ResponseCache(cfg.cache_max_entry_bytes)
        self._db_ops: Optional[DBOperations] = None

    @property
    def db_ops(self) -> DBOperations:
        if self._db_ops is None:
            self._db_ops = DBOperations(self.db_manager.connect())
        return self._db_ops

    def close(self):
        self.db_manager.close()
        self._db_ops = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # --- Boundary ---

    def check_token(self, token: Optional[str]):
        """
        Compares a caller's token against the shared static token.
        A deployment without a configured token accepts everyone.
        """
        expected = self.cfg.api_token
        if not expected:
            return
        if token is None or not hmac.compare_digest(str(token).encode(), expected.encode()):
            raise AuthenticationError("Invalid or missing access token")

    # --- Sync ---

    def _sync_engine(self) -> SyncEngine:
        return SyncEngine(self.db_ops, self.source, self.cfg)

    def run_full_sync(self, collection_id: str, force_reprocess: bool = False) -> SyncResult:
        result = self._sync_engine().full_sync(collection_id, force_reprocess=force_reprocess)
        self._after_sync(result)
        return result

    def run_incremental_sync(self, collection_id: str) -> SyncResult:
        result = self._sync_engine().incremental_sync(collection_id)
        self._after_sync(result)
        return result

    def run_bounded_incremental_sync(self, collection_id: str, max_items: int, max_duration_ms: int) -> SyncResult:
        result = self._sync_engine().bounded_incremental_sync(collection_id, max_items, max_duration_ms)
        self._after_sync(result)
        return result

    def run_automated_sync(self, collection_id: str) -> Optional[SyncResult]:
        """
        Entry point for a timer: a bounded run with the configured budgets.
        Returns None when a previous run still holds the lease and this cycle is skipped.
        """
        try:
            return self.run_bounded_incremental_sync(
                collection_id, self.cfg.automated_max_items, self.cfg.automated_max_duration_ms
            )
        except SyncInProgress as e:
            logging.info(f"Skipping automated sync of {collection_id}: {e}")
            return None

    def run_cleanup(self, collection_id: str) -> Dict[str, Any]:
        result = GarbageCollector(self.db_ops, self.source, self.cfg).cleanup(collection_id)
        if result.removed:
            self.cache.flush()
        return result.to_dict()

    def _after_sync(self, result: SyncResult):
        if result.records_written or result.records_removed:
            self.cache.flush()

    # --- Queries ---

    def query(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Runs a query through the response cache. Returns {count, photos, cached}."""
        qp = parse_query(params, self.cfg.max_results)
        ttl = self.cfg.cache_ttl_all if qp.kind == KIND_ALL else self.cfg.cache_ttl_bounded
        engine = QueryEngine(self.db_ops, self.cfg.max_results)

        photos, cached = self.cache.get_or_compute(
            cache_key(qp, self.cfg.cache_precision),
            ttl,
            lambda: [rec.to_dict() for rec in engine.execute(qp)],
        )
        return {"count": len(photos), "photos": photos, "cached": cached}

    def get_photo(self, photo_id: str) -> Optional[Dict[str, Any]]:
        rec = self.db_ops.get_photo(photo_id)
        return rec.to_dict() if rec else None

    def get_stats(self) -> Dict[str, Any]:
        collections = self.db_ops.list_collections()
        last_sync = {}
        for cid in sorted(set(collections) | set(self.cfg.collections)):
            ts = self.db_ops.last_sync_timestamp(cid)
            last_sync[cid] = ts.isoformat() if ts else None

        return {
            "totalRecords": self.db_ops.count_photos(),
            "recordsWithValidCoords": self.db_ops.count_photos_with_valid_coords(),
            "collections": collections,
            "lastSync": last_sync,
            "cacheEntries": len(self.cache),
        }

    def get_sync_history(self, limit: int = 20, collection_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.db_ops.recent_logs(limit, collection_id)]

    def flush_cache(self) -> int:
        return self.cache.flush()
