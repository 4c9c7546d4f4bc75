import os
import logging
from datetime import datetime, UTC
from pathlib import Path, PurePosixPath
from typing import Iterator, Mapping, Optional, List

from .. import config
from ..exceptions import UpstreamUnavailable
from ..models import SourceFile
from ..metadata.extract import MetadataExtractor
from .hasher import FileHasher
from .source import SourceCollaborator

def _changed_at(stat_result) -> datetime:
    """
    When the file last changed in this folder. Copies that preserve mtime
    (cp -p, rsync -a, camera imports) still get a fresh ctime.
    """
    return datetime.fromtimestamp(max(stat_result.st_mtime, stat_result.st_ctime), UTC)


class LocalFolderSource(SourceCollaborator):
    """
    Source collaborator backed by local folders, one folder per collection.

    Item ids are "<collection_id>/<path relative to the folder>" in POSIX form,
    so an id is stable for as long as the file stays where it is.
    """
    def __init__(self, collections: Mapping[str, Path], page_size: int = config.SOURCE_PAGE_SIZE):
        self.collections = {cid: Path(root) for cid, root in collections.items()}
        self.page_size = page_size
        self.hasher = FileHasher()
        self.metadata = MetadataExtractor()

    def list_items(self, collection_id: str, modified_after: Optional[datetime] = None) -> Iterator[List[SourceFile]]:
        root = self._root_for(collection_id)
        if not root.is_dir():
            raise UpstreamUnavailable(f"Collection folder not reachable: {root}")

        page: List[SourceFile] = []
        for path in self._iter_files(root):
            try:
                stat_result = path.stat()
            except OSError as e:
                logging.warning(f"Cannot stat {path}: {e}")
                continue

            if modified_after is not None and _changed_at(stat_result) <= modified_after:
                continue

            page.append(SourceFile(
                id=f"{collection_id}/{path.relative_to(root).as_posix()}",
                name=path.name,
                mime_type=config.EXT_TO_MIME.get(path.suffix.lower(), "application/octet-stream"),
                modified_at=datetime.fromtimestamp(stat_result.st_mtime, UTC),
                collection_id=collection_id,
                size_bytes=stat_result.st_size,
            ))
            if len(page) >= self.page_size:
                yield page
                page = []

        if page:
            yield page

    def exists_by_id(self, item_id: str) -> bool:
        path = self._path_for(item_id)
        # Missing root means an outage, not a deletion
        root = self._root_for(item_id.partition("/")[0])
        if not root.is_dir():
            raise UpstreamUnavailable(f"Collection folder not reachable: {root}")
        return path.is_file()

    def _root_for(self, collection_id: str) -> Path:
        try:
            return self.collections[collection_id]
        except KeyError:
            raise UpstreamUnavailable(f"Unknown collection: {collection_id}")

    def fetch_checksum(self, item: SourceFile) -> SourceFile:
        item.checksum = self.hasher.compute_checksum(self._path_for(item.id))
        return item

    def fetch_details(self, item: SourceFile) -> SourceFile:
        """
        Reads EXIF location and capture time for one listed file.
        Failures here surface to the sync engine as per-item errors.
        """
        meta = self.metadata.get_location_metadata(self._path_for(item.id))

        item.latitude = meta.latitude
        item.longitude = meta.longitude
        item.altitude = meta.altitude
        item.captured_at = meta.captured_at
        return item

    def _path_for(self, item_id: str) -> Path:
        collection_id, _, rel = item_id.partition("/")
        return self._root_for(collection_id) / PurePosixPath(rel)

    def _iter_files(self, root: Path) -> Iterator[Path]:
        """Depth-first walker using os.scandir for speed. Yields image files only."""
        stack = [root]
        while stack:
            current = stack.pop()

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except (OSError, PermissionError):
                logging.warning(f"Permission denied: {current}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            files = []
            for e in entries:
                if e.name.startswith("."):
                    continue
                if e.is_dir(follow_symlinks=False):
                    dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False) and Path(e.name).suffix.lower() in config.IMAGE_EXTS:
                    files.append(Path(e.path))

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

            for f in files:
                yield f
