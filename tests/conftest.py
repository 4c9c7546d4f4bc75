import pytest
import sqlite3
from datetime import datetime, UTC
from typing import Dict, List, Optional, Set

from photo_mapper.config import MapperConfig
from photo_mapper.database.schema import init_schema
from photo_mapper.database.ops import DBOperations
from photo_mapper.exceptions import UpstreamUnavailable
from photo_mapper.models import SourceFile
from photo_mapper.scanning.source import SourceCollaborator

@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def db_ops(conn):
    """Returns a DBOperations instance attached to the in-memory DB."""
    return DBOperations(conn)

@pytest.fixture
def cfg(tmp_path):
    """A config with no throttling, suitable for fast sync tests."""
    return MapperConfig(
        db_path=tmp_path / "catalog.db",
        base_url="https://photos.example.com",
        throttle_seconds=0,
        batch_size=2,
    )


def make_item(item_id: str, lat=48.85, lng=2.35, modified: Optional[datetime] = None,
              checksum: str = "abc", collection_id: str = "c1") -> SourceFile:
    return SourceFile(
        id=item_id,
        name=item_id.rsplit("/", 1)[-1],
        mime_type="image/jpeg",
        modified_at=modified or datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
        collection_id=collection_id,
        size_bytes=1024,
        checksum=checksum,
        latitude=lat,
        longitude=lng,
    )


class FakeSource(SourceCollaborator):
    """In-memory source with switches for the failure modes the engine has to survive."""

    def __init__(self, items: Optional[List[SourceFile]] = None, page_size: int = 2):
        self.items: Dict[str, SourceFile] = {i.id: i for i in (items or [])}
        self.page_size = page_size
        self.list_error: Optional[Exception] = None
        self.fail_details: Set[str] = set()
        self.fail_probe: Set[str] = set()
        self.details_calls: List[str] = []

    def add(self, item: SourceFile):
        self.items[item.id] = item

    def remove(self, item_id: str):
        del self.items[item_id]

    def list_items(self, collection_id, modified_after=None):
        if self.list_error is not None:
            raise self.list_error
        matching = [
            i for i in self.items.values()
            if i.collection_id == collection_id
            and (modified_after is None or i.modified_at > modified_after)
        ]
        for start in range(0, len(matching), self.page_size):
            yield matching[start:start + self.page_size]

    def fetch_details(self, item):
        self.details_calls.append(item.id)
        if item.id in self.fail_details:
            raise OSError(f"cannot read {item.id}")
        return item

    def exists_by_id(self, item_id):
        if item_id in self.fail_probe:
            raise UpstreamUnavailable("probe timed out")
        return item_id in self.items


@pytest.fixture
def source():
    return FakeSource()
