"""
The interface the sync engine and garbage collector need from a bulk file store.
"""
from datetime import datetime
from typing import Iterator, List, Optional

from ..models import SourceFile


class SourceCollaborator:
    """
    A bulk file store holding collections of photos.

    Implementations raise UpstreamUnavailable when the store cannot be reached.
    """

    def list_items(self, collection_id: str, modified_after: Optional[datetime] = None) -> Iterator[List[SourceFile]]:
        """
        Yields pages of SourceFiles in the collection.
        With modified_after, only items modified or added strictly after it are listed.
        """
        raise NotImplementedError

    def fetch_checksum(self, item: SourceFile) -> SourceFile:
        """
        Fills in the content checksum used for change detection.
        Stores whose listing already carries one return the item unchanged.
        """
        return item

    def fetch_details(self, item: SourceFile) -> SourceFile:
        """
        Fills in coordinates and capture time. Only called for items that are
        new or modified, so it may be expensive.
        """
        return item

    def exists_by_id(self, item_id: str) -> bool:
        """Cheap existence probe; False only when the item is definitely gone."""
        raise NotImplementedError
