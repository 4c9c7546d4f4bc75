from enum import Enum
from typing import Optional

from ..models import PhotoRecord, SourceFile


class ChangeKind(str, Enum):
    NEW = "new"
    MODIFIED = "modified"
    CURRENT = "current"


def is_current(source_file: SourceFile, existing: Optional[PhotoRecord]) -> bool:
    """True iff the stored record matches the source on both modification time and checksum."""
    return (
        existing is not None
        and existing.source_modified_at == source_file.modified_at
        and existing.checksum == (source_file.checksum or "")
    )


def classify(source_file: SourceFile, existing: Optional[PhotoRecord]) -> ChangeKind:
    if existing is None:
        return ChangeKind.NEW
    if is_current(source_file, existing):
        return ChangeKind.CURRENT
    return ChangeKind.MODIFIED
