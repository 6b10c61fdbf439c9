"""Shared data type definitions (Key, Range, Mutation, ClosedFileMarker, etc.)."""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True, order=True)
class Key:
    """
    Sorted key of a single table cell.
    """
    row: str
    column_family: str = ""
    column_qualifier: str = ""


@dataclass(frozen=True)
class Entry:
    """
    A table cell as returned by scanners.
    """
    key: Key
    value: bytes


@dataclass(frozen=True)
class Range:
    """
    Row range with inclusive start and exclusive end.

    A None bound is unbounded, so Range() covers the whole table.
    """
    start_row: Optional[str] = None
    end_row: Optional[str] = None

    @classmethod
    def prefix(cls, row_prefix: str) -> 'Range':
        """Range covering every row starting with row_prefix."""
        if not row_prefix:
            return cls()
        end = row_prefix[:-1] + chr(ord(row_prefix[-1]) + 1)
        return cls(start_row=row_prefix, end_row=end)

    def contains(self, row: str) -> bool:
        if self.start_row is not None and row < self.start_row:
            return False
        if self.end_row is not None and row >= self.end_row:
            return False
        return True


@dataclass
class Mutation:
    """
    Set of column updates applied atomically to one row.
    """
    row: str
    updates: List[Tuple[str, str, bytes]] = field(default_factory=list)

    def put(self, column_family: str, column_qualifier: str, value: bytes) -> None:
        self.updates.append((column_family, column_qualifier, bytes(value)))

    def size(self) -> int:
        return len(self.updates)


@dataclass(frozen=True)
class ClosedFileMarker:
    """
    A file sealed by ingestion and ready for replication.

    Attributes:
        file: Full path of the file
        table_id: Id of the table the file belongs to
        status: Encoded status payload recorded with the marker
    """
    file: str
    table_id: str
    status: bytes
