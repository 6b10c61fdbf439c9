"""Key layout of the closed-file markers and the replication work section."""

from pathlib import PurePosixPath

from common.constants import (
    REPLICATION_SECTION_COLF,
    REPLICATION_SECTION_ROW_PREFIX,
    WORK_KEY_SEPARATOR,
    WORK_SECTION_COLF,
)
from common.types import ClosedFileMarker, Entry, Key, Range


class ReplicationSection:
    """
    Closed-file markers written by ingestion into the metadata table.

    Row: ~repl<file path>, column family: stat, qualifier: source table id.
    """

    COLF = REPLICATION_SECTION_COLF

    @staticmethod
    def get_row_prefix() -> str:
        return REPLICATION_SECTION_ROW_PREFIX

    @staticmethod
    def get_range() -> Range:
        return Range.prefix(REPLICATION_SECTION_ROW_PREFIX)

    @staticmethod
    def make_row(file: str) -> str:
        return REPLICATION_SECTION_ROW_PREFIX + file

    @staticmethod
    def get_file(key: Key) -> str:
        """
        Extract the file path from a marker key.

        Raises:
            ValueError: If the row is not a marker row
        """
        if not key.row.startswith(REPLICATION_SECTION_ROW_PREFIX):
            raise ValueError(f"Row is not in the replication section: {key.row}")
        return key.row[len(REPLICATION_SECTION_ROW_PREFIX):]

    @staticmethod
    def get_table_id(key: Key) -> str:
        return key.column_qualifier

    @classmethod
    def to_marker(cls, entry: Entry) -> ClosedFileMarker:
        return ClosedFileMarker(
            file=cls.get_file(entry.key),
            table_id=cls.get_table_id(entry.key),
            status=entry.value
        )


class WorkSection:
    """
    Per-(file, target) status records in the replication table.

    Row: file path, column family: work, qualifier: target table id.
    """

    NAME = WORK_SECTION_COLF

    @staticmethod
    def get_file(key: Key) -> str:
        return key.row

    @staticmethod
    def get_target(key: Key) -> str:
        return key.column_qualifier


def make_work_key(file: str, qualifier: str) -> str:
    """
    Build the queue node name for replicating file to the target in qualifier.

    Node names cannot hold path separators, so only the base name of the file
    is used; the qualifier keeps keys for different targets apart.
    """
    filename = PurePosixPath(file).name
    if not filename:
        raise ValueError(f"Cannot derive a file name from {file!r}")
    return f"{filename}{WORK_KEY_SEPARATOR}{qualifier}"


def split_work_key(work_key: str) -> tuple:
    """Split a work key into (filename, qualifier)."""
    filename, sep, qualifier = work_key.rpartition(WORK_KEY_SEPARATOR)
    if not sep:
        raise ValueError(f"Malformed work key: {work_key}")
    return filename, qualifier
