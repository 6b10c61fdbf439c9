"""Replication status record and its binary encoding."""

import struct
from dataclasses import dataclass, replace
from typing import Optional


STATUS_FORMAT_VERSION = 1

# version, flags, begin, end, created_time
_STATUS_STRUCT = struct.Struct(">BBqqq")

_FLAG_CLOSED = 0x01
_FLAG_INFINITE_END = 0x02
_FLAG_HAS_CREATED_TIME = 0x04
_KNOWN_FLAGS = _FLAG_CLOSED | _FLAG_INFINITE_END | _FLAG_HAS_CREATED_TIME

MAX_OFFSET = 2 ** 63 - 1


class StatusDecodeError(ValueError):
    """
    Raised when a status payload cannot be decoded.
    """
    pass


@dataclass(frozen=True)
class Status:
    """
    Replication progress of one file towards one target.

    Attributes:
        begin: Bytes of the file already replicated to the target
        end: Bytes of the file known to exist (closed length once closed)
        infinite_end: True while the length of the file is unknown
        closed: True once the file is sealed and will not grow
        created_time: Creation time in epoch millis, None if not recorded
    """
    begin: int = 0
    end: int = 0
    infinite_end: bool = False
    closed: bool = False
    created_time: Optional[int] = None

    def to_bytes(self) -> bytes:
        """Serialize to the fixed-width binary record."""
        flags = 0
        if self.closed:
            flags |= _FLAG_CLOSED
        if self.infinite_end:
            flags |= _FLAG_INFINITE_END
        if self.created_time is not None:
            flags |= _FLAG_HAS_CREATED_TIME
        return _STATUS_STRUCT.pack(
            STATUS_FORMAT_VERSION,
            flags,
            self.begin,
            self.end,
            self.created_time if self.created_time is not None else 0
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Status':
        """
        Deserialize from the fixed-width binary record.

        Raises:
            StatusDecodeError: If the payload is truncated, from an unknown
                format version or carries out-of-range values
        """
        if data is None or len(data) != _STATUS_STRUCT.size:
            raise StatusDecodeError(
                f"Expected {_STATUS_STRUCT.size} status bytes, got {0 if data is None else len(data)}"
            )

        version, flags, begin, end, created_time = _STATUS_STRUCT.unpack(data)

        if version != STATUS_FORMAT_VERSION:
            raise StatusDecodeError(f"Unsupported status format version {version}")
        if flags & ~_KNOWN_FLAGS:
            raise StatusDecodeError(f"Unknown status flags 0x{flags:02x}")
        if begin < 0 or end < 0:
            raise StatusDecodeError(f"Negative offsets in status (begin={begin}, end={end})")

        return cls(
            begin=begin,
            end=end,
            infinite_end=bool(flags & _FLAG_INFINITE_END),
            closed=bool(flags & _FLAG_CLOSED),
            created_time=created_time if flags & _FLAG_HAS_CREATED_TIME else None
        )

    def describe(self) -> str:
        """Single-line rendering for log messages."""
        end = "inf" if self.infinite_end else str(self.end)
        return f"begin={self.begin}, end={end}, closed={self.closed}, created_time={self.created_time}"


def is_work_required(status: Status) -> bool:
    """
    Whether any bytes of the file still have to be replicated.

    A file of unknown length needs work until it is marked fully replicated.
    """
    if status.infinite_end:
        return status.begin != MAX_OFFSET
    return status.begin < status.end


def is_fully_replicated(status: Status) -> bool:
    """A closed file whose every byte reached the target."""
    return status.closed and not is_work_required(status)


def file_created(created_time: int) -> Status:
    """Status for a file that was just created and has no known length."""
    return Status(begin=0, end=0, infinite_end=True, closed=False, created_time=created_time)


def open_with_unknown_length() -> Status:
    return Status(begin=0, end=0, infinite_end=True, closed=False)


def file_closed(length: int = 0, created_time: Optional[int] = None) -> Status:
    """
    Status for a sealed file that has not been replicated yet.

    Args:
        length: Closed length of the file in bytes, 0 when unknown
        created_time: Optional creation time in epoch millis
    """
    if length > 0:
        return Status(begin=0, end=length, infinite_end=False, closed=True, created_time=created_time)
    return Status(begin=0, end=0, infinite_end=True, closed=True, created_time=created_time)


def replicated(status: Status, num_bytes: int) -> Status:
    """
    Advance the replicated offset of a status by num_bytes.

    For files of unknown length that are closed, replicating up to MAX_OFFSET
    marks the file as done.
    """
    if num_bytes < 0:
        raise ValueError(f"Cannot replicate a negative number of bytes: {num_bytes}")
    begin = min(status.begin + num_bytes, MAX_OFFSET)
    if not status.infinite_end:
        begin = min(begin, status.end)
    return replace(status, begin=begin)


def fully_replicated(status: Status) -> Status:
    """Mark every byte of the file as replicated."""
    if status.infinite_end:
        return replace(status, begin=MAX_OFFSET)
    return replace(status, begin=status.end)


def combine(existing: Status, update: Status) -> Status:
    """
    Merge a status update into the stored status.

    Offsets only move forward and the closed and infinite-end flags are never
    cleared, so replaying an older status cannot roll back progress. The
    first recorded creation time is kept.
    """
    return Status(
        begin=max(existing.begin, update.begin),
        end=max(existing.end, update.end),
        infinite_end=existing.infinite_end or update.infinite_end,
        closed=existing.closed or update.closed,
        created_time=existing.created_time if existing.created_time is not None else update.created_time
    )


def combine_status_values(existing: bytes, update: bytes) -> bytes:
    """
    Merge two encoded statuses, for use as a table combiner.

    An undecodable stored value is replaced by the update; an undecodable
    update leaves the stored value as it is.
    """
    try:
        stored = Status.from_bytes(existing)
    except StatusDecodeError:
        return update
    try:
        incoming = Status.from_bytes(update)
    except StatusDecodeError:
        return existing
    return combine(stored, incoming).to_bytes()
