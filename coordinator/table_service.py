"""
Sorted key/value table service.

Provides the scan and batch-write primitives the replication components run
against, with a SQLite-backed implementation. Tables hold cells keyed by
(row, column family, column qualifier) and scanners return them in key
order, except for batch scanners which read ranges concurrently and return
results in no particular order.
"""

import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Protocol, Set

from common.logging_config import get_logger
from common.types import Entry, Key, Mutation, Range
from coordinator.database import get_db_connection, init_table_store
from coordinator.exceptions import MutationsRejectedError, TableNotFoundError, TableServiceError

logger = get_logger(__name__)

# Merges a value written to an existing cell: combiner(stored, new) -> value to store
Combiner = Callable[[bytes, bytes], bytes]


class Scanner(Protocol):
    """Iterable over the cells of a table, closed when done."""

    def set_range(self, scan_range: Range) -> None: ...

    def fetch_column_family(self, column_family: str) -> None: ...

    def __iter__(self) -> Iterator[Entry]: ...

    def close(self) -> None: ...


class BatchScanner(Protocol):
    """Scanner over several ranges that may read them in parallel."""

    def set_ranges(self, ranges: Iterable[Range]) -> None: ...

    def fetch_column_family(self, column_family: str) -> None: ...

    def __iter__(self) -> Iterator[Entry]: ...

    def close(self) -> None: ...


class BatchWriter(Protocol):
    """Buffers mutations and applies them on flush."""

    def add_mutation(self, mutation: Mutation) -> None: ...

    def flush(self) -> None: ...

    def close(self) -> None: ...


class TableService(Protocol):
    """Operations the replication components need from the table store."""

    def table_exists(self, table: str) -> bool: ...

    def create_table(self, table: str) -> bool: ...

    def create_scanner(self, table: str) -> Scanner: ...

    def create_batch_scanner(self, table: str, num_threads: int) -> BatchScanner: ...

    def create_batch_writer(self, table: str, combiner: Optional[Combiner] = None) -> BatchWriter: ...


def _build_query(table: str, scan_range: Range, families: Set[str]):
    clauses = ["table_name = ?"]
    params: List = [table]
    if scan_range.start_row is not None:
        clauses.append("row >= ?")
        params.append(scan_range.start_row)
    if scan_range.end_row is not None:
        clauses.append("row < ?")
        params.append(scan_range.end_row)
    if families:
        placeholders = ','.join('?' * len(families))
        clauses.append(f"column_family IN ({placeholders})")
        params.extend(sorted(families))

    query = f"""
        SELECT row, column_family, column_qualifier, value
        FROM entries
        WHERE {' AND '.join(clauses)}
        ORDER BY row, column_family, column_qualifier
    """
    return query, params


def _to_entry(row: sqlite3.Row) -> Entry:
    return Entry(
        key=Key(
            row=row["row"],
            column_family=row["column_family"],
            column_qualifier=row["column_qualifier"]
        ),
        value=bytes(row["value"])
    )


class SqliteScanner:
    """Sequential scanner over a single range."""

    def __init__(self, service: 'SqliteTableService', table: str):
        self.service = service
        self.table = table
        self.range = Range()
        self.families: Set[str] = set()
        self._conn_ctx = None
        self._closed = False

    def set_range(self, scan_range: Range) -> None:
        self.range = scan_range

    def fetch_column_family(self, column_family: str) -> None:
        self.families.add(column_family)

    def __iter__(self) -> Iterator[Entry]:
        if self._closed:
            raise TableServiceError(f"Scanner over {self.table} is closed")

        query, params = _build_query(self.table, self.range, self.families)
        self._conn_ctx = get_db_connection(self.service.db_path)
        try:
            conn = self._conn_ctx.__enter__()
            cursor = conn.execute(query, params)
            while True:
                rows = cursor.fetchmany(self.service.fetch_size)
                if not rows:
                    break
                for row in rows:
                    yield _to_entry(row)
        except sqlite3.Error as e:
            raise TableServiceError(f"Scan of {self.table} failed: {e}") from e
        finally:
            self._release()

    def _release(self) -> None:
        if self._conn_ctx is not None:
            ctx, self._conn_ctx = self._conn_ctx, None
            ctx.__exit__(None, None, None)

    def close(self) -> None:
        self._closed = True
        self._release()

    def __enter__(self) -> 'SqliteScanner':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class SqliteBatchScanner:
    """Scanner that reads each range on its own worker thread."""

    def __init__(self, service: 'SqliteTableService', table: str, num_threads: int):
        self.service = service
        self.table = table
        self.num_threads = max(1, num_threads)
        self.ranges: List[Range] = []
        self.families: Set[str] = set()
        self._executor: Optional[ThreadPoolExecutor] = None

    def set_ranges(self, ranges: Iterable[Range]) -> None:
        ranges = list(ranges)
        if not ranges:
            raise ValueError("A batch scanner needs at least one range")
        self.ranges = ranges

    def fetch_column_family(self, column_family: str) -> None:
        self.families.add(column_family)

    def _read_range(self, scan_range: Range) -> List[Entry]:
        query, params = _build_query(self.table, scan_range, self.families)
        try:
            with get_db_connection(self.service.db_path) as conn:
                return [_to_entry(row) for row in conn.execute(query, params).fetchall()]
        except sqlite3.Error as e:
            raise TableServiceError(f"Scan of {self.table} failed: {e}") from e

    def __iter__(self) -> Iterator[Entry]:
        if not self.ranges:
            raise ValueError("Ranges must be set before iterating a batch scanner")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.num_threads,
                thread_name_prefix=f"scan-{self.table}"
            )

        futures = [self._executor.submit(self._read_range, r) for r in self.ranges]
        for future in as_completed(futures):
            for entry in future.result():
                yield entry

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def __enter__(self) -> 'SqliteBatchScanner':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class SqliteBatchWriter:
    """
    Batch writer applying buffered mutations in one transaction per flush.

    With a combiner, a value written to an existing cell is merged with the
    stored value as combiner(stored, new) instead of replacing it.
    """

    def __init__(self, service: 'SqliteTableService', table: str, combiner: Optional[Combiner] = None):
        self.service = service
        self.table = table
        self.combiner = combiner
        self._buffer: List[Mutation] = []

    def add_mutation(self, mutation: Mutation) -> None:
        if mutation.size() == 0:
            raise ValueError(f"Mutation for row {mutation.row} has no updates")
        self._buffer.append(mutation)

    def _merge(self, cursor: sqlite3.Cursor, pending: List[Mutation]) -> List[tuple]:
        cells: Dict[tuple, bytes] = {}
        for mutation in pending:
            for family, qualifier, value in mutation.updates:
                cell = (mutation.row, family, qualifier)
                if self.combiner is not None:
                    stored = cells.get(cell)
                    if stored is None:
                        cursor.execute(
                            """
                            SELECT value FROM entries
                            WHERE table_name = ? AND row = ? AND column_family = ? AND column_qualifier = ?
                            """,
                            (self.table, mutation.row, family, qualifier)
                        )
                        row = cursor.fetchone()
                        stored = row["value"] if row else None
                    if stored is not None:
                        value = self.combiner(stored, value)
                cells[cell] = value
        return [(self.table, row, family, qualifier, value) for (row, family, qualifier), value in cells.items()]

    def flush(self) -> None:
        """
        Apply every buffered mutation.

        Raises:
            MutationsRejectedError: If the mutations could not be written;
                the buffer is cleared either way
        """
        if not self._buffer:
            return

        pending, self._buffer = self._buffer, []
        try:
            with get_db_connection(self.service.db_path) as conn:
                cursor = conn.cursor()
                # Reads of stored values must not interleave with other writers
                cursor.execute("BEGIN IMMEDIATE")
                cursor.execute("SELECT 1 FROM tables WHERE name = ?", (self.table,))
                if cursor.fetchone() is None:
                    raise MutationsRejectedError(
                        f"Table {self.table} no longer exists",
                        rejected=len(pending)
                    )
                cursor.executemany(
                    """
                    INSERT OR REPLACE INTO entries
                    (table_name, row, column_family, column_qualifier, value)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    self._merge(cursor, pending)
                )
                conn.commit()
        except sqlite3.Error as e:
            raise MutationsRejectedError(
                f"Failed to write {len(pending)} mutations to {self.table}: {e}",
                rejected=len(pending)
            ) from e

        logger.debug(f"Flushed {len(pending)} mutations to {self.table}")

    def close(self) -> None:
        self.flush()


class SqliteTableService:
    """
    Table service storing every table in a single SQLite database.
    """

    def __init__(self, db_path: str, fetch_size: int = 500):
        """
        Args:
            db_path: Path of the SQLite database file
            fetch_size: Rows fetched per round trip by sequential scanners
        """
        self.db_path = db_path
        self.fetch_size = fetch_size
        init_table_store(db_path)

    def table_exists(self, table: str) -> bool:
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute("SELECT 1 FROM tables WHERE name = ?", (table,))
                return cursor.fetchone() is not None
        except sqlite3.Error as e:
            raise TableServiceError(f"Could not check for table {table}: {e}") from e

    def create_table(self, table: str) -> bool:
        """
        Create a table if it does not exist.

        Returns:
            True if the table was created, False if it already existed
        """
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO tables (name, created_at) VALUES (?, ?)",
                    (table, time.time())
                )
                conn.commit()
                created = cursor.rowcount > 0
        except sqlite3.Error as e:
            raise TableServiceError(f"Could not create table {table}: {e}") from e

        if created:
            logger.info(f"Created table {table}")
        return created

    def delete_table(self, table: str) -> None:
        try:
            with get_db_connection(self.db_path) as conn:
                conn.execute("DELETE FROM entries WHERE table_name = ?", (table,))
                conn.execute("DELETE FROM tables WHERE name = ?", (table,))
                conn.commit()
        except sqlite3.Error as e:
            raise TableServiceError(f"Could not delete table {table}: {e}") from e
        logger.info(f"Deleted table {table}")

    def _require_table(self, table: str) -> None:
        if not self.table_exists(table):
            raise TableNotFoundError(table)

    def create_scanner(self, table: str) -> SqliteScanner:
        self._require_table(table)
        return SqliteScanner(self, table)

    def create_batch_scanner(self, table: str, num_threads: int) -> SqliteBatchScanner:
        self._require_table(table)
        return SqliteBatchScanner(self, table, num_threads)

    def create_batch_writer(self, table: str, combiner: Optional[Combiner] = None) -> SqliteBatchWriter:
        self._require_table(table)
        return SqliteBatchWriter(self, table, combiner)
