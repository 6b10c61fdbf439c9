"""Database schema and connection management for SQLite."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from coordinator.config import SQLITE_TIMEOUT_SECONDS


def _ensure_parent(db_path: str) -> None:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def init_table_store(db_path: str) -> None:
    """
    Initialize the table store and create its tables if they don't exist.
    """
    _ensure_parent(db_path)

    with get_db_connection(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tables (
                name TEXT PRIMARY KEY,
                created_at REAL NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                table_name TEXT NOT NULL,
                row TEXT NOT NULL,
                column_family TEXT NOT NULL,
                column_qualifier TEXT NOT NULL,
                value BLOB NOT NULL,
                PRIMARY KEY(table_name, row, column_family, column_qualifier),
                FOREIGN KEY(table_name) REFERENCES tables(name) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_entries_family ON entries(table_name, column_family)
        """)

        conn.commit()


def init_coordination_store(db_path: str) -> None:
    """
    Initialize the coordination store holding the distributed work queue.
    """
    _ensure_parent(db_path)

    with get_db_connection(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS work_queue (
                root TEXT NOT NULL,
                work_key TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at REAL NOT NULL,
                PRIMARY KEY(root, work_key)
            )
        """)

        conn.commit()


@contextmanager
def get_db_connection(db_path: str) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database connections.
    """
    conn = sqlite3.connect(db_path, timeout=SQLITE_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()
