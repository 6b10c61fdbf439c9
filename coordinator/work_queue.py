"""
Distributed work queue kept in the coordination store.

Each queued item is a node named by its work key under the queue root, whose
data is the full path of the file to replicate. The coordinator adds nodes;
workers delete them once the work is done, so the presence of a node means
the work is still outstanding.
"""

import sqlite3
import time
from typing import List, Optional, Protocol

from common.logging_config import get_logger
from coordinator.database import get_db_connection, init_coordination_store
from coordinator.exceptions import WorkQueueError

logger = get_logger(__name__)


class DistributedWorkQueue(Protocol):
    """Operations the work assigner needs from the coordination store."""

    def get_work_queued(self) -> List[str]:
        """Names of all nodes currently in the queue."""

    def add_work(self, work_key: str, data: str) -> None:
        """Create or overwrite the node for work_key."""

    def get_work(self, work_key: str) -> Optional[str]:
        """Data of the node for work_key, None once it is gone."""


def validate_node_name(work_key: str) -> None:
    if not work_key or '/' in work_key or work_key in ('.', '..'):
        raise WorkQueueError(f"Invalid work queue node name: {work_key!r}")


class SqliteWorkQueue:
    """
    Work queue backed by the SQLite coordination store.

    Writes for the same key are last-write-wins; no ordering between
    different keys is implied.
    """

    def __init__(self, db_path: str, root: str):
        """
        Args:
            db_path: Path of the coordination store database
            root: Path under which this queue's nodes live
        """
        self.db_path = db_path
        self.root = root.rstrip('/')
        try:
            init_coordination_store(db_path)
        except sqlite3.Error as e:
            raise WorkQueueError(f"Could not open coordination store {db_path}: {e}") from e
        logger.info(f"Work queue initialized [root={self.root}]")

    def get_work_queued(self) -> List[str]:
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute(
                    "SELECT work_key FROM work_queue WHERE root = ? ORDER BY created_at, work_key",
                    (self.root,)
                )
                return [row["work_key"] for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise WorkQueueError(f"Could not list queued work under {self.root}: {e}") from e

    def add_work(self, work_key: str, data: str) -> None:
        validate_node_name(work_key)
        try:
            with get_db_connection(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO work_queue (root, work_key, data, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (self.root, work_key, data, time.time())
                )
                conn.commit()
        except sqlite3.Error as e:
            raise WorkQueueError(f"Could not add work {work_key}: {e}") from e

        logger.debug(f"Added work node {self.root}/{work_key}")

    def get_work(self, work_key: str) -> Optional[str]:
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute(
                    "SELECT data FROM work_queue WHERE root = ? AND work_key = ?",
                    (self.root, work_key)
                )
                row = cursor.fetchone()
                return row["data"] if row else None
        except sqlite3.Error as e:
            raise WorkQueueError(f"Could not read work {work_key}: {e}") from e

    def remove_work(self, work_key: str) -> bool:
        """
        Delete the node for work_key, signalling the work is finished.

        Returns:
            True if a node was deleted
        """
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute(
                    "DELETE FROM work_queue WHERE root = ? AND work_key = ?",
                    (self.root, work_key)
                )
                conn.commit()
                removed = cursor.rowcount > 0
        except sqlite3.Error as e:
            raise WorkQueueError(f"Could not remove work {work_key}: {e}") from e

        if removed:
            logger.info(f"Removed finished work node {self.root}/{work_key}")
        return removed
