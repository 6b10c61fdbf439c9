"""Access helpers for the replication table."""

import threading
from typing import Optional

from common.constants import REPLICATION_TABLE_NAME
from common.logging_config import get_logger
from common.replication_schema import WorkSection
from common.status import combine_status_values
from coordinator.exceptions import TableNotFoundError
from coordinator.table_service import BatchScanner, BatchWriter, TableService

logger = get_logger(__name__)


class ReplicationTable:
    """
    The table holding per-(file, target) replication status records.

    The try_* accessors return None while the table is not available yet, so
    callers can tell "come back later" apart from failures of the table
    service, which are raised.
    """

    NAME = REPLICATION_TABLE_NAME

    _create_lock = threading.Lock()

    @classmethod
    def exists(cls, service: TableService) -> bool:
        return service.table_exists(cls.NAME)

    @classmethod
    def create(cls, service: TableService) -> bool:
        """
        Ensure the replication table exists.

        Returns:
            True if this call created the table
        """
        with cls._create_lock:
            if service.table_exists(cls.NAME):
                return False
            created = service.create_table(cls.NAME)
            if created:
                logger.info(f"Created replication table {cls.NAME}")
            return created

    @classmethod
    def try_batch_scanner(cls, service: TableService, num_threads: int) -> Optional[BatchScanner]:
        """
        Open a batch scanner limited to the work section.

        Returns:
            Scanner, or None if the replication table does not exist yet
        """
        try:
            scanner = service.create_batch_scanner(cls.NAME, num_threads)
        except TableNotFoundError:
            return None
        scanner.fetch_column_family(WorkSection.NAME)
        return scanner

    @classmethod
    def try_batch_writer(cls, service: TableService) -> Optional[BatchWriter]:
        """
        Open a writer that merges status values into the stored ones, so
        progress written by workers is never rolled back by a replayed status.

        Returns:
            Batch writer, or None if the replication table does not exist
        """
        try:
            return service.create_batch_writer(cls.NAME, combiner=combine_status_values)
        except TableNotFoundError:
            return None
