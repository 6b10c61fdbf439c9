"""
Projection of closed-file markers into replication status records.

Reads the markers ingestion leaves in the metadata table and writes one
status record per (file, target table) into the work section of the
replication table. Re-projecting a marker rewrites the same cell, so passes
can be repeated safely.
"""

from typing import Optional

from common.logging_config import get_logger
from common.replication_schema import ReplicationSection, WorkSection
from common.status import Status, StatusDecodeError
from common.types import ClosedFileMarker, Mutation
from coordinator.context import CoordinatorContext
from coordinator.exceptions import MutationsRejectedError, TableNotFoundError, TableServiceError
from coordinator.replication_table import ReplicationTable
from coordinator.table_service import BatchWriter

logger = get_logger(__name__)


class StatusProjector:
    """
    Reads closed-file markers and creates status records in the replication table.
    """

    def __init__(self, context: CoordinatorContext):
        self.context = context
        self.source_table = context.source_table
        self.writer: Optional[BatchWriter] = None

    def set_source_table(self, table: str) -> None:
        """Read markers from a table other than the metadata table."""
        self.source_table = table

    def run(self) -> int:
        """
        Make one pass over the closed-file markers.

        Returns:
            Number of status records written in this pass
        """
        service = self.context.table_service
        try:
            scanner = service.create_scanner(self.source_table)
        except TableNotFoundError:
            logger.warning(f"Source table {self.source_table} does not exist yet, skipping status projection")
            return 0
        except TableServiceError as e:
            logger.warning(f"Could not open a scanner on {self.source_table}, skipping status projection: {e}")
            return 0

        scanner.fetch_column_family(ReplicationSection.COLF)
        scanner.set_range(ReplicationSection.get_range())

        written = 0
        try:
            for entry in scanner:
                if self.writer is None and not self._open_writer():
                    return written

                try:
                    marker = ReplicationSection.to_marker(entry)
                except ValueError as e:
                    logger.warning(f"Skipping malformed closed-file marker: {e}")
                    continue

                try:
                    status = Status.from_bytes(marker.status)
                except StatusDecodeError as e:
                    logger.warning(
                        f"Could not decode status for {marker.file} on table {marker.table_id}, skipping: {e}"
                    )
                    continue

                logger.debug(
                    f"Creating replication status record for {marker.file} on table {marker.table_id} "
                    f"with {status.describe()}"
                )

                if self.add_status_record(marker):
                    written += 1
        except TableServiceError as e:
            logger.warning(f"Status projection pass over {self.source_table} aborted, will retry: {e}")
            return written
        finally:
            scanner.close()

        if written:
            logger.info(f"Status projection pass wrote {written} records")
        return written

    def _open_writer(self) -> bool:
        """
        Make sure the replication table exists and open a writer on it.

        Returns:
            False if the table disappeared before the writer could be opened
        """
        ReplicationTable.create(self.context.table_service)
        writer = ReplicationTable.try_batch_writer(self.context.table_service)
        if writer is None:
            logger.warning("Replication table did exist, but does not anymore")
            return False
        self.set_batch_writer(writer)
        return True

    def set_batch_writer(self, writer: BatchWriter) -> None:
        self.writer = writer

    def add_status_record(self, marker: ClosedFileMarker) -> bool:
        """
        Write the status record for a marker.

        Returns:
            True if the record was written; rejected writes are retried by a
            later pass since the marker stays in place
        """
        mutation = Mutation(marker.file)
        mutation.put(WorkSection.NAME, marker.table_id, marker.status)

        try:
            self.writer.add_mutation(mutation)
            self.writer.flush()
        except MutationsRejectedError as e:
            logger.warning(f"Failed to write status record for {marker.file}, will retry: {e}")
            # the writer may be bound to a table that was dropped
            self.writer = None
            return False
        except TableServiceError as e:
            logger.warning(f"Table service error writing status record for {marker.file}, will retry: {e}")
            return False
        return True
