"""Shared pytest fixtures for all tests."""

import pytest

from common.constants import METADATA_TABLE_NAME, REPLICATION_TABLE_NAME
from common.replication_schema import ReplicationSection, WorkSection
from common.types import Mutation
from coordinator.context import CoordinatorContext
from coordinator.replication_config import ReplicationConfig
from coordinator.table_service import SqliteTableService
from coordinator.work_queue import SqliteWorkQueue


QUEUE_ROOT = "/instances/test/replication/workqueue"


@pytest.fixture
def table_service(tmp_path):
    """
    Create a table service on a temporary SQLite database.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        SqliteTableService instance
    """
    return SqliteTableService(str(tmp_path / 'tables.db'))


@pytest.fixture
def work_queue(tmp_path):
    """
    Create a work queue on a temporary coordination store.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        SqliteWorkQueue instance
    """
    return SqliteWorkQueue(str(tmp_path / 'coordination.db'), QUEUE_ROOT)


@pytest.fixture
def replication_config():
    """Replication settings pinned for tests."""
    return ReplicationConfig(overrides={"max_work_queue": 10, "work_assigner_threads": 2})


@pytest.fixture
def context(table_service, work_queue, replication_config):
    """
    Coordinator context wired to the temporary stores.
    """
    return CoordinatorContext(
        table_service=table_service,
        work_queue_factory=lambda: work_queue,
        config=replication_config
    )


@pytest.fixture
def write_markers(table_service):
    """
    Return a helper writing closed-file markers into the metadata table.

    The helper takes a list of (file, table_id, encoded_status) tuples.
    """
    def _write(markers, table=METADATA_TABLE_NAME):
        table_service.create_table(table)
        writer = table_service.create_batch_writer(table)
        for file, table_id, value in markers:
            mutation = Mutation(ReplicationSection.make_row(file))
            mutation.put(ReplicationSection.COLF, table_id, value)
            writer.add_mutation(mutation)
        writer.close()

    return _write


@pytest.fixture
def write_work_entries(table_service):
    """
    Return a helper writing status records into the replication table.

    The helper takes a list of (file, target, encoded_status) tuples.
    """
    def _write(entries):
        table_service.create_table(REPLICATION_TABLE_NAME)
        writer = table_service.create_batch_writer(REPLICATION_TABLE_NAME)
        for file, target, value in entries:
            mutation = Mutation(file)
            mutation.put(WorkSection.NAME, target, value)
            writer.add_mutation(mutation)
        writer.close()

    return _write
