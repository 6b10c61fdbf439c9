"""Shared state handed to the replication components."""

from dataclasses import dataclass, field
from typing import Callable

from common.constants import METADATA_TABLE_NAME
from coordinator.replication_config import ReplicationConfig
from coordinator.table_service import TableService
from coordinator.work_queue import DistributedWorkQueue


def _always_coordinator() -> bool:
    return True


@dataclass
class CoordinatorContext:
    """
    Everything a replication component needs, built once at startup.

    Attributes:
        table_service: Store holding the metadata and replication tables
        work_queue_factory: Builds the handle on the distributed work queue
        config: Hot-reloadable replication settings
        still_coordinator: Answers whether this process may keep assigning
            work; owned by leader election
        source_table: Table the closed-file markers are read from
    """
    table_service: TableService
    work_queue_factory: Callable[[], DistributedWorkQueue]
    config: ReplicationConfig = field(default_factory=ReplicationConfig)
    still_coordinator: Callable[[], bool] = _always_coordinator
    source_table: str = METADATA_TABLE_NAME
