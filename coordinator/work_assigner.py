"""
Assignment of replication work to the distributed work queue.

Reads status records from the work section of the replication table and
queues work for every file that still has data to replicate and is not
already queued. The queue does not consider where the data lives relative to
the worker that picks the work up.
"""

import time
from typing import Optional, Set

from common.logging_config import get_logger
from common.replication_schema import WorkSection, make_work_key
from common.status import Status, StatusDecodeError, is_work_required
from common.types import Range
from coordinator.context import CoordinatorContext
from coordinator.exceptions import QueuedWorkStateError, TableServiceError, WorkQueueError
from coordinator.replication_table import ReplicationTable
from coordinator.work_queue import DistributedWorkQueue

logger = get_logger(__name__)


class WorkAssigner:
    """
    Queues replication work and keeps track of the work it has queued.

    Only one process should run the assigner at a time; the queued work set is
    owned by the thread running the cycles and is not locked.
    """

    def __init__(self, context: CoordinatorContext, cycle_interval: float = 0):
        """
        Args:
            context: Coordinator context with table service, queue factory and config
            cycle_interval: Seconds to sleep between cycles in run()
        """
        self.context = context
        self.cycle_interval = cycle_interval

        self.work_queue: Optional[DistributedWorkQueue] = None
        self.queued_work: Optional[Set[str]] = None
        self.max_queue_size: int = 0

    def initialize_work_queue(self) -> None:
        self.work_queue = self.context.work_queue_factory()

    def initialize_queued_work(self) -> None:
        """
        Seed the queued work set with the work already in the queue.

        Raises:
            QueuedWorkStateError: If the set was already initialized
            WorkQueueError: If the queue contents could not be read
        """
        if self.queued_work is not None:
            raise QueuedWorkStateError("Queued work was already initialized")

        existing = self.work_queue.get_work_queued()
        self.queued_work = set(existing)
        logger.info(f"Recovered {len(self.queued_work)} queued work entries")

    def initialize(self) -> None:
        """Build the queue handle and recover queued work, once."""
        if self.work_queue is None:
            self.initialize_work_queue()
        if self.queued_work is None:
            self.initialize_queued_work()

    def run(self) -> None:
        """
        Run cycles for as long as this process is the coordinator.

        Failures of a cycle are logged and the cycle is retried.

        Raises:
            QueuedWorkStateError: If the queued work state is inconsistent
        """
        while self.context.still_coordinator():
            try:
                self.run_cycle()
            except QueuedWorkStateError:
                logger.critical("Queued work state is inconsistent, stopping work assignment", exc_info=True)
                raise
            except Exception as e:
                logger.error(f"Error in work assignment cycle, will retry: {e}", exc_info=True)

            if self.cycle_interval:
                time.sleep(self.cycle_interval)
        logger.info("No longer the coordinator, stopping work assignment")

    def run_cycle(self) -> None:
        """Queue new work, then forget about work that has finished."""
        # Read every cycle so the ceiling can be changed without a restart
        self.max_queue_size = self.context.config.get_max_work_queue()

        self.initialize()

        self.create_work()

        self.cleanup_finished_work()

    def create_work(self) -> int:
        """
        Scan the work section and queue work for entries that need it.

        Returns:
            Number of work items queued by this pass
        """
        try:
            scanner = ReplicationTable.try_batch_scanner(
                self.context.table_service,
                self.context.config.get_work_assigner_threads()
            )
        except TableServiceError as e:
            logger.warning(f"Could not open a scanner on the replication table: {e}")
            return 0

        if scanner is None:
            logger.warning("Could not find replication table")
            return 0

        queued = 0
        try:
            scanner.set_ranges([Range()])
            for entry in scanner:
                # Stop handing out work while the workers are not keeping up
                if len(self.queued_work) > self.max_queue_size:
                    logger.warning(
                        f"Queued replication work exceeds configured maximum "
                        f"[queued={len(self.queued_work)}, max={self.max_queue_size}], "
                        f"waiting for work to complete"
                    )
                    return queued

                file = WorkSection.get_file(entry.key)
                try:
                    status = Status.from_bytes(entry.value)
                except StatusDecodeError as e:
                    logger.warning(f"Could not deserialize status from work entry for {file}: {e}")
                    continue

                if not is_work_required(status):
                    continue

                try:
                    key = make_work_key(file, WorkSection.get_target(entry.key))
                except ValueError as e:
                    logger.warning(f"Could not build a work key for {file}: {e}")
                    continue

                if key not in self.queued_work and self.queue_work(key, file):
                    queued += 1
        except TableServiceError as e:
            logger.warning(f"Scan of the replication table failed, will retry [queued={queued}]: {e}")
        finally:
            scanner.close()

        if queued:
            logger.info(f"Queued {queued} replication work entries [in_flight={len(self.queued_work)}]")
        return queued

    def queue_work(self, key: str, path: str) -> bool:
        """
        Put work for a file on the queue and remember it.

        Args:
            key: Work key naming the queue node
            path: Full path of the file to replicate

        Returns:
            True if the work was queued
        """
        try:
            self.work_queue.add_work(key, path)
        except WorkQueueError as e:
            logger.warning(f"Could not queue work for {path} [key={key}]: {e}")
            return False

        self.queued_work.add(key)
        return True

    def cleanup_finished_work(self) -> int:
        """
        Drop queued work whose queue node is gone.

        Returns:
            Number of entries removed from the queued work set
        """
        finished = set()
        for key in self.queued_work:
            try:
                data = self.work_queue.get_work(key)
            except WorkQueueError as e:
                logger.warning(f"Could not check status of queued work {key}: {e}")
                continue

            # No node means a worker finished the work
            if data is None:
                finished.add(key)

        self.queued_work -= finished

        if finished:
            logger.debug(f"Removed {len(finished)} finished work entries [in_flight={len(self.queued_work)}]")
        return len(finished)
