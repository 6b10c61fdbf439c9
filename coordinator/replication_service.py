"""Background loops running status projection and work assignment."""

import threading
from typing import Callable, Optional

from common.logging_config import get_logger
from coordinator.context import CoordinatorContext
from coordinator.exceptions import QueuedWorkStateError
from coordinator.status_projector import StatusProjector
from coordinator.work_assigner import WorkAssigner

logger = get_logger(__name__)


class ReplicationService:
    """
    Runs the status projector and the work assigner on their own threads.

    Both loops check coordinator status before every cycle and stop once it is
    lost; a cycle in progress is allowed to finish.
    """

    def __init__(
        self,
        context: CoordinatorContext,
        projector_interval: float = 30,
        assigner_interval: float = 5
    ):
        self.context = context
        self.projector = StatusProjector(context)
        self.assigner = WorkAssigner(context)
        self.projector_interval = projector_interval
        self.assigner_interval = assigner_interval

        self._stop_event = threading.Event()
        self._threads = []

    def _should_run(self) -> bool:
        return not self._stop_event.is_set() and self.context.still_coordinator()

    def start(self) -> None:
        """
        Recover queued work and start both loops.

        Raises:
            QueuedWorkStateError: If the assigner was already initialized
            WorkQueueError: If the queued work could not be recovered
        """
        if self.is_running():
            logger.warning("Replication service already running")
            return

        self._stop_event.clear()
        self.assigner.initialize()

        self._threads = [
            threading.Thread(
                target=self._loop,
                args=("status-projector", self.projector.run, self.projector_interval),
                name="status-projector",
                daemon=True
            ),
            threading.Thread(
                target=self._loop,
                args=("work-assigner", self.assigner.run_cycle, self.assigner_interval),
                name="work-assigner",
                daemon=True
            ),
        ]
        for thread in self._threads:
            thread.start()

        logger.info(
            f"Replication service started "
            f"[projector_interval={self.projector_interval}s, assigner_interval={self.assigner_interval}s]"
        )

    def _loop(self, name: str, cycle: Callable[[], object], interval: float) -> None:
        while self._should_run():
            try:
                cycle()
            except QueuedWorkStateError:
                logger.critical(f"{name} has inconsistent queued work state, stopping", exc_info=True)
                raise
            except Exception as e:
                logger.error(f"Error in {name} cycle, will retry: {e}", exc_info=True)

            if self._stop_event.wait(interval):
                break
        logger.info(f"{name} loop stopped")

    def stop(self, timeout: Optional[float] = 10) -> None:
        """Ask both loops to stop and wait for them."""
        if not self._threads:
            return

        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)

        # A loop still finishing its cycle keeps the service from being restarted
        self._threads = [thread for thread in self._threads if thread.is_alive()]
        if self._threads:
            logger.warning(
                f"Replication service loops did not stop in time "
                f"[still_running={','.join(thread.name for thread in self._threads)}]"
            )
            return
        logger.info("Replication service stopped")

    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)
