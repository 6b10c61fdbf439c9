"""Internal routes for replication workers and operators."""

from fastapi import APIRouter, Depends, HTTPException, status

from common.logging_config import get_logger
from common.replication_schema import split_work_key
from coordinator.replication_service import ReplicationService
from coordinator.schemas.work import (
    AssignerStateResponse,
    CompleteWorkResponse,
    ListWorkResponse,
    WorkItemResponse,
)
from coordinator.work_queue import SqliteWorkQueue

logger = get_logger(__name__)

router = APIRouter(prefix="/internal/replication")

_work_queue: SqliteWorkQueue = None
_replication_service: ReplicationService = None


def set_work_queue(work_queue: SqliteWorkQueue):
    """Set the global work queue instance"""
    global _work_queue
    _work_queue = work_queue


def set_replication_service(service: ReplicationService):
    """Set the global replication service instance"""
    global _replication_service
    _replication_service = service


def get_work_queue() -> SqliteWorkQueue:
    """Dependency to get the work queue"""
    if _work_queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Work queue not initialized"
        )
    return _work_queue


def get_replication_service() -> ReplicationService:
    """Dependency to get the replication service"""
    if _replication_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Replication service not initialized"
        )
    return _replication_service


def _to_item(work_key: str, path: str = None) -> WorkItemResponse:
    try:
        filename, target = split_work_key(work_key)
    except ValueError:
        filename, target = work_key, ""
    return WorkItemResponse(work_key=work_key, filename=filename, target=target, path=path)


@router.get("/work", response_model=ListWorkResponse)
def list_work(work_queue: SqliteWorkQueue = Depends(get_work_queue)):
    """
    List the work currently queued for replication workers.
    """
    work = [_to_item(key, work_queue.get_work(key)) for key in work_queue.get_work_queued()]
    return ListWorkResponse(root=work_queue.root, work=[item for item in work if item.path is not None])


@router.get("/work/{work_key}", response_model=WorkItemResponse)
def get_work(work_key: str, work_queue: SqliteWorkQueue = Depends(get_work_queue)):
    """
    Return the file a queued work item refers to.
    """
    path = work_queue.get_work(work_key)
    if path is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No queued work {work_key}")
    return _to_item(work_key, path)


@router.delete("/work/{work_key}", response_model=CompleteWorkResponse)
def complete_work(work_key: str, work_queue: SqliteWorkQueue = Depends(get_work_queue)):
    """
    Mark a work item as finished by deleting its queue node.
    Called by workers once the file is replicated.
    """
    removed = work_queue.remove_work(work_key)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No queued work {work_key}")
    logger.info(f"Work {work_key} completed by worker")
    return CompleteWorkResponse(work_key=work_key, removed=True)


@router.get("/assigner", response_model=AssignerStateResponse)
def assigner_state(service: ReplicationService = Depends(get_replication_service)):
    """
    Report how much work the assigner believes is in flight.
    """
    assigner = service.assigner
    queued_work = assigner.queued_work
    queued = len(queued_work) if queued_work is not None else 0
    max_work_queue = service.context.config.get_max_work_queue()
    return AssignerStateResponse(
        initialized=queued_work is not None,
        running=service.is_running(),
        queued=queued,
        max_work_queue=max_work_queue,
        saturated=queued > max_work_queue
    )
