"""Entry point for the replication coordinator service."""

import os
import threading
import time
import uuid

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from coordinator.config import (
    COORDINATION_STORE_PATH,
    COORDINATOR_HOST,
    COORDINATOR_PORT,
    REPLICATION_CONFIG_PATH,
    SOURCE_TABLE_NAME,
    TABLE_STORE_PATH,
)
from coordinator.context import CoordinatorContext
from coordinator.distributed_config import (
    COORDINATOR_NODE_ID,
    STATUS_PROJECTOR_INTERVAL,
    WORK_ASSIGNER_INTERVAL,
    WORK_QUEUE_ROOT,
)
from coordinator.exceptions import ReplicationError, WorkQueueError
from coordinator.replication_config import ReplicationConfig
from coordinator.replication_service import ReplicationService
from coordinator.routes.work_routes import router as work_router
from coordinator.routes.work_routes import set_replication_service, set_work_queue
from coordinator.schemas.common import HealthResponse
from coordinator.table_service import SqliteTableService
from coordinator.work_queue import SqliteWorkQueue

logger = setup_logging('coordinator', node_id=COORDINATOR_NODE_ID)

app = FastAPI(
    title="Replication Coordinator",
    description="Turns closed-file markers into queued replication work",
    version="1.0.0"
)

# Set while this process holds coordinator status; leader election clears it
coordinator_active = threading.Event()

replication_service = None


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(f"Request started: {request.method} {request.url.path} [request_id={request_id}]")

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


@app.on_event("startup")
async def startup_event():
    """
    Open the stores and start the replication loops on application startup.
    """
    global replication_service

    logger.info(f"Replication coordinator starting up [node_id={COORDINATOR_NODE_ID}]")

    table_service = SqliteTableService(TABLE_STORE_PATH)
    work_queue = SqliteWorkQueue(COORDINATION_STORE_PATH, WORK_QUEUE_ROOT)

    context = CoordinatorContext(
        table_service=table_service,
        work_queue_factory=lambda: work_queue,
        config=ReplicationConfig(REPLICATION_CONFIG_PATH),
        still_coordinator=coordinator_active.is_set,
        source_table=SOURCE_TABLE_NAME
    )

    replication_service = ReplicationService(
        context,
        projector_interval=STATUS_PROJECTOR_INTERVAL,
        assigner_interval=WORK_ASSIGNER_INTERVAL
    )

    set_work_queue(work_queue)
    set_replication_service(replication_service)

    if os.getenv("REPL_COORDINATOR_ENABLED", "true").lower() in ("1", "true", "yes"):
        coordinator_active.set()
        # A failure to recover queued work must abort startup
        replication_service.start()
    else:
        logger.info("Coordinator role disabled, serving work queue routes only")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Stop the replication loops on application shutdown.
    """
    logger.info("Replication coordinator shutting down...")

    coordinator_active.clear()
    if replication_service:
        replication_service.stop()


@app.exception_handler(WorkQueueError)
async def work_queue_error_handler(request: Request, exc: WorkQueueError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Work queue error: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc), "code": "WORK_QUEUE_UNAVAILABLE"}
    )


@app.exception_handler(ReplicationError)
async def replication_error_handler(request: Request, exc: ReplicationError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Replication error: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "code": "INTERNAL_ERROR"}
    )


app.include_router(work_router)


@app.get("/", response_model=HealthResponse)
async def root():
    """
    Root endpoint for health check.
    """
    return HealthResponse(status="running", node_id=COORDINATOR_NODE_ID)


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "coordinator.main:app",
        host=COORDINATOR_HOST,
        port=COORDINATOR_PORT
    )


if __name__ == "__main__":
    main()
