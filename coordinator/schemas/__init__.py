"""Pydantic schemas for API requests and responses."""

from coordinator.schemas.common import HealthResponse
from coordinator.schemas.work import (
    WorkItemResponse,
    ListWorkResponse,
    CompleteWorkResponse,
    AssignerStateResponse
)

__all__ = [
    "HealthResponse",
    "WorkItemResponse",
    "ListWorkResponse",
    "CompleteWorkResponse",
    "AssignerStateResponse"
]
