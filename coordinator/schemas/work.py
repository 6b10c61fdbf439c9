"""Pydantic schemas for the replication work endpoints."""

from typing import List, Optional
from pydantic import BaseModel


class WorkItemResponse(BaseModel):
    """A queued work item."""
    work_key: str
    filename: str
    target: str
    path: Optional[str] = None


class ListWorkResponse(BaseModel):
    """Response model for listing queued work."""
    root: str
    work: List[WorkItemResponse]


class CompleteWorkResponse(BaseModel):
    """Response model for completing a work item."""
    work_key: str
    removed: bool


class AssignerStateResponse(BaseModel):
    """Snapshot of the work assigner state."""
    initialized: bool
    running: bool
    queued: int
    max_work_queue: int
    saturated: bool
