"""Common schemas used across multiple endpoints."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Response model for the health endpoint."""
    status: str
    node_id: str
