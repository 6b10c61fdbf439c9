"""API routes package."""

from coordinator.routes.work_routes import router as work_router

__all__ = ["work_router"]
