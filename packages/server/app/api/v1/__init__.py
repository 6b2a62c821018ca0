"""
API v1 Router

The acting user is resolved from the ``X-User-Id`` header on every endpoint.
"""

from fastapi import APIRouter
from . import enquiries, tasks, templates

router = APIRouter()

router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(templates.router, prefix="/templates", tags=["Templates"])
router.include_router(enquiries.router, prefix="/enquiries", tags=["Enquiries"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/tasks",
            "/templates",
            "/enquiries",
        ],
    }
