"""API v1 router aggregation.

All v1 endpoints are prefixed with `/api/v1`.
"""

from fastapi import APIRouter

from blog_assistant.api.v1 import chat, health

router = APIRouter(
    prefix="/api/v1",
    tags=["v1"],
    responses={
        404: {"description": "Not found"},
        500: {"description": "Internal server error"},
    },
)

router.include_router(health.router)
router.include_router(chat.router)


@router.get(
    "/",
    summary="API Information",
    description="Get API version and status information",
    tags=["v1"],
)
async def api_info():
    """Get API v1 information."""
    return {
        "version": "v1",
        "status": "active",
        "service": "blog-assistant",
        "endpoints": {
            "health": "/api/v1/health",
            "ready": "/api/v1/ready",
            "chat": "/api/v1/chat",
        },
    }
