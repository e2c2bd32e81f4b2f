"""Health check endpoints."""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from blog_assistant.config import get_settings
from blog_assistant.services.chat_service import ChatService, get_chat_service
from blog_assistant.utils.logging import get_logger

logger = get_logger("health")

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """
    Health check endpoint.

    Returns basic service health status. This endpoint does not check
    external dependencies and will always return healthy if the service is running.
    """
    settings = get_settings()
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(chat_service: ChatService = Depends(get_chat_service)):
    """
    Readiness check endpoint.

    Checks chat credentials and connectivity to the vector store.
    Returns 503 if either is unavailable.
    """
    settings = get_settings()
    logger.debug("Readiness check requested")

    checks = {
        "configuration": False,
        "vector_store": False,
    }

    try:
        chat_service.settings.require_chat_credentials()
        checks["configuration"] = True
    except Exception as e:
        logger.warning(f"Configuration check failed: {e}")

    if checks["configuration"]:
        try:
            checks["vector_store"] = await chat_service.ping_vector_store()
        except Exception as e:
            logger.warning(f"Vector store connection check failed: {e}")

    body = {
        "status": "ready" if all(checks.values()) else "not_ready",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
        "checks": checks,
    }

    if not all(checks.values()):
        logger.warning(f"Readiness check failed: {checks}")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)

    logger.debug("Readiness check passed: all systems operational")
    return body
