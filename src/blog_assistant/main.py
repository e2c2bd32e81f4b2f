"""FastAPI application entry point.

This module creates and configures the FastAPI application instance with:
- Middleware (CORS, RequestID, Timing)
- Exception handlers (BlogAssistantException, HTTPException, ValidationError, general)
- API routers (v1)
- Health check endpoints (/health, /ready)
- Shutdown of pooled HTTP clients
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from blog_assistant import __version__
from blog_assistant.api.v1.health import health_check, readiness_check
from blog_assistant.api.v1.router import router as v1_router
from blog_assistant.config import get_settings
from blog_assistant.middleware import setup_middleware
from blog_assistant.services.chat_service import close_chat_service
from blog_assistant.utils.errors import BlogAssistantException
from blog_assistant.utils.logging import get_logger, log_error, setup_logging

setup_logging()
logger = get_logger("main")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    logger.info("Starting Blog Assistant service...")
    logger.info(
        f"Embedding provider={settings.embedding.provider.value}, "
        f"vector store={settings.retrieval.backend.value}, model={settings.groq.model}"
    )
    try:
        yield
    finally:
        logger.info("Shutting down Blog Assistant service...")
        try:
            await close_chat_service()
            logger.info("Blog Assistant service shut down successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)


app = FastAPI(
    title="Blog Assistant",
    description=(
        "Retrieval-augmented chat over the blog: embeds visitor questions, searches "
        "indexed post chunks and streams answers from the completion model."
    ),
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    debug=settings.debug,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check and readiness endpoints",
        },
        {
            "name": "chat",
            "description": "Streaming blog chat",
        },
    ],
)

setup_middleware(app)

app.include_router(v1_router)

# Root-level health checks for container orchestrators; also under /api/v1
app.add_api_route("/health", health_check, methods=["GET"], tags=["health"], include_in_schema=False)
app.add_api_route("/ready", readiness_check, methods=["GET"], tags=["health"], include_in_schema=False)


@app.exception_handler(BlogAssistantException)
async def blog_assistant_exception_handler(
    request: Request, exc: BlogAssistantException
) -> JSONResponse:
    """Handle custom Blog Assistant exceptions."""
    log_error(
        exc,
        context={
            "method": request.method,
            "path": request.url.path,
            "status_code": exc.status_code,
            "code": exc.code,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Handle HTTP exceptions (404, etc.)."""
    if exc.status_code == 404:
        logger.warning(f"404 Not Found: {request.method} {request.url.path}")
    else:
        log_error(
            exc,
            context={
                "method": request.method,
                "path": request.url.path,
                "status_code": exc.status_code,
            },
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "code": "HTTP_ERROR",
                "status_code": exc.status_code,
                "details": {},
            }
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        errors.append(
            {
                "field": ".".join(str(loc) for loc in error.get("loc", [])),
                "message": error.get("msg"),
                "type": error.get("type"),
            }
        )

    logger.warning(
        f"Validation error: {request.method} {request.url.path}",
        extra={"validation_errors": errors},
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "message": "Validation failed",
                "code": "VALIDATION_ERROR",
                "status_code": 422,
                "details": {
                    "validation_errors": errors,
                },
            }
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    log_error(
        exc,
        context={
            "method": request.method,
            "path": request.url.path,
            "unhandled": True,
        },
    )

    # Don't expose internal error details in production
    if settings.is_production:
        message = "An internal server error occurred"
    else:
        message = str(exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": message,
                "code": "INTERNAL_SERVER_ERROR",
                "status_code": 500,
                "details": {} if settings.is_production else {"exception_type": type(exc).__name__},
            }
        },
    )


def run() -> None:
    """Run the API with uvicorn."""
    uvicorn.run(
        "blog_assistant.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload,
    )


if __name__ == "__main__":
    run()
