"""Custom exception classes for the Blog Assistant service."""

from typing import Any, Dict, List, Optional


class BlogAssistantException(Exception):
    """Base exception for all Blog Assistant errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class ValidationError(BlogAssistantException):
    """Exception raised when a request is missing required input."""

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if errors:
            error_details["validation_errors"] = errors
        super().__init__(
            message=message,
            status_code=400,
            code="VALIDATION_ERROR",
            details=error_details,
        )


class ConfigurationError(BlogAssistantException):
    """Exception raised when a required credential or setting is absent."""

    def __init__(
        self,
        message: str = "Service is not configured",
        missing: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        self.missing = list(missing or [])
        if self.missing:
            error_details["missing"] = self.missing
        super().__init__(
            message=message,
            status_code=500,
            code="CONFIGURATION_ERROR",
            details=error_details,
        )


class RemoteServiceError(BlogAssistantException):
    """Exception raised when an upstream HTTP service fails.

    ``upstream_status`` and ``response_body`` are populated when the upstream
    answered with a non-success status; both are None for transport failures.
    """

    def __init__(
        self,
        service: str,
        message: Optional[str] = None,
        upstream_status: Optional[int] = None,
        response_body: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.service = service
        self.upstream_status = upstream_status
        self.response_body = response_body

        error_message = message or f"External service '{service}' unavailable"
        error_details = details or {}
        error_details["service"] = service
        if upstream_status is not None:
            error_details["upstream_status"] = upstream_status
        if response_body:
            error_details["response_body"] = response_body[:1000]
        super().__init__(
            message=error_message,
            status_code=502,
            code="REMOTE_SERVICE_ERROR",
            details=error_details,
        )


class ContentSourceError(RemoteServiceError):
    """Exception raised when the blog content source cannot be queried."""

    def __init__(
        self,
        message: str = "Content source query failed",
        service: str = "sanity",
        upstream_status: Optional[int] = None,
        response_body: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            service=service,
            message=message,
            upstream_status=upstream_status,
            response_body=response_body,
            details=details,
        )
        self.code = "CONTENT_SOURCE_ERROR"


def is_rate_limited(error: BaseException) -> bool:
    """Check whether an error carries a rate-limit signature."""
    if isinstance(error, RemoteServiceError) and error.upstream_status == 429:
        return True
    text = str(error)
    return "429" in text or "rate limit" in text.lower()
