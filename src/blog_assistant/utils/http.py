"""httpx helpers that map transport and status failures onto RemoteServiceError."""

from typing import Any, Optional, Type

import httpx

from blog_assistant.utils.errors import RemoteServiceError


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    service: str,
    label: Optional[str] = None,
    error_cls: Type[RemoteServiceError] = RemoteServiceError,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send a request and return the response when the status is 2xx.

    Raises:
        RemoteServiceError (or `error_cls`): On timeouts, connection failures
            and non-success statuses. Status failures carry the upstream
            status and response body, and the message reads
            "<label> API error: <status> - <body>".
    """
    label = label or service.capitalize()
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise error_cls(service=service, message=f"{label} request timed out") from e
    except httpx.RequestError as e:
        raise error_cls(service=service, message=f"{label} request failed: {e}") from e

    if not response.is_success:
        body = response.text
        raise error_cls(
            service=service,
            message=f"{label} API error: {response.status_code} - {body}",
            upstream_status=response.status_code,
            response_body=body,
        )
    return response


def read_json(
    response: httpx.Response,
    *,
    service: str,
    label: Optional[str] = None,
    error_cls: Type[RemoteServiceError] = RemoteServiceError,
) -> Any:
    """Decode a JSON body, raising `error_cls` when it is not valid JSON."""
    try:
        return response.json()
    except ValueError as e:
        raise error_cls(
            service=service,
            message=f"{label or service.capitalize()} API returned invalid JSON",
            upstream_status=response.status_code,
            response_body=response.text,
        ) from e
