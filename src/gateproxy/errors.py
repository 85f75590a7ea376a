"""Error handling and custom exceptions for gateproxy."""

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from gateproxy.models import ErrorResponse

logger = logging.getLogger("gateproxy")


class ProxyError(Exception):
    """Base class for failures that map to a client-facing status code."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)


class Unauthorized(ProxyError):
    """Raised when an API key is configured and the caller's is missing or wrong."""

    status_code = 401
    message = "Unauthorized: invalid API key"


class MissingTarget(ProxyError):
    status_code = 400
    message = "Missing 'url' parameter (query or JSON body)"


class InvalidTarget(ProxyError):
    status_code = 400
    message = "Invalid URL"


class HostNotAllowed(ProxyError):
    """Raised when the target host matches no allowed pattern."""

    status_code = 403
    message = "Host not allowed by proxy configuration"


class PayloadTooLarge(ProxyError):
    status_code = 413
    message = "Request body too large"


class ProxyUpstreamError(ProxyError):
    """Raised when upstream request fails (timeout, network error, etc.)."""

    status_code = 502
    message = "Proxy error"


class UpstreamTimeoutError(ProxyUpstreamError):
    status_code = 504
    message = "Upstream request timed out"


class UpstreamNetworkError(ProxyUpstreamError):
    """Transport-level failure: DNS, refused connection, TLS, broken stream."""


def create_error_response(message: str, details: Optional[str] = None) -> dict:
    """Create a standardized error response.

    Args:
        message: Human-readable error message
        details: Optional diagnostic detail (underlying transport message)

    Returns:
        Dictionary matching ErrorResponse schema
    """
    return ErrorResponse(error=message, details=details).model_dump(exclude_none=True)


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    """Turn a pipeline failure into its JSON error response.

    This handler is registered with FastAPI and catches every ProxyError
    raised by a pipeline stage, so later stages never run.

    Args:
        request: The FastAPI request object
        exc: The ProxyError exception

    Returns:
        JSONResponse with the error's status code and standardized error body
    """
    if exc.status_code >= 500:
        logger.error(f"Proxy request failed ({exc.status_code}): {exc.message}"
                     + (f": {exc.details}" if exc.details else ""))
    else:
        logger.warning(f"Proxy request rejected ({exc.status_code}): {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.message, exc.details),
    )
