"""Request correlation ID middleware.

Every API request gets a correlation id that is stored in a context variable,
stamped on log records by ``CorrelationIdFilter`` and forwarded as X-Request-ID on
outbound feed fetches made while serving the request. This lets one calendar read
be traced through the on-demand syncs it triggered.
"""

import uuid
from collections.abc import Awaitable, Callable
from contextvars import ContextVar

from aiohttp import web

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


@web.middleware
async def correlation_id_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    """Extract or generate correlation ID for request tracking.

    Priority: X-Request-ID, then X-Correlation-ID, then a new UUID4.

    Args:
        request: aiohttp request object
        handler: Next handler in middleware chain

    Returns:
        Response with X-Request-ID header set
    """
    correlation_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid.uuid4())
    )

    token = request_id_var.set(correlation_id)
    request["correlation_id"] = correlation_id
    try:
        response = await handler(request)
    finally:
        request_id_var.reset(token)

    # WebSocket responses have already sent their headers
    if not response.prepared:
        response.headers["X-Request-ID"] = correlation_id
    return response


def get_request_id() -> str:
    """Get current request correlation ID from context.

    Returns:
        Current request correlation ID, or "no-request-id" if not set
    """
    request_id = request_id_var.get()
    return request_id if request_id else "no-request-id"
