"""
Per-request correlation context.

Each request is tagged with a request id (reusing an inbound X-Request-ID
when present) and the caller's address. Both are bound into structlog's
context vars for the life of the request, so service and audit log lines
can be joined back to the HTTP call that produced them.
"""

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def client_address(request: Request) -> str | None:
    """Peer address, or the first X-Forwarded-For hop when the peer is a trusted proxy."""
    peer = request.client.host if request.client else None
    if settings.TRUST_X_FORWARDED_FOR and peer in settings.TRUSTED_PROXY_IPS:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return peer


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        ip_address = client_address(request)
        request.state.request_id = request_id
        request.state.ip_address = ip_address

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, ip_address=ip_address, path=request.url.path
        )
        logger.debug("Request received", method=request.method)

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
