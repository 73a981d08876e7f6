# src/middleware/correlation.py
"""
Correlation ID Middleware
Every request a node serves, and every vote it sends, carries a traceable
correlation ID so a single consensus round can be followed across nodes.
"""

import uuid
import logging
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

HEADER_NAME = "X-Correlation-ID"

# Context variable for correlation ID (task-local under asyncio)
correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='no-corr-id')


def get_correlation_id() -> str:
    """Get current correlation ID from context"""
    return correlation_id_var.get()


def generate_correlation_id() -> str:
    """Generate a new correlation ID"""
    return f"corr-{uuid.uuid4().hex[:12]}"


def round_correlation_id(node_id: int, round_number: int) -> str:
    """Correlation ID for one round of one node's engine"""
    return f"node-{node_id}-k{round_number}"


def bind_correlation_id(corr_id: str) -> None:
    """
    Bind a correlation ID to the current context.

    Used by the engine task, which owns its own context copy, so the value
    never leaks into request handlers.
    """
    correlation_id_var.set(corr_id)


class CorrelationIdFilter(logging.Filter):
    """Logging filter to inject correlation ID into log records"""

    def filter(self, record):
        record.correlation_id = get_correlation_id()
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware that ensures every request has a correlation ID.

    Peers forward the sender's round ID in the header, so a vote logged
    on the receiving node shares the ID of the round that produced it.
    """

    HEADER_NAME = HEADER_NAME

    async def dispatch(self, request: Request, call_next) -> Response:
        corr_id = request.headers.get(self.HEADER_NAME)
        if not corr_id:
            corr_id = generate_correlation_id()

        token = correlation_id_var.set(corr_id)

        try:
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = corr_id
            return response
        finally:
            correlation_id_var.reset(token)
