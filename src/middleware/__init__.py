"""Node HTTP Middleware Package"""

from .correlation import (
    CorrelationIdMiddleware,
    CorrelationIdFilter,
    get_correlation_id,
    bind_correlation_id,
    round_correlation_id,
    correlation_id_var,
    HEADER_NAME,
)

__all__ = [
    "CorrelationIdMiddleware",
    "CorrelationIdFilter",
    "get_correlation_id",
    "bind_correlation_id",
    "round_correlation_id",
    "correlation_id_var",
    "HEADER_NAME",
]
