"""Proxy."""

from .headers import HOP_BY_HOP_HEADERS, downstream_response_headers, upstream_request_headers
from .orchestrator import (
    DENIAL_BODY,
    ExchangeState,
    ProxyOrchestrator,
    ProxyRequest,
    ProxyResponse,
    UpstreamBody,
    check_service_addr,
    create_upstream_client,
    denial_response,
    error_response,
)

__all__ = [
    "DENIAL_BODY",
    "ExchangeState",
    "ProxyOrchestrator",
    "ProxyRequest",
    "ProxyResponse",
    "UpstreamBody",
    "check_service_addr",
    "create_upstream_client",
    "denial_response",
    "error_response",
    # Headers
    "HOP_BY_HOP_HEADERS",
    "downstream_response_headers",
    "upstream_request_headers",
]
