from shieldwall.observability.metrics import (
    DECISIONS,
    EXCHANGES,
    UPSTREAM_DURATION,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "DECISIONS",
    "EXCHANGES",
    "UPSTREAM_DURATION",
    "generate_metrics",
    "get_content_type",
]
