"""Core."""

from .exceptions import (
    BodyReadFailure,
    ConfigInvalid,
    ShieldwallError,
    UpstreamTimeout,
    UpstreamUnavailable,
)

__all__ = [
    "ShieldwallError",
    "ConfigInvalid",
    "UpstreamUnavailable",
    "UpstreamTimeout",
    "BodyReadFailure",
]
