"""Shieldwall error taxonomy.

Policy denials are not exceptions; they travel as ``Decision.DENY`` verdicts.
The classes here cover configuration defects, which abort startup, and
infrastructure failures, which end a single exchange with a 5xx response.
"""

from __future__ import annotations


class ShieldwallError(Exception):
    """Base class for all shieldwall errors."""

    status: int = 500
    public_message: str = "Internal Server Error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ConfigInvalid(ShieldwallError):
    """Rule configuration is malformed (bad regex, bad header spec, bad file)."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        pattern: str | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.pattern = pattern
        details = message
        if endpoint is not None:
            details = f"{details} (endpoint: {endpoint!r}"
            if pattern is not None:
                details = f"{details}, pattern: {pattern!r}"
            details = f"{details})"
        super().__init__(details)


class UpstreamUnavailable(ShieldwallError):
    """The backend could not be reached or broke the HTTP exchange."""

    status = 502
    public_message = "Bad Gateway"


class UpstreamTimeout(UpstreamUnavailable):
    """The backend did not answer within the exchange deadline."""

    status = 504
    public_message = "Gateway Timeout"


class BodyReadFailure(ShieldwallError):
    """I/O failure while buffering a request or response body."""

    status = 500
    public_message = "Internal Server Error"


def format_error_for_log(error: BaseException) -> dict[str, str]:
    return {"error_type": type(error).__name__, "error": str(error)}
