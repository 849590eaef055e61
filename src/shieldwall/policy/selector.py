"""Rule selection for the two phases of an exchange.

The request phase keys on the request path. The response phase keys on the
path of the backend's ``Location`` header, resolved against the request path
the way a browser would resolve it. A response without a usable location
selects no rule, which lets that phase through (fail-open, location lookup
only).
"""

from __future__ import annotations

from urllib.parse import unquote, urljoin, urlsplit

import structlog

from shieldwall.policy.rules import Rule, RuleSet

logger = structlog.get_logger()


def select_rule(rules: RuleSet, key: str | None) -> Rule | None:
    """Return the first rule in ``rules`` whose endpoint equals ``key``."""
    return rules.select(key)


def select_request_rule(rules: RuleSet, path: str) -> Rule | None:
    return select_rule(rules, path)


def location_path(location: str | None, request_path: str = "/") -> str | None:
    """Resolve a Location header value to a path.

    Args:
        location: Raw ``Location`` header value, or None if absent.
        request_path: Path of the request that produced the response, used to
            resolve relative references.

    Returns:
        The resolved path, or None if there is no location or it cannot be
        parsed.
    """
    if not location:
        return None
    try:
        path = urlsplit(urljoin(request_path or "/", location)).path
    except ValueError as e:
        logger.debug("Unparseable response location", location=location, error=str(e))
        return None
    return unquote(path) or "/"


def select_response_rule(
    rules: RuleSet, location: str | None, request_path: str = "/"
) -> Rule | None:
    """Select the response-phase rule from the backend's redirect location.

    Selection is independent of the rule used for the request phase.
    """
    path = location_path(location, request_path)
    if path is None:
        return None
    return select_rule(rules, path)
