"""Header filtering for the forwarded request and the returned response.

Hop-by-hop headers (RFC 7230 section 6.1) are connection-scoped and are never
forwarded. ``Host`` and ``Content-Length`` are recomputed by the HTTP client
and server for the bytes actually sent.
"""

from __future__ import annotations

from collections.abc import Iterable

from multidict import CIMultiDict

HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

_UPSTREAM_SKIP = HOP_BY_HOP_HEADERS | {"host", "content-length"}
_DOWNSTREAM_SKIP = HOP_BY_HOP_HEADERS | {"content-length"}


def _connection_tokens(items: list[tuple[str, str]]) -> set[str]:
    # Headers named in Connection are hop-by-hop for this message too.
    tokens: set[str] = set()
    for key, value in items:
        if key.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def _filter(items: Iterable[tuple[str, str]], skip: frozenset[str]) -> list[tuple[str, str]]:
    items = list(items)
    drop = skip | _connection_tokens(items)
    return [(key, value) for key, value in items if key.lower() not in drop]


def upstream_request_headers(items: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Headers to send to the backend, duplicates and order preserved."""
    return _filter(items, _UPSTREAM_SKIP)


def downstream_response_headers(
    items: Iterable[tuple[str, str]], keep_length: bool = False
) -> CIMultiDict[str]:
    """Headers to return to the caller, duplicates and order preserved.

    ``keep_length`` keeps the backend's Content-Length, for responses (HEAD,
    304) whose length describes a body that is not sent.
    """
    return CIMultiDict(_filter(items, HOP_BY_HOP_HEADERS if keep_length else _DOWNSTREAM_SKIP))
