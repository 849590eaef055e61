"""Forbidden/required header checks shared by both validation phases."""

from __future__ import annotations

from collections.abc import Iterable

from multidict import MultiMapping


def header_violation(
    headers: MultiMapping[str],
    forbidden: Iterable[tuple[str, str]],
    required: Iterable[str],
) -> str | None:
    """Return a description of the first header violation, or None.

    Header names are case-insensitive when ``headers`` is a CIMultiDict; values
    are compared exactly. Forbidden pairs are checked before required names.
    """
    for name, value in forbidden:
        for present in headers.getall(name, []):
            if present == value:
                return f"forbidden header {name}: {value}"
    for name in required:
        if not headers.getall(name, []):
            return f"missing required header {name}"
    return None


def check_headers(
    headers: MultiMapping[str],
    forbidden: Iterable[tuple[str, str]],
    required: Iterable[str],
) -> bool:
    """True if ``headers`` carries no forbidden pair and every required name."""
    return header_violation(headers, forbidden, required) is None
