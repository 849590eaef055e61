"""Request and response validation.

Each phase of an exchange gets a MatchContext holding the selected rule and
a body buffer. The body is read from its source at most once and the same
bytes are reused for pattern matching, size checks and forwarding.

Validators return a Verdict rather than raising: ``Decision.DENY`` is a
policy outcome, ``Decision.ERROR`` is an infrastructure fault (the body could
not be read) and carries the exception that caused it.

Example:
    ctx = MatchContext(rule=rule, source=request.read)
    verdict = await validate_request(ctx, request.headers)
    if verdict.decision is Decision.ALLOW:
        body = await ctx.body()  # same buffer, no second read
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import AnyStr

from multidict import MultiMapping

from shieldwall.core.exceptions import BodyReadFailure, ShieldwallError
from shieldwall.policy.headers import header_violation
from shieldwall.policy.rules import Rule

BodySource = Callable[[], Awaitable[bytes]]


class Decision(Enum):
    """Outcome of validating one phase of an exchange."""

    ALLOW = "allow"
    DENY = "deny"
    ERROR = "error"


@dataclass(frozen=True)
class Verdict:
    """Decision plus the reason behind it."""

    decision: Decision
    reason: str = ""
    error: ShieldwallError | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW


ALLOW = Verdict(Decision.ALLOW)


def _deny(reason: str) -> Verdict:
    return Verdict(Decision.DENY, reason=reason)


@dataclass
class MatchContext:
    """Per-phase state: the selected rule and the buffered body."""

    rule: Rule | None
    source: BodySource
    _buffer: bytes | None = field(default=None, init=False, repr=False)

    @property
    def buffered(self) -> bool:
        return self._buffer is not None

    async def body(self) -> bytes:
        """Read the body from the source on first call, then return the buffer.

        Raises:
            BodyReadFailure: If the source fails.
        """
        if self._buffer is None:
            self._buffer = await self.source()
        return self._buffer


def _pattern_violation(
    patterns: Iterable[re.Pattern[AnyStr]], data: AnyStr, kind: str
) -> str | None:
    for pattern in patterns:
        if pattern.search(data):
            return f"{kind} matches {pattern.pattern!r}"
    return None


def _size_violation(size: int, limit: int, kind: str) -> str | None:
    if limit > 0 and size > limit:
        return f"{kind} is {size} bytes, limit {limit}"
    return None


async def validate_request(ctx: MatchContext, headers: MultiMapping[str]) -> Verdict:
    """Apply the request-phase predicates of ``ctx.rule``.

    Order: headers, user agent, body patterns, body size. The body is read
    only after the header and user-agent checks pass.
    """
    rule = ctx.rule
    if rule is None:
        return ALLOW

    reason = header_violation(headers, rule.forbidden_headers, rule.required_headers)
    if reason:
        return _deny(reason)

    user_agent = headers.get("User-Agent", "")
    reason = _pattern_violation(rule.user_agent_res, user_agent, "user agent")
    if reason:
        return _deny(reason)

    try:
        body = await ctx.body()
    except BodyReadFailure as e:
        return Verdict(Decision.ERROR, reason="request body read failed", error=e)

    reason = _pattern_violation(rule.request_body_res, body, "request body")
    if reason:
        return _deny(reason)

    reason = _size_violation(len(body), rule.max_request_body_bytes, "request body")
    if reason:
        return _deny(reason)

    return ALLOW


async def validate_response(
    ctx: MatchContext, status: int, headers: MultiMapping[str]
) -> Verdict:
    """Apply the response-phase predicates of ``ctx.rule``.

    Order: headers, status code, body patterns, body size.
    """
    rule = ctx.rule
    if rule is None:
        return ALLOW

    reason = header_violation(headers, rule.forbidden_headers, rule.required_headers)
    if reason:
        return _deny(reason)

    if status in rule.forbidden_response_status_codes:
        return _deny(f"forbidden response status {status}")

    try:
        body = await ctx.body()
    except BodyReadFailure as e:
        return Verdict(Decision.ERROR, reason="response body read failed", error=e)

    reason = _pattern_violation(rule.response_body_res, body, "response body")
    if reason:
        return _deny(reason)

    reason = _size_violation(len(body), rule.max_response_body_bytes, "response body")
    if reason:
        return _deny(reason)

    return ALLOW
