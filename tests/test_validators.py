"""Tests for request and response validation."""

from __future__ import annotations

import re

import pytest
from multidict import CIMultiDict

from shieldwall.core.exceptions import BodyReadFailure
from shieldwall.policy.rules import Rule
from shieldwall.policy.validators import (
    Decision,
    MatchContext,
    _pattern_violation,
    validate_request,
    validate_response,
)


class CountingSource:
    """Body source that records how often it is read."""

    def __init__(self, data: bytes = b"", error: Exception | None = None) -> None:
        self.data = data
        self.error = error
        self.calls = 0

    async def __call__(self) -> bytes:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.data


def request_ctx(rule: Rule | None, body: bytes = b"") -> MatchContext:
    return MatchContext(rule=rule, source=CountingSource(body))


class TestMatchContext:
    """Tests for the per-phase body buffer."""

    @pytest.mark.asyncio
    async def test_body_read_once(self):
        """Test repeated body() calls reuse one read."""
        source = CountingSource(b"payload")
        ctx = MatchContext(rule=None, source=source)
        assert not ctx.buffered
        assert await ctx.body() == b"payload"
        assert await ctx.body() == b"payload"
        assert source.calls == 1
        assert ctx.buffered

    @pytest.mark.asyncio
    async def test_body_failure_propagates(self):
        """Test a failing source raises BodyReadFailure."""
        ctx = MatchContext(rule=None, source=CountingSource(error=BodyReadFailure("reset")))
        with pytest.raises(BodyReadFailure):
            await ctx.body()


class TestValidateRequest:
    """Tests for request-phase predicates."""

    @pytest.mark.asyncio
    async def test_no_rule_allows_without_reading(self):
        """Test no selected rule allows and leaves the body unread."""
        source = CountingSource(b"DROP TABLE users")
        ctx = MatchContext(rule=None, source=source)
        verdict = await validate_request(ctx, CIMultiDict())
        assert verdict.decision is Decision.ALLOW
        assert source.calls == 0

    @pytest.mark.asyncio
    async def test_missing_required_header(self):
        """Test a missing required header denies."""
        rule = Rule(endpoint="/admin", required_headers=["X-Api-Key"])
        verdict = await validate_request(request_ctx(rule), CIMultiDict())
        assert verdict.decision is Decision.DENY
        assert "X-Api-Key" in verdict.reason

    @pytest.mark.asyncio
    async def test_required_header_present(self):
        """Test a present required header allows."""
        rule = Rule(endpoint="/admin", required_headers=["X-Api-Key"])
        verdict = await validate_request(request_ctx(rule), CIMultiDict({"X-Api-Key": "k"}))
        assert verdict.allowed

    @pytest.mark.asyncio
    async def test_forbidden_header(self):
        """Test a forbidden header pair denies before the body is read."""
        rule = Rule(endpoint="/admin", forbidden_headers=[("X-Debug", "1")])
        source = CountingSource(b"")
        ctx = MatchContext(rule=rule, source=source)
        verdict = await validate_request(ctx, CIMultiDict({"X-Debug": "1"}))
        assert verdict.decision is Decision.DENY
        assert source.calls == 0

    @pytest.mark.asyncio
    async def test_forbidden_user_agent_unanchored(self):
        """Test user-agent patterns match anywhere in the value."""
        rule = Rule(endpoint="/admin", forbidden_user_agents=["sqlmap"])
        headers = CIMultiDict({"User-Agent": "Mozilla/5.0 sqlmap/1.7"})
        verdict = await validate_request(request_ctx(rule), headers)
        assert verdict.decision is Decision.DENY

    @pytest.mark.asyncio
    async def test_user_agent_other_value(self):
        """Test a non-matching user agent passes."""
        rule = Rule(endpoint="/admin", forbidden_user_agents=["^curl/"])
        headers = CIMultiDict({"User-Agent": "Mozilla/5.0"})
        verdict = await validate_request(request_ctx(rule), headers)
        assert verdict.allowed

    @pytest.mark.asyncio
    async def test_body_pattern_case_insensitive(self):
        """Test an inline-flag body pattern denies matching bodies."""
        rule = Rule(endpoint="/search", forbidden_request_patterns=["(?i)drop table"])
        verdict = await validate_request(request_ctx(rule, b"q=DROP TABLE users"), CIMultiDict())
        assert verdict.decision is Decision.DENY

    @pytest.mark.asyncio
    async def test_body_pattern_no_match(self):
        """Test a clean body passes the pattern check."""
        rule = Rule(endpoint="/search", forbidden_request_patterns=["(?i)drop table"])
        verdict = await validate_request(request_ctx(rule, b"q=tables"), CIMultiDict())
        assert verdict.allowed

    @pytest.mark.asyncio
    async def test_size_boundary(self):
        """Test N bytes pass and N+1 bytes fail the size ceiling."""
        rule = Rule(endpoint="/upload", max_request_body_bytes=8)
        at_limit = await validate_request(request_ctx(rule, b"x" * 8), CIMultiDict())
        over_limit = await validate_request(request_ctx(rule, b"x" * 9), CIMultiDict())
        assert at_limit.allowed
        assert over_limit.decision is Decision.DENY

    @pytest.mark.asyncio
    async def test_zero_size_is_unlimited(self):
        """Test a zero ceiling imposes no limit."""
        rule = Rule(endpoint="/upload", required_headers=[])
        verdict = await validate_request(request_ctx(rule, b"x" * 10_000), CIMultiDict())
        assert verdict.allowed

    @pytest.mark.asyncio
    async def test_body_read_failure_is_error(self):
        """Test a body read failure is ERROR, not DENY."""
        rule = Rule(endpoint="/search", forbidden_request_patterns=["x"])
        ctx = MatchContext(rule=rule, source=CountingSource(error=BodyReadFailure("reset")))
        verdict = await validate_request(ctx, CIMultiDict())
        assert verdict.decision is Decision.ERROR
        assert isinstance(verdict.error, BodyReadFailure)

    @pytest.mark.asyncio
    async def test_body_buffer_reused(self):
        """Test the validated body stays available without a second read."""
        rule = Rule(endpoint="/search", forbidden_request_patterns=["nope"])
        source = CountingSource(b"payload")
        ctx = MatchContext(rule=rule, source=source)
        verdict = await validate_request(ctx, CIMultiDict())
        assert verdict.allowed
        assert await ctx.body() == b"payload"
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_idempotent(self):
        """Test evaluating the same rule and request twice gives the same decision."""
        rule = Rule(
            endpoint="/search",
            required_headers=["X-Api-Key"],
            forbidden_request_patterns=["(?i)drop table"],
        )
        headers = CIMultiDict({"X-Api-Key": "k"})
        first = await validate_request(request_ctx(rule, b"DROP TABLE"), headers)
        second = await validate_request(request_ctx(rule, b"DROP TABLE"), headers)
        assert first == second
        assert first.decision is Decision.DENY


class TestValidateResponse:
    """Tests for response-phase predicates."""

    @pytest.mark.asyncio
    async def test_no_rule_allows(self):
        """Test no selected rule allows any response."""
        verdict = await validate_response(request_ctx(None, b"boom"), 500, CIMultiDict())
        assert verdict.allowed

    @pytest.mark.asyncio
    async def test_forbidden_status(self):
        """Test a forbidden status code denies."""
        rule = Rule(endpoint="/login", forbidden_response_status_codes=[500])
        verdict = await validate_response(request_ctx(rule), 500, CIMultiDict())
        assert verdict.decision is Decision.DENY
        assert "500" in verdict.reason

    @pytest.mark.asyncio
    async def test_allowed_status(self):
        """Test other status codes pass."""
        rule = Rule(endpoint="/login", forbidden_response_status_codes=[500])
        verdict = await validate_response(request_ctx(rule), 302, CIMultiDict())
        assert verdict.allowed

    @pytest.mark.asyncio
    async def test_response_headers(self):
        """Test header policy applies to response headers."""
        rule = Rule(endpoint="/login", required_headers=["X-Frame-Options"])
        verdict = await validate_response(request_ctx(rule), 200, CIMultiDict())
        assert verdict.decision is Decision.DENY

    @pytest.mark.asyncio
    async def test_body_pattern(self):
        """Test a forbidden response body pattern denies."""
        rule = Rule(endpoint="/login", forbidden_response_patterns=["Traceback"])
        ctx = request_ctx(rule, b"Traceback (most recent call last)")
        verdict = await validate_response(ctx, 200, CIMultiDict())
        assert verdict.decision is Decision.DENY

    @pytest.mark.asyncio
    async def test_size_boundary(self):
        """Test the response size ceiling boundary."""
        rule = Rule(endpoint="/login", max_response_body_bytes=4)
        at_limit = await validate_response(request_ctx(rule, b"four"), 200, CIMultiDict())
        over_limit = await validate_response(request_ctx(rule, b"fives"), 200, CIMultiDict())
        assert at_limit.allowed
        assert over_limit.decision is Decision.DENY

    @pytest.mark.asyncio
    async def test_body_read_failure_is_error(self):
        """Test a response body read failure is ERROR."""
        rule = Rule(endpoint="/login", forbidden_response_patterns=["x"])
        ctx = MatchContext(rule=rule, source=CountingSource(error=BodyReadFailure("reset")))
        verdict = await validate_response(ctx, 200, CIMultiDict())
        assert verdict.decision is Decision.ERROR


class TestPatternViolation:
    """Tests for the shared pattern helper."""

    def test_text_patterns(self):
        """Test str patterns are searched in str data."""
        reason = _pattern_violation([re.compile("sqlmap")], "Mozilla sqlmap/1.7", "user agent")
        assert reason == "user agent matches 'sqlmap'"

    def test_bytes_patterns(self):
        """Test bytes patterns are searched in bytes data."""
        reason = _pattern_violation([re.compile(b"secret")], b"top secret", "response body")
        assert reason == "response body matches b'secret'"

    def test_no_match(self):
        """Test no match gives None."""
        assert _pattern_violation([re.compile(b"secret")], b"public", "response body") is None
