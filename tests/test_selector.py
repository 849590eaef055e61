"""Tests for request and response rule selection."""

from __future__ import annotations

from shieldwall.policy.rules import Rule, RuleSet
from shieldwall.policy.selector import (
    location_path,
    select_request_rule,
    select_response_rule,
    select_rule,
)

RULES = RuleSet(
    [
        Rule(endpoint="/admin"),
        Rule(endpoint="/login"),
        Rule(endpoint="/a/next"),
    ]
)


class TestRequestSelection:
    """Tests for request-phase selection."""

    def test_selects_by_path(self):
        """Test the request path selects its rule."""
        rule = select_request_rule(RULES, "/admin")
        assert rule is not None
        assert rule.endpoint == "/admin"

    def test_unknown_path(self):
        """Test an unconfigured path selects no rule."""
        assert select_request_rule(RULES, "/health") is None

    def test_select_rule_delegates(self):
        """Test select_rule uses first-match semantics."""
        assert select_rule(RULES, "/login") is RULES.rules[1]


class TestLocationPath:
    """Tests for Location header resolution."""

    def test_absolute_url(self):
        """Test an absolute URL resolves to its path."""
        assert location_path("http://backend:8080/login?next=1") == "/login"

    def test_absolute_path(self):
        """Test an absolute path is returned as-is."""
        assert location_path("/login") == "/login"

    def test_relative_reference(self):
        """Test a relative reference resolves against the request path."""
        assert location_path("next", "/a/b") == "/a/next"

    def test_percent_encoded_path(self):
        """Test the resolved path is percent-decoded like the request path."""
        assert location_path("/my%20page") == "/my page"

    def test_missing_location(self):
        """Test a missing Location header yields no path."""
        assert location_path(None) is None
        assert location_path("") is None

    def test_unparseable_location(self):
        """Test an unparseable Location header yields no path."""
        assert location_path("http://[::1/login") is None


class TestResponseSelection:
    """Tests for response-phase selection."""

    def test_selects_by_location(self):
        """Test the Location path selects the response rule."""
        rule = select_response_rule(RULES, "https://example.com/login", "/admin")
        assert rule is not None
        assert rule.endpoint == "/login"

    def test_independent_of_request_rule(self):
        """Test the request path alone never selects the response rule."""
        assert select_response_rule(RULES, None, "/admin") is None

    def test_relative_location(self):
        """Test relative Location headers are resolved before selection."""
        rule = select_response_rule(RULES, "next", "/a/b")
        assert rule is not None
        assert rule.endpoint == "/a/next"

    def test_unparseable_location_fails_open(self):
        """Test an unparseable Location selects no rule instead of failing."""
        assert select_response_rule(RULES, "http://[bad/login", "/login") is None
