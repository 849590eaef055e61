"""Shieldwall Policy Module.

Rule model, rule selection and the request/response predicates.

Features:
- Exact endpoint matching, first rule wins
- Forbidden header values and required header names
- User-agent and body regexes, compiled once at startup
- Request and response body size ceilings
- Forbidden backend status codes

Usage:
    from shieldwall.policy import MatchContext, Rule, RuleSet, validate_request

    rules = RuleSet([Rule(endpoint="/search", forbidden_request_patterns=["(?i)drop table"])])
    ctx = MatchContext(rule=rules.select("/search"), source=read_body)
    verdict = await validate_request(ctx, headers)
"""

from shieldwall.policy.headers import check_headers, header_violation
from shieldwall.policy.rules import Rule, RuleSet
from shieldwall.policy.selector import (
    location_path,
    select_request_rule,
    select_response_rule,
    select_rule,
)
from shieldwall.policy.validators import (
    Decision,
    MatchContext,
    Verdict,
    validate_request,
    validate_response,
)

__all__ = [
    # Rules
    "Rule",
    "RuleSet",
    # Selection
    "select_rule",
    "select_request_rule",
    "select_response_rule",
    "location_path",
    # Predicates
    "check_headers",
    "header_violation",
    "Decision",
    "Verdict",
    "MatchContext",
    "validate_request",
    "validate_response",
]
