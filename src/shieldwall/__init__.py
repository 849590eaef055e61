"""Shieldwall - reverse proxy enforcing per-endpoint traffic policy.

Every request is checked against the rule for its path before it is sent to
the backend, and every backend response is checked against the rule for its
redirect location before it is returned. Any violation yields a fixed 403.

Usage:
    from shieldwall import ProxyOrchestrator, Rule, RuleSet, create_upstream_client

    rules = RuleSet([Rule(endpoint="/admin", required_headers=["X-Api-Key"])])
    orchestrator = ProxyOrchestrator(
        rules=rules,
        service_addr="http://localhost:8080",
        client=create_upstream_client(),
    )
"""

from shieldwall.core.config import FirewallConfig, FirewallSettings, RuleConfig, load_rule_set
from shieldwall.core.exceptions import (
    BodyReadFailure,
    ConfigInvalid,
    ShieldwallError,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from shieldwall.policy import (
    Decision,
    MatchContext,
    Rule,
    RuleSet,
    Verdict,
    check_headers,
    select_request_rule,
    select_response_rule,
    validate_request,
    validate_response,
)
from shieldwall.proxy import (
    ExchangeState,
    ProxyOrchestrator,
    ProxyRequest,
    ProxyResponse,
    create_upstream_client,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Policy
    "Rule",
    "RuleSet",
    "Decision",
    "Verdict",
    "MatchContext",
    "check_headers",
    "select_request_rule",
    "select_response_rule",
    "validate_request",
    "validate_response",
    # Proxy
    "ExchangeState",
    "ProxyOrchestrator",
    "ProxyRequest",
    "ProxyResponse",
    "create_upstream_client",
    # Configuration
    "FirewallConfig",
    "FirewallSettings",
    "RuleConfig",
    "load_rule_set",
    # Errors
    "ShieldwallError",
    "ConfigInvalid",
    "UpstreamUnavailable",
    "UpstreamTimeout",
    "BodyReadFailure",
]
