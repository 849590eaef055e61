"""Shieldwall policy rules.

A Rule is the policy unit for one endpoint path. It constrains the inbound
request (headers, user agent, body patterns, body size) and the backend's
response (headers, status code, body patterns, body size). Empty or zero
fields mean "no constraint of this kind".

Rules are immutable. Regex patterns are compiled when the Rule is built, so a
malformed pattern surfaces as ConfigInvalid at startup and never while a
request is being handled.

Example:
    rule = Rule(
        endpoint="/admin",
        required_headers=["X-Api-Key"],
        forbidden_request_patterns=["(?i)drop table"],
    )
    rules = RuleSet([rule])
    rules.select("/admin")  # -> rule
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from shieldwall.core.exceptions import ConfigInvalid


def _compile_text(patterns: Iterable[str], endpoint: str, kind: str) -> tuple[re.Pattern[str], ...]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise ConfigInvalid(
                f"Invalid {kind} expression: {e}", endpoint=endpoint, pattern=pattern
            ) from e
    return tuple(compiled)


def _compile_bytes(patterns: Iterable[str], endpoint: str, kind: str) -> tuple[re.Pattern[bytes], ...]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern.encode("utf-8")))
        except re.error as e:
            raise ConfigInvalid(
                f"Invalid {kind} expression: {e}", endpoint=endpoint, pattern=pattern
            ) from e
    return tuple(compiled)


@dataclass(frozen=True)
class Rule:
    """Traffic policy for a single endpoint path.

    Attributes:
        endpoint: Request path this rule governs (exact match).
        forbidden_headers: ``(name, value)`` pairs that must not be present.
        required_headers: Header names that must carry at least one value.
        forbidden_user_agents: Regexes searched in the User-Agent value.
        forbidden_request_patterns: Regexes searched in the request body.
        max_request_body_bytes: Request body ceiling, 0 for unlimited.
        forbidden_response_status_codes: Backend status codes to block.
        forbidden_response_patterns: Regexes searched in the response body.
        max_response_body_bytes: Response body ceiling, 0 for unlimited.
    """

    endpoint: str
    forbidden_headers: tuple[tuple[str, str], ...] = ()
    required_headers: tuple[str, ...] = ()
    forbidden_user_agents: tuple[str, ...] = ()
    forbidden_request_patterns: tuple[str, ...] = ()
    max_request_body_bytes: int = 0
    forbidden_response_status_codes: frozenset[int] = frozenset()
    forbidden_response_patterns: tuple[str, ...] = ()
    max_response_body_bytes: int = 0

    user_agent_res: tuple[re.Pattern[str], ...] = field(
        default=(), init=False, repr=False, compare=False
    )
    request_body_res: tuple[re.Pattern[bytes], ...] = field(
        default=(), init=False, repr=False, compare=False
    )
    response_body_res: tuple[re.Pattern[bytes], ...] = field(
        default=(), init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        # Normalise caller-supplied lists so the rule cannot be mutated later.
        set_ = object.__setattr__
        set_(self, "forbidden_headers", tuple((str(n), str(v)) for n, v in self.forbidden_headers))
        set_(self, "required_headers", tuple(self.required_headers))
        set_(self, "forbidden_user_agents", tuple(self.forbidden_user_agents))
        set_(self, "forbidden_request_patterns", tuple(self.forbidden_request_patterns))
        set_(self, "forbidden_response_status_codes", frozenset(self.forbidden_response_status_codes))
        set_(self, "forbidden_response_patterns", tuple(self.forbidden_response_patterns))

        if self.max_request_body_bytes < 0:
            raise ConfigInvalid("max_request_body_bytes must be >= 0", endpoint=self.endpoint)
        if self.max_response_body_bytes < 0:
            raise ConfigInvalid("max_response_body_bytes must be >= 0", endpoint=self.endpoint)

        set_(
            self,
            "user_agent_res",
            _compile_text(self.forbidden_user_agents, self.endpoint, "user agent"),
        )
        set_(
            self,
            "request_body_res",
            _compile_bytes(self.forbidden_request_patterns, self.endpoint, "request body"),
        )
        set_(
            self,
            "response_body_res",
            _compile_bytes(self.forbidden_response_patterns, self.endpoint, "response body"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert rule to the configuration file representation."""
        return {
            "endpoint": self.endpoint,
            "forbidden_headers": [f"{name}: {value}" for name, value in self.forbidden_headers],
            "required_headers": list(self.required_headers),
            "forbidden_user_agents": list(self.forbidden_user_agents),
            "forbidden_request_re": list(self.forbidden_request_patterns),
            "max_request_length_bytes": self.max_request_body_bytes,
            "forbidden_response_codes": sorted(self.forbidden_response_status_codes),
            "forbidden_response_re": list(self.forbidden_response_patterns),
            "max_response_length_bytes": self.max_response_body_bytes,
        }


@dataclass(frozen=True)
class RuleSet:
    """Ordered, immutable collection of rules.

    Built once at startup and shared read-only by every exchange. Endpoints
    need not be unique; the first rule in order wins.
    """

    rules: tuple[Rule, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(self.rules))

    def select(self, key: str | None) -> Rule | None:
        """Return the first rule whose endpoint equals ``key``."""
        if key is None:
            return None
        for rule in self.rules:
            if rule.endpoint == key:
                return rule
        return None

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __bool__(self) -> bool:
        return bool(self.rules)
