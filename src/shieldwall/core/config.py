"""Configuration types with environment variable support.

Process settings can be configured via environment variables with the
SHIELDWALL_ prefix. Example: SHIELDWALL_SERVICE_ADDR=http://backend:8080.

Rules live in a YAML or TOML file:

    rules:
      - endpoint: /login
        forbidden_headers: ["X-Debug: 1"]
        required_headers: [X-Api-Key]
        forbidden_user_agents: ["curl/.*"]
        forbidden_request_re: ["(?i)drop table"]
        max_request_length_bytes: 1024
        forbidden_response_codes: [500]
        forbidden_response_re: ["secret"]
        max_response_length_bytes: 4096
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from shieldwall.core.exceptions import ConfigInvalid
from shieldwall.policy.rules import Rule, RuleSet

HEADER_SEPARATOR = ": "


_PARSERS = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".toml": tomllib.loads,
}


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Parse a rule file into a mapping, picking the parser by suffix.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the suffix is not .yaml/.yml/.toml, the file is not
            UTF-8, it does not parse, or its top level is not a mapping.
    """
    path = Path(path)
    parse = _PARSERS.get(path.suffix.lower())
    if parse is None:
        raise ValueError(f"Unsupported rule file format {path.suffix!r}: {path}")

    try:
        data = parse(path.read_text(encoding="utf-8"))
    except UnicodeDecodeError as e:
        raise ValueError(f"Rule file {path} is not UTF-8: {e}") from e
    except (yaml.YAMLError, tomllib.TOMLDecodeError) as e:
        raise ValueError(f"Cannot parse rule file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Rule file {path} must hold a mapping at the top level")
    return data


def parse_header_spec(spec: str, endpoint: str) -> tuple[str, str]:
    """Split a ``"Name: value"`` entry on the first separator."""
    name, sep, value = spec.partition(HEADER_SEPARATOR)
    if not sep or not name:
        raise ConfigInvalid(
            f"Forbidden header must look like 'Name{HEADER_SEPARATOR}value'",
            endpoint=endpoint,
            pattern=spec,
        )
    return name, value


class RuleConfig(BaseModel):
    """One entry of the ``rules`` list, using the configuration file keys."""

    model_config = ConfigDict(extra="forbid")

    endpoint: str
    forbidden_headers: list[str] = Field(
        default_factory=list,
        description="'Name: value' pairs rejected on request and response.",
    )
    required_headers: list[str] = Field(
        default_factory=list,
        description="Header names that must be present on request and response.",
    )
    forbidden_user_agents: list[str] = Field(default_factory=list)
    forbidden_request_re: list[str] = Field(default_factory=list)
    max_request_length_bytes: int = Field(default=0, ge=0)
    forbidden_response_codes: list[int] = Field(default_factory=list)
    forbidden_response_re: list[str] = Field(default_factory=list)
    max_response_length_bytes: int = Field(default=0, ge=0)

    def to_rule(self) -> Rule:
        """Convert to an immutable Rule, compiling its patterns.

        Raises:
            ConfigInvalid: If a header spec or regex is malformed.
        """
        return Rule(
            endpoint=self.endpoint,
            forbidden_headers=tuple(
                parse_header_spec(spec, self.endpoint) for spec in self.forbidden_headers
            ),
            required_headers=tuple(self.required_headers),
            forbidden_user_agents=tuple(self.forbidden_user_agents),
            forbidden_request_patterns=tuple(self.forbidden_request_re),
            max_request_body_bytes=self.max_request_length_bytes,
            forbidden_response_status_codes=frozenset(self.forbidden_response_codes),
            forbidden_response_patterns=tuple(self.forbidden_response_re),
            max_response_body_bytes=self.max_response_length_bytes,
        )


class FirewallConfig(BaseModel):
    """Top-level rule file."""

    model_config = ConfigDict(extra="forbid")

    rules: list[RuleConfig] = Field(default_factory=list)

    def to_rule_set(self) -> RuleSet:
        return RuleSet(tuple(rule.to_rule() for rule in self.rules))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FirewallConfig:
        return cls.model_validate(data)


def load_rule_set(path: str | Path) -> RuleSet:
    """Load, validate and compile a rule file.

    Every failure, from a missing file to an unparsable regex, is reported as
    ConfigInvalid so startup has a single failure type to handle.
    """
    try:
        data = load_config_from_file(path)
    except (OSError, ValueError) as e:
        raise ConfigInvalid(str(e)) from e

    try:
        config = FirewallConfig.from_dict(data)
    except ValidationError as e:
        raise ConfigInvalid(f"Invalid rule configuration in {path}: {e}") from e

    return config.to_rule_set()


class FirewallSettings(BaseSettings):
    """Process settings.

    All settings can be overridden via environment variables:
    - SHIELDWALL_SERVICE_ADDR: Backend base URL
    - SHIELDWALL_ADDR: Listen address (host:port)
    - SHIELDWALL_CONF: Rule file path
    - SHIELDWALL_REQUEST_TIMEOUT: Backend deadline per exchange (seconds)
    - etc.
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIELDWALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service_addr: str = Field(
        default="http://localhost:8080",
        description="Backend service base URL.",
    )
    addr: str = Field(
        default="localhost:8081",
        description="Address the firewall listens on (host:port).",
    )
    conf: str = Field(
        default="./configs/example.yaml",
        description="Path to the YAML or TOML rule file.",
    )
    request_timeout: float = Field(
        default=5.0,
        ge=0,
        description="Deadline for the backend call per exchange (seconds). 0 for indefinite.",
    )
    max_body_size: int = Field(
        default=64 * 1024 * 1024,
        gt=0,
        description="Maximum inbound request body accepted by the listener (bytes).",
    )
    metrics_addr: str | None = Field(
        default=None,
        description="Optional control plane bind (host:port) serving /health and /metrics.",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warning or error.",
    )


_settings: FirewallSettings | None = None


def get_settings() -> FirewallSettings:
    """Get the cached process settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = FirewallSettings()
    return _settings


def clear_settings() -> None:
    """Clear the cached settings. Useful for testing."""
    global _settings
    _settings = None
