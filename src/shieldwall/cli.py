"""Shieldwall CLI - Command line interface."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
import structlog
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from shieldwall.core.config import FirewallSettings, get_settings, load_rule_set
from shieldwall.core.exceptions import ConfigInvalid
from shieldwall.policy.rules import RuleSet

console = Console()

BANNER = "shieldwall - per-endpoint traffic policy for a single backend"


def configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
    )


def _load_rules_or_exit(conf: str) -> RuleSet:
    try:
        return load_rule_set(conf)
    except ConfigInvalid as e:
        console.print(
            Panel(
                f"[red]{escape(e.message)}[/red]",
                title="Invalid configuration",
                border_style="red",
            )
        )
        sys.exit(1)


def _rules_table(rules: RuleSet) -> Table:
    table = Table(title=f"{len(rules)} rule(s)")
    table.add_column("Endpoint", style="cyan")
    table.add_column("Request checks")
    table.add_column("Response checks")
    for rule in rules:
        request_checks = []
        if rule.forbidden_headers or rule.required_headers:
            request_checks.append("headers")
        if rule.forbidden_user_agents:
            request_checks.append(f"{len(rule.forbidden_user_agents)} user agent(s)")
        if rule.forbidden_request_patterns:
            request_checks.append(f"{len(rule.forbidden_request_patterns)} body re")
        if rule.max_request_body_bytes:
            request_checks.append(f"<= {rule.max_request_body_bytes} B")
        response_checks = []
        if rule.forbidden_headers or rule.required_headers:
            response_checks.append("headers")
        if rule.forbidden_response_status_codes:
            codes = ",".join(str(c) for c in sorted(rule.forbidden_response_status_codes))
            response_checks.append(f"status {codes}")
        if rule.forbidden_response_patterns:
            response_checks.append(f"{len(rule.forbidden_response_patterns)} body re")
        if rule.max_response_body_bytes:
            response_checks.append(f"<= {rule.max_response_body_bytes} B")
        table.add_row(
            escape(rule.endpoint),
            ", ".join(request_checks) or "-",
            ", ".join(response_checks) or "-",
        )
    return table


@click.group(invoke_without_command=True)
@click.option("--service-addr", help="Backend service URL (default: http://localhost:8080)")
@click.option("--addr", help="Listen address host:port (default: localhost:8081)")
@click.option(
    "--conf",
    help="Rule file path, YAML or TOML (default: ./configs/example.yaml)",
)
@click.option(
    "--request-timeout",
    type=float,
    default=None,
    help="Backend deadline per exchange in seconds, 0 for indefinite (default: 5)",
)
@click.option(
    "--metrics-addr",
    default=None,
    help="Serve /health and /metrics on this host:port",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level (default: info)",
)
@click.pass_context
def main(
    ctx: click.Context,
    service_addr: str | None,
    addr: str | None,
    conf: str | None,
    request_timeout: float | None,
    metrics_addr: str | None,
    log_level: str | None,
):
    """Shieldwall - reverse proxy enforcing per-endpoint traffic policy.

    Options not given on the command line fall back to SHIELDWALL_*
    environment variables, then to the defaults.
    """
    if ctx.invoked_subcommand is not None:
        return

    overrides = {
        "service_addr": service_addr,
        "addr": addr,
        "conf": conf,
        "request_timeout": request_timeout,
        "metrics_addr": metrics_addr,
        "log_level": log_level,
    }
    settings = get_settings().model_copy(
        update={key: value for key, value in overrides.items() if value is not None}
    )
    configure_logging(settings.log_level)

    console.print(BANNER, style="cyan")
    rules = _load_rules_or_exit(settings.conf)

    console.print(f"Listening on {settings.addr}", style="yellow")
    console.print(f"Backend: {settings.service_addr}", style="dim")
    console.print(f"Rules: {len(rules)} from {settings.conf}", style="dim")
    timeout_str = f"{settings.request_timeout}s" if settings.request_timeout else "indefinite"
    console.print(f"Request timeout: {timeout_str}", style="dim")
    if settings.metrics_addr:
        console.print(f"Control plane: {settings.metrics_addr}", style="dim")

    try:
        asyncio.run(run_server(settings, rules))
    except ConfigInvalid as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")


async def run_server(settings: FirewallSettings, rules: RuleSet) -> None:
    """Run the firewall until cancelled."""
    from shieldwall.server.app import FirewallServer

    server = FirewallServer(settings, rules)
    try:
        await server.start()
        console.print("Firewall started, press Ctrl+C to stop", style="green")
        await asyncio.Event().wait()
    finally:
        await server.stop()


@main.command()
@click.argument("conf", type=click.Path(exists=True, dir_okay=False))
def check(conf: str):
    """Validate a rule file and list its rules.

    Exits non-zero if any rule is malformed, e.g. an unparsable regex.
    """
    rules = _load_rules_or_exit(conf)
    console.print(_rules_table(rules))
    console.print("[green]Configuration OK[/green]")


@main.command()
def version():
    """Show version information."""
    from shieldwall import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


if __name__ == "__main__":
    main()
