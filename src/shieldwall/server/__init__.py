"""Shieldwall listener."""

from .app import FirewallServer, parse_bind, to_proxy_request, to_web_response

__all__ = ["FirewallServer", "parse_bind", "to_proxy_request", "to_web_response"]
