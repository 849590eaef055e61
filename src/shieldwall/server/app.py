"""aiohttp listener that feeds inbound exchanges to the orchestrator."""

from __future__ import annotations

import asyncio

import httpx
import structlog
from aiohttp import web
from aiohttp.http_exceptions import HttpProcessingError

from shieldwall.core.config import FirewallSettings
from shieldwall.core.exceptions import BodyReadFailure
from shieldwall.observability.metrics import generate_metrics, get_content_type
from shieldwall.policy.rules import RuleSet
from shieldwall.proxy.orchestrator import (
    ProxyOrchestrator,
    ProxyRequest,
    ProxyResponse,
    check_service_addr,
    create_upstream_client,
)

logger = structlog.get_logger()


def parse_bind(bind: str) -> tuple[str, int]:
    """Parse bind address into host and port."""
    if ":" in bind:
        host, port = bind.rsplit(":", 1)
        return host or "0.0.0.0", int(port)
    return "0.0.0.0", int(bind)


def _body_reader(request: web.Request):
    async def read() -> bytes:
        try:
            return await request.read()
        except web.HTTPRequestEntityTooLarge as e:
            raise BodyReadFailure(f"Request body too large: {e.reason}") from e
        except (OSError, asyncio.IncompleteReadError, HttpProcessingError) as e:
            raise BodyReadFailure(f"Failed to read request body: {e}") from e

    return read


def to_proxy_request(request: web.Request) -> ProxyRequest:
    return ProxyRequest(
        method=request.method,
        path=request.path,
        target=request.raw_path,
        headers=request.headers,
        read_body=_body_reader(request),
    )


def to_web_response(response: ProxyResponse) -> web.Response:
    return web.Response(
        status=response.status,
        body=response.body,
        headers=response.headers,
    )


class FirewallServer:
    """Reverse proxy listener with an optional control plane.

    Every method and path on the proxy plane goes through
    ProxyOrchestrator.handle. The control plane, when ``metrics_addr`` is set,
    serves /health and /metrics on a separate bind.
    """

    def __init__(
        self,
        settings: FirewallSettings,
        rules: RuleSet,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.rules = rules
        check_service_addr(settings.service_addr)
        self._client = client or create_upstream_client(settings.request_timeout or None)
        self._owns_client = client is None
        self.orchestrator = ProxyOrchestrator(
            rules=rules,
            service_addr=settings.service_addr,
            client=self._client,
            request_timeout=settings.request_timeout,
        )
        self._proxy_runner: web.AppRunner | None = None
        self._control_runner: web.AppRunner | None = None

    def create_proxy_app(self) -> web.Application:
        app = web.Application(client_max_size=self.settings.max_body_size)
        app.router.add_route("*", "/{path:.*}", self._handle_http_request)
        return app

    def create_control_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._handle_health_check)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def _handle_http_request(self, request: web.Request) -> web.Response:
        response = await self.orchestrator.handle(to_proxy_request(request))
        return to_web_response(response)

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy", "rules": len(self.rules)})

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )

    async def start(self) -> None:
        """Start the proxy plane and, if configured, the control plane."""
        self._proxy_runner = web.AppRunner(self.create_proxy_app())
        await self._proxy_runner.setup()
        host, port = parse_bind(self.settings.addr)
        await web.TCPSite(self._proxy_runner, host, port).start()
        logger.info(
            "Proxy plane started",
            host=host,
            port=port,
            backend=self.settings.service_addr,
            rules=len(self.rules),
        )

        if self.settings.metrics_addr:
            self._control_runner = web.AppRunner(self.create_control_app())
            await self._control_runner.setup()
            control_host, control_port = parse_bind(self.settings.metrics_addr)
            await web.TCPSite(self._control_runner, control_host, control_port).start()
            logger.info("Control plane started", host=control_host, port=control_port)

    async def stop(self) -> None:
        """Stop both planes and release the backend client."""
        logger.info("Stopping firewall...")
        if self._proxy_runner:
            await self._proxy_runner.cleanup()
            self._proxy_runner = None
        if self._control_runner:
            await self._control_runner.cleanup()
            self._control_runner = None
        if self._owns_client:
            await self._client.aclose()
        logger.info("Firewall stopped")
