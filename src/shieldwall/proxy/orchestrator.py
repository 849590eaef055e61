"""Shieldwall proxy orchestration.

Drives one exchange through its states:

    RECEIVED -> REQUEST_VALIDATED -> FORWARDED -> RESPONSE_VALIDATED -> COMPLETED

with DENIED and ERRORED as terminal states reachable from any validation
step. Request validation always finishes before anything is sent to the
backend, and the backend response is fully buffered and validated before
any byte reaches the caller.

The orchestrator knows nothing about the listener. It takes a ProxyRequest
and returns a ProxyResponse; the aiohttp adapter in ``shieldwall.server``
does the conversion.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum

import httpx
import structlog
from multidict import CIMultiDict, MultiMapping

from shieldwall.core.exceptions import (
    BodyReadFailure,
    ConfigInvalid,
    ShieldwallError,
    UpstreamTimeout,
    UpstreamUnavailable,
    format_error_for_log,
)
from shieldwall.observability.metrics import DECISIONS, EXCHANGES, UPSTREAM_DURATION
from shieldwall.policy.rules import RuleSet
from shieldwall.policy.selector import select_request_rule, select_response_rule
from shieldwall.policy.validators import (
    BodySource,
    Decision,
    MatchContext,
    Verdict,
    validate_request,
    validate_response,
)
from shieldwall.proxy.headers import downstream_response_headers, upstream_request_headers

logger = structlog.get_logger()

DENIAL_BODY = b"Forbidden"
DEFAULT_REQUEST_TIMEOUT = 5.0


class ExchangeState(Enum):
    """States of a single proxied exchange."""

    RECEIVED = "received"
    REQUEST_VALIDATED = "request_validated"
    FORWARDED = "forwarded"
    RESPONSE_VALIDATED = "response_validated"
    COMPLETED = "completed"
    DENIED = "denied"
    ERRORED = "errored"


@dataclass
class ProxyRequest:
    """Inbound request as seen by the orchestrator.

    ``path`` is the decoded path used for rule selection; ``target`` is the
    raw path and query string as received, used to build the backend URL.
    """

    method: str
    path: str
    target: str
    headers: MultiMapping[str]
    read_body: BodySource


@dataclass
class ProxyResponse:
    """Final response for the caller."""

    status: int
    body: bytes
    state: ExchangeState
    headers: CIMultiDict[str] = field(default_factory=CIMultiDict)
    reason: str = ""

    @property
    def content_length(self) -> int:
        return len(self.body)


def denial_response(reason: str = "") -> ProxyResponse:
    """Fixed 403 response; carries no backend data."""
    return ProxyResponse(
        status=403,
        body=DENIAL_BODY,
        state=ExchangeState.DENIED,
        headers=CIMultiDict({"Content-Type": "text/plain; charset=utf-8"}),
        reason=reason,
    )


def error_response(error: ShieldwallError) -> ProxyResponse:
    """Generic 5xx response for an infrastructure failure."""
    return ProxyResponse(
        status=error.status,
        body=error.public_message.encode(),
        state=ExchangeState.ERRORED,
        headers=CIMultiDict({"Content-Type": "text/plain; charset=utf-8"}),
        reason=error.message,
    )


def create_upstream_client(request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT) -> httpx.AsyncClient:
    """Create the HTTP client used to talk to the backend.

    Redirects are not followed: the backend's Location header selects the
    response-phase rule and must reach the caller unchanged.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(request_timeout),
        follow_redirects=False,
    )


def check_service_addr(service_addr: str) -> str:
    """Return ``service_addr`` without a trailing slash.

    Raises:
        ConfigInvalid: If it is not an absolute http(s) URL.
    """
    try:
        url = httpx.URL(service_addr)
    except httpx.InvalidURL as e:
        raise ConfigInvalid(f"Invalid service address {service_addr!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigInvalid(f"Service address must be an http(s) URL: {service_addr!r}")
    return service_addr.rstrip("/")


def _drop_client_defaults(
    upstream_request: httpx.Request,
    client: httpx.AsyncClient,
    supplied: list[tuple[str, str]],
) -> None:
    # build_request merges the client's default headers (User-Agent,
    # Accept-Encoding, ...); the backend must only see what the caller sent.
    names = {name.lower() for name, _ in supplied}
    for name in client.headers.keys():
        if name.lower() not in names and name in upstream_request.headers:
            del upstream_request.headers[name]


class UpstreamBody:
    """Backend response body, read from the network once.

    ``raw`` is what the backend put on the wire and what the caller gets back.
    ``decoded`` undoes any Content-Encoding httpx understands, so body
    patterns and size ceilings see the content rather than gzip bytes.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._raw: bytes | None = None

    async def raw(self) -> bytes:
        if self._raw is None:
            try:
                self._raw = b"".join([chunk async for chunk in self._response.aiter_raw()])
            except (httpx.TransportError, httpx.StreamError) as e:
                raise BodyReadFailure(f"Failed to read backend response body: {e}") from e
        return self._raw

    async def decoded(self) -> bytes:
        raw = await self.raw()
        encoding = self._response.headers.get("Content-Encoding")
        if not encoding:
            return raw
        try:
            return httpx.Response(200, headers={"Content-Encoding": encoding}, content=raw).content
        except httpx.DecodingError as e:
            raise BodyReadFailure(f"Failed to decode backend response body: {e}") from e


class ProxyOrchestrator:
    """Validates, forwards and re-validates exchanges against one backend.

    Holds no per-exchange state, so one instance serves all concurrent
    handlers. The rule set is immutable and shared read-only.
    """

    def __init__(
        self,
        rules: RuleSet,
        service_addr: str,
        client: httpx.AsyncClient,
        request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.rules = rules
        self.service_addr = check_service_addr(service_addr)
        self.request_timeout = request_timeout or None
        self._client = client

    def backend_url(self, target: str) -> str:
        if not target.startswith("/"):
            target = "/" + target
        return f"{self.service_addr}{target}"

    async def handle(self, request: ProxyRequest) -> ProxyResponse:
        """Run one exchange to a terminal state. Never raises ShieldwallError."""
        log = logger.bind(method=request.method, path=request.path)

        request_ctx = MatchContext(
            rule=select_request_rule(self.rules, request.path),
            source=request.read_body,
        )
        verdict = await validate_request(request_ctx, request.headers)
        DECISIONS.labels(phase="request", decision=verdict.decision.value).inc()
        if not verdict.allowed:
            return self._reject("request", verdict, log)

        try:
            body = await request_ctx.body()
            log.debug(
                "Exchange state",
                state=ExchangeState.REQUEST_VALIDATED.value,
                endpoint=request_ctx.rule.endpoint if request_ctx.rule else None,
                body_bytes=len(body),
            )
            response = await self._forward(request, body, log)
        except ShieldwallError as e:
            return self._fail(e, log)

        if response.state is ExchangeState.COMPLETED:
            EXCHANGES.labels(outcome="completed").inc()
            log.debug("Exchange completed", status=response.status, body_bytes=len(response.body))
        return response

    async def _send(self, request: ProxyRequest, body: bytes) -> httpx.Response:
        headers = upstream_request_headers(request.headers.items())
        upstream_request = self._client.build_request(
            request.method,
            self.backend_url(request.target),
            headers=headers,
            content=body,
        )
        _drop_client_defaults(upstream_request, self._client, headers)
        try:
            return await self._client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"Backend timed out: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamUnavailable(f"Backend unreachable: {e}") from e

    async def _forward(self, request: ProxyRequest, body: bytes, log) -> ProxyResponse:
        start = time.monotonic()
        try:
            async with asyncio.timeout(self.request_timeout):
                upstream = await self._send(request, body)
                try:
                    log.debug(
                        "Exchange state",
                        state=ExchangeState.FORWARDED.value,
                        status=upstream.status_code,
                    )
                    upstream_body = UpstreamBody(upstream)
                    response_ctx = MatchContext(
                        rule=select_response_rule(
                            self.rules, upstream.headers.get("Location"), request.path
                        ),
                        source=upstream_body.decoded,
                    )
                    verdict = await validate_response(
                        response_ctx,
                        upstream.status_code,
                        CIMultiDict(upstream.headers.multi_items()),
                    )
                    DECISIONS.labels(phase="response", decision=verdict.decision.value).inc()
                    if not verdict.allowed:
                        return self._reject("response", verdict, log)

                    payload = await upstream_body.raw()
                    log.debug("Exchange state", state=ExchangeState.RESPONSE_VALIDATED.value)
                finally:
                    await upstream.aclose()
        except TimeoutError as e:
            raise UpstreamTimeout(f"No backend response within {self.request_timeout}s") from e
        finally:
            UPSTREAM_DURATION.observe(time.monotonic() - start)

        return ProxyResponse(
            status=upstream.status_code,
            body=payload,
            state=ExchangeState.COMPLETED,
            headers=downstream_response_headers(
                upstream.headers.multi_items(),
                keep_length=request.method == "HEAD" or upstream.status_code == 304,
            ),
        )

    def _reject(self, phase: str, verdict: Verdict, log) -> ProxyResponse:
        if verdict.decision is Decision.ERROR and verdict.error is not None:
            return self._fail(verdict.error, log, phase=phase)
        EXCHANGES.labels(outcome="denied").inc()
        log.info("Exchange denied", phase=phase, reason=verdict.reason)
        return denial_response(verdict.reason)

    def _fail(self, error: ShieldwallError, log, phase: str | None = None) -> ProxyResponse:
        EXCHANGES.labels(outcome="errored").inc()
        if isinstance(error, UpstreamUnavailable):
            log.warning("Exchange errored", phase=phase, **format_error_for_log(error))
        else:
            log.error("Exchange errored", phase=phase, **format_error_for_log(error))
        return error_response(error)
