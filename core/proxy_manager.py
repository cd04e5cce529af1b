# core/proxy_manager.py
from typing import Optional, Tuple
from urllib.parse import unquote

import httpx
from loguru import logger
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from .metrics import PROXY_REQUEST_COUNTER
from .registry import DeploymentRegistry
from .schemas import DeploymentRecord

HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}


class RouteNotFound(LookupError):
    pass


class ProxyManager:
    """Resolves a request to a deployment and forwards it to the container."""

    def __init__(
        self,
        registry: DeploymentRegistry,
        routing_mode: str = "subdomain",
        domain_suffix: str = "telltale.xyz",
        upstream_host: str = "localhost",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if routing_mode not in ("subdomain", "path"):
            raise ValueError(f"Unknown routing mode: {routing_mode}")
        self.registry = registry
        self.routing_mode = routing_mode
        self.domain_suffix = domain_suffix.strip(".")
        self.upstream_host = upstream_host
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=False)
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def deployment_name(self, host: str, path: str) -> Tuple[str, str]:
        """Return ``(name, upstream_path)`` for a request, or raise RouteNotFound."""
        if self.routing_mode == "path":
            trimmed = path.lstrip("/")
            name, _, rest = trimmed.partition("/")
            name = unquote(name)
            if not name:
                raise RouteNotFound("No deployment prefix found.")
            return name, "/" + rest

        hostname = (host or "").strip().lower()
        # drop the port, leaving bracketed IPv6 literals alone
        if hostname.rsplit(":", 1)[-1].isdigit() and not hostname.endswith("]"):
            hostname = hostname.rsplit(":", 1)[0]
        suffix = "." + self.domain_suffix
        name = hostname[: -len(suffix)] if hostname.endswith(suffix) else hostname
        if not name or name == self.domain_suffix:
            raise RouteNotFound("No deployment prefix found.")
        return name, path or "/"

    @staticmethod
    def request_path(request: Request) -> str:
        """The path as the client sent it, percent-escapes intact."""
        raw = request.scope.get("raw_path")
        return raw.decode("latin-1") if raw else request.url.path

    def owns(self, request: Request) -> bool:
        """Whether ``request`` names a registered deployment."""
        try:
            self.resolve(request.headers.get("host", ""), self.request_path(request))
        except RouteNotFound:
            return False
        return True

    def resolve(self, host: str, path: str) -> Tuple[DeploymentRecord, str]:
        name, upstream_path = self.deployment_name(host, path)
        record = self.registry.lookup(name)
        if record is None:
            raise RouteNotFound(f"Deployment {name} not found.")
        return record, upstream_path

    def upstream_url(self, record: DeploymentRecord, path: str, query: str = "") -> str:
        url = f"http://{self.upstream_host}:{record.host_port}{path}"
        return f"{url}?{query}" if query else url

    @staticmethod
    def forward_headers(request: Request) -> dict:
        headers = {
            k: v
            for k, v in request.headers.items()
            if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() != "content-length"
        }
        client_ip = request.client.host if request.client else None
        if client_ip:
            prior = request.headers.get("x-forwarded-for")
            headers["x-forwarded-for"] = f"{prior}, {client_ip}" if prior else client_ip
        headers.setdefault("x-forwarded-host", request.headers.get("host", ""))
        headers.setdefault("x-forwarded-proto", request.url.scheme)
        return headers

    async def handle(self, request: Request) -> Response:
        path = self.request_path(request)
        try:
            record, upstream_path = self.resolve(request.headers.get("host", ""), path)
        except RouteNotFound as e:
            PROXY_REQUEST_COUNTER.labels(outcome="not_found").inc()
            logger.info(f"Proxy miss for {request.headers.get('host')}{path}: {e}")
            return PlainTextResponse(str(e), status_code=400)

        url = self.upstream_url(record, upstream_path, request.url.query)
        upstream_request = self.client.build_request(
            request.method,
            url,
            headers=self.forward_headers(request),
            content=await request.body(),
        )
        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            PROXY_REQUEST_COUNTER.labels(outcome="upstream_error").inc()
            logger.warning(f"Upstream {url} for {record.name} timed out: {e}")
            return PlainTextResponse(f"Deployment {record.name} timed out.", status_code=504)
        except httpx.RequestError as e:
            PROXY_REQUEST_COUNTER.labels(outcome="upstream_error").inc()
            logger.warning(f"Upstream {url} for {record.name} unavailable: {e}")
            return PlainTextResponse(f"Deployment {record.name} unavailable.", status_code=502)

        PROXY_REQUEST_COUNTER.labels(outcome="forwarded").inc()
        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        # raw list keeps repeated headers such as Set-Cookie
        response.raw_headers = [
            (k, v)
            for k, v in upstream.headers.raw
            if k.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
        ]
        return response
