# api/server.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from prometheus_client import make_asgi_app
from slowapi.errors import RateLimitExceeded

from api.routes.doxy import limiter
from api.routes.doxy import router as doxy_router
from api.routes.proxy import router as proxy_router
from core.config import Settings
from core.pipeline import DeploymentPipeline
from core.proxy_manager import ProxyManager
from core.registry import DeploymentRegistry


def create_app(
    settings: Settings,
    registry: Optional[DeploymentRegistry] = None,
    pipeline: Optional[DeploymentPipeline] = None,
    proxy: Optional[ProxyManager] = None,
) -> FastAPI:
    """Wire the registry, pipeline and proxy into a FastAPI app.

    Collaborators may be passed in (tests do); anything omitted is built from
    ``settings``.
    """
    # an empty registry is falsy, so test for None explicitly
    if registry is None:
        registry = DeploymentRegistry()
    if pipeline is None:
        pipeline = DeploymentPipeline(settings, registry)
    if proxy is None:
        proxy = ProxyManager(
            registry,
            routing_mode=settings.routing_mode,
            domain_suffix=settings.domain_suffix,
            timeout=settings.proxy_timeout,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Serving deployments from {settings.git_dir} "
            f"(routing by {settings.routing_mode}, ports from {settings.base_port})"
        )
        try:
            running = pipeline.engine.list_apps()
            logger.info(f"Docker reachable. Running managed containers: {len(running)}")
        except Exception as e:
            logger.warning(f"Could not list containers: {e}")

        yield

        await proxy.aclose()

    app = FastAPI(title="Doxy", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.pipeline = pipeline
    app.state.proxy = proxy

    # --- Rate Limiting (SlowAPI) ---
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded"},
        )

    @app.middleware("http")
    async def route_deployment_hosts(request: Request, call_next):
        # only /doxy is reserved; a deployment's own /health or /metrics wins
        if request.url.path != "/doxy" and proxy.owns(request):
            return await proxy.handle(request)
        return await call_next(request)

    # Mount Prometheus Metrics Endpoint
    app.mount("/metrics", make_asgi_app())

    @app.get("/health")
    async def health():
        return {"status": "ok", "deployments": len(registry)}

    app.include_router(doxy_router)
    # must stay last: it matches every path
    app.include_router(proxy_router)
    return app
