"""FastAPI application wiring for the civichub message service.

This module bootstraps the HTTP API:

- Configures logging, CORS (optional for the admin dashboard), Prometheus
  metrics and HTTP-level rate limiting.
- Builds the pipeline services once and shares them through ``app.state``.
- Mounts the message/webhook routes, the admin control surface and the
  golden-set evaluation routes.
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.throttling import limiter
from .routers import admin, evaluation, messages
from .services import Services, build_services

logger = logging.getLogger(__name__)


def create_app(services: Services | None = None) -> FastAPI:
    """Return a configured application; ``services`` defaults to env-built ones."""

    load_dotenv()
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        services.shutdown()

    app = FastAPI(title="civichub", version=__version__, lifespan=lifespan)
    app.state.services = services
    init_logging(app)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    # Optional CORS for the admin dashboard
    origins = list(services.settings.admin_ui_origins)
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Trace-Id", "X-Request-Id"],
        )
    app.include_router(messages.router)
    app.include_router(admin.router)
    app.include_router(evaluation.router)

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )

    @app.get("/api/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok", "in_flight": services.orchestrator.in_flight()}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    logger.info("civichub %s ready", __version__)
    return app


app = create_app()
