"""
FastAPI Jira Relay Application Factory
======================================

This is the main entry point for the relay service that sits between the
Figma plugin (running in a browser sandbox) and Jira Cloud.

Architecture:
    Figma Plugin → Relay (this service) → Jira Cloud REST API v3

Routers:
    - /api/jira-proxy : Relay one Jira REST call (rate limited)
    - /               : Liveness probe
    - /health         : Health check endpoint

Environment Variables:
    - PORT: Listening port (default: 3000)
    - JIRA_PROXY_ALLOWED_ORIGINS: Comma-separated CORS origins (default: *)
    - RATE_LIMIT_WINDOW_MINUTES: Rate-limit window (default: 15)
    - RATE_LIMIT_MAX_REQUESTS: Requests per IP per window (default: 200)
    - UPSTREAM_TIMEOUT_SECONDS: Total Jira call deadline (default: 20)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn relay.app.main:app --reload --host 0.0.0.0 --port 3000

    Production:
        uvicorn relay.app.main:app --host 0.0.0.0 --port 3000 --workers 4

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn relay.app.main:app --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
import httpx
import uvicorn

from relay.app.config import Settings, get_settings, validate_configuration
from relay.app.models import HealthResponse, StatusResponse
from relay.app.proxy import build_proxy_router

SERVICE_NAME = "jira-relay"
SERVICE_VERSION = "1.0.0"
LIVENESS_MESSAGE = "Figma to Jira Proxy Server is active."
UNHANDLED_ERROR_MESSAGE = "An unexpected error occurred on the proxy server!"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


class AppState:
    """
    Per-application state container.

    Holds the shared outbound HTTP client.
    """
    def __init__(self):
        self.upstream_client: Optional[httpx.AsyncClient] = None
        self.owns_upstream_client: bool = False


def build_limiter(settings: Settings) -> Limiter:
    """
    Rate limiter keyed by client IP, in-memory storage.

    No default limit: only routes decorated with ``limiter.limit`` (the
    /api router) are counted. Responses carry X-RateLimit-* headers.
    """
    return Limiter(
        key_func=get_remote_address,
        headers_enabled=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Report configuration warnings
        - Create the shared httpx.AsyncClient for Jira calls

    Shutdown tasks:
        - Close the HTTP client
    """
    settings: Settings = app.state.settings
    app_state: AppState = app.state.app_state

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("relay.main")

    report = validate_configuration(settings)
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    if app_state.upstream_client is None:
        app_state.upstream_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.UPSTREAM_TIMEOUT_SECONDS),
            follow_redirects=True,
        )
        app_state.owns_upstream_client = True

    logger.info(f"Figma to Jira Proxy Server listening on port {settings.PORT}")
    logger.info(f"Allowed CORS origins: {settings.JIRA_PROXY_ALLOWED_ORIGINS}")

    yield

    logger.info("Shutting down relay service")

    if app_state.owns_upstream_client:
        await app_state.upstream_client.aclose()
        app_state.upstream_client = None
        app_state.owns_upstream_client = False
        logger.info("Closed upstream HTTP client")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - Rate limiting on /api routes
        - CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Configuration to use; loaded from the environment when omitted

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Jira Relay",
        description="Authenticated Jira REST relay for the Figma plugin",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.settings = settings
    app.state.app_state = AppState()

    # Rate limiting
    limiter = build_limiter(settings)
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        logging.getLogger("relay.main").warning(
            "Rate limit exceeded",
            extra={"client": get_remote_address(request), "path": request.url.path}
        )
        response = JSONResponse(
            status_code=429,
            content={"error": settings.rate_limit_message}
        )
        return request.app.state.limiter._inject_headers(
            response, getattr(request.state, "view_rate_limit", None)
        )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    # Proxy router: Relays Jira REST calls (the only rate-limited routes)
    app.include_router(
        build_proxy_router(limiter, settings.rate_limit),
        prefix="/api",
        tags=["Jira Proxy"]
    )

    # Root endpoint
    @app.get("/", tags=["System"], response_model=StatusResponse)
    async def root() -> StatusResponse:
        """Liveness probe."""
        return StatusResponse(message=LIVENESS_MESSAGE, status="OK")

    # Health check endpoint
    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """
        Health check endpoint.

        Returns:
            HealthResponse: Service health information
        """
        return HealthResponse(
            status="ok",
            service=SERVICE_NAME,
            version=SERVICE_VERSION
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a generic error response.
        """
        logger = logging.getLogger("relay.main")
        logger.error(
            f"Unhandled error in proxy: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={"error": UNHANDLED_ERROR_MESSAGE}
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    """
    Direct execution entry point.

    This allows running the service directly with: python -m relay.app.main
    """
    settings = get_settings()

    uvicorn.run(
        "relay.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
