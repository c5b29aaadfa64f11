from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from tokengate import __version__
from tokengate.api.error_handling import register_exception_handlers
from tokengate.api.routes import router
from tokengate.api.schemas import HealthResponse
from tokengate.logging import get_logger, set_correlation_id
from tokengate.service.runtime import Runtime

logger = get_logger(__name__)

# Responses on these prefixes carry credentials and must never be cached
_NO_STORE_PREFIXES = ("/auth/", "/api/")


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the token server around ``runtime`` (or one built from the environment)."""
    runtime = runtime or Runtime.from_settings()
    settings = runtime.settings

    app = FastAPI(title="tokengate", version=__version__)
    app.state.runtime = runtime

    # Credentials (the renewal cookie) require an explicit origin, never "*"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID", "WWW-Authenticate"],
        max_age=3600,
    )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Tag every log line of a request with its X-Request-ID (or a fresh uuid)."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        if request.url.path.startswith(_NO_STORE_PREFIXES):
            response.headers.setdefault("Cache-Control", "no-store")
        return response

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/healthz", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    logger.info("app_created", frontend_url=settings.frontend_url)
    return app
