"""
FastAPI Application Factory

Creates and configures the back-office API application.
"""

from typing import Any, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from backoffice.config import get_settings
from backoffice.errors import register_error_handlers
from backoffice.serving.api.middleware import (
    RequestLoggingMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from backoffice.serving.api.routes import (
    dashboard_router,
    health_router,
    targets_router,
)


def create_api_app(lifespan: Optional[Callable[[FastAPI], Any]] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        lifespan: Startup/shutdown context; tests pass none and wire the
            database themselves

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Jewellery Back-Office API",
        description="Admin dashboard reporting and target tracking",
        version=settings.version,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # Add CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add compression
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Custom middleware
    app.add_middleware(RequestLoggingMiddleware, user_header=settings.security.user_header)
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.is_production)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.security.rate_limit_requests,
        window_seconds=settings.security.rate_limit_window_seconds,
    )

    register_error_handlers(app)

    # API routes
    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(dashboard_router, prefix="/api/v1/admin/dashboard", tags=["Dashboard"])
    app.include_router(targets_router, prefix="/api/v1/targets", tags=["Targets"])

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Jewellery Back-Office API",
            "version": settings.version,
            "environment": settings.app_env,
            "documentation": "/docs",
        }

    return app
