"""otpauth - FastAPI Application Factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from otpauth.api import api_router
from otpauth.api.errors import register_error_handlers
from otpauth.api.health import router as health_router
from otpauth.core import settings, setup_logging
from otpauth.core.cache import close_cache_store
from otpauth.core.logging import get_logger

# Import all models to ensure they're registered with Base
from otpauth.models import OtpCode, RefreshToken, TokenBlacklist, User  # noqa: F401
from otpauth.services.cleanup import TokenCleanupService

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(level=settings.log_level, format_type=settings.log_format)
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")

    for warning in settings.check_security_configuration():
        logger.warning(f"Security configuration: {warning}")

    cleanup_service = TokenCleanupService.get_instance()
    await cleanup_service.start()

    yield

    logger.info("Shutting down...")
    await cleanup_service.stop()
    await close_cache_store()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Phone number OTP authentication and token service",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
        expose_headers=["Authorization", "Retry-After"],
    )

    register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(api_router)

    return app


# Application instance
app = create_app()
