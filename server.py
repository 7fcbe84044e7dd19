"""
API server for LinkRanger AI usage metering.

Assembles the FastAPI application from the app package: routes, exception
handlers, request logging, and the service container built at startup.
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

# Configure structured logging FIRST, before other imports that use logging
from src.utils.logging import setup_logging

logger = setup_logging()

from src.config import Settings, get_settings
from src.db import close_pool, ensure_schema

from app.dependencies.container import ServiceContainer, build_container
from app.error_handlers import register_exception_handlers
from app.middleware import RequestLoggingMiddleware
from app.routes import analysis_router, health_router, plans_router, usage_router

SENSITIVE_KEYS = (
    "password", "api_key", "apikey", "secret", "token",
    "authorization", "bearer", "credential",
)


def filter_sensitive_breadcrumbs(crumb, hint):
    """Scrub auth headers and secret-looking query params from Sentry breadcrumbs."""
    if crumb.get("category") == "http" and isinstance(crumb.get("data"), dict):
        data = crumb["data"]
        headers = data.get("headers")
        if isinstance(headers, dict):
            for key in list(headers.keys()):
                if any(s in key.lower() for s in SENSITIVE_KEYS):
                    headers[key] = "[FILTERED]"
        url = data.get("url")
        if isinstance(url, str):
            for key in SENSITIVE_KEYS:
                url = re.sub(f"({key}=)[^&]*", r"\1[FILTERED]", url, flags=re.IGNORECASE)
            data["url"] = url

    if crumb.get("category") in ("console", "log") and "message" in crumb:
        message = str(crumb["message"]).lower()
        if any(key in message for key in SENSITIVE_KEYS):
            crumb["message"] = "[FILTERED - may contain sensitive data]"

    return crumb


def init_sentry(settings: Settings) -> None:
    if not settings.is_sentry_configured:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return

    sentry_settings = settings.sentry
    sentry_sdk.init(
        dsn=sentry_settings.sentry_dsn,
        environment=sentry_settings.sentry_environment,
        sample_rate=1.0,
        traces_sample_rate=sentry_settings.sentry_traces_sample_rate,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        before_breadcrumb=filter_sensitive_breadcrumbs,
        send_default_pii=False,
        server_name=sentry_settings.server_name,
        release=sentry_settings.sentry_release,
    )
    logger.info(f"Sentry initialized for environment: {sentry_settings.sentry_environment}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services on startup; drain AI work and close the pool on shutdown."""
    settings: Settings = app.state.settings

    if getattr(app.state, "container", None) is None:
        if settings.storage_backend == "postgres":
            await ensure_schema()
        app.state.container = build_container(settings)

    container: ServiceContainer = app.state.container
    logger.info(f"Usage service started (storage={container.storage_backend})")

    yield

    if container.runner is not None:
        try:
            await container.runner.drain()
        except Exception as e:
            logger.warning("Failed to drain in-flight AI operations: %s", e)
    try:
        await close_pool()
    except Exception as e:
        logger.warning("Failed to close Postgres pool: %s", e)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    A prebuilt container (tests) is used as-is; otherwise one is built
    from settings during startup.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="LinkRanger AI Usage API",
        description=(
            "AI usage metering and plan-limit enforcement for LinkRanger. "
            "Authenticate with a Firebase ID token: `Authorization: Bearer <token>`."
        ),
        version="1.0.0",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Health checks"},
            {"name": "usage", "description": "Quota checks, usage recording and statistics"},
            {"name": "plans", "description": "Plan catalog and the caller's effective plan"},
            {"name": "ai", "description": "Metered AI analysis"},
        ],
    )
    app.state.settings = settings
    app.state.container = container

    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "Accept"],
        expose_headers=["X-Request-ID", "X-Response-Time"],
        max_age=600,
    )

    if settings.logging.request_logging_enabled:
        app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router)
    app.include_router(usage_router)
    app.include_router(plans_router)
    app.include_router(analysis_router)

    return app


settings = get_settings()
logger.info("Configuration loaded", extra=settings.get_config_summary())
init_sentry(settings)

app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
