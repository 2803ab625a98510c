"""Pressroom Engine - FastAPI Application."""

import logging

import structlog
from fastapi import FastAPI

from app import __version__
from app.config import get_settings
from app.core.lifespan import lifespan
from app.core.middleware import setup_middleware
from app.core.sentry import init_sentry
from app.routers import distribution, health, jobs

settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

init_sentry(settings)

# Conditionally disable docs in production (set DOCS_ENABLED=false)
app = FastAPI(
    title="Pressroom Engine",
    description="Background jobs and social distribution for the blog platform",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
)

if not settings.docs_enabled:
    logger.info("api_docs_disabled", hint="DOCS_ENABLED=false")

setup_middleware(app, settings)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(jobs.router)  # /jobs, admin token required
app.include_router(distribution.router)  # /distribution, admin token required


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "Pressroom Engine",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
