"""Middleware and error handler configuration for the FastAPI application."""

import os
import time
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app import __version__
from app.config import Settings
from app.core.errors import EngineError, ErrorCode

logger = structlog.get_logger(__name__)


def error_envelope(code: str, message: str, **extra) -> dict:
    return {
        "success": False,
        "error": {"code": code, "message": message, **extra},
    }


def setup_rate_limiter(app: FastAPI, settings: Settings) -> Limiter:
    """Set up rate limiter and attach to app."""
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit_requests_per_minute}/minute"],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    # mypy: slowapi handler signature differs from FastAPI expected type
    app.add_exception_handler(
        RateLimitExceeded, _rate_limit_exceeded_handler  # type: ignore[arg-type]
    )
    return limiter


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware."""
    cors_origins_str = os.environ.get("CORS_ORIGINS", "*")
    if cors_origins_str == "*":
        cors_origins = ["*"]
        logger.warning("cors_allow_all", hint="Set CORS_ORIGINS in production")
    else:
        cors_origins = [origin.strip() for origin in cors_origins_str.split(",")]
        logger.info("cors_configured", origins=cors_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )


async def security_headers_middleware(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    # Add HSTS if behind TLS
    if request.headers.get("X-Forwarded-Proto") == "https":
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )

    return response


def create_request_middleware(settings: Settings):
    """Create request middleware with settings closure."""

    async def request_middleware(request: Request, call_next):
        """Add request ID, timing, size limits, and API key validation to all requests."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        headers = {"X-Request-ID": request_id, "X-API-Version": __version__}

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        # Skip auth for health, docs, and openapi endpoints
        public_paths = {"/health", "/docs", "/openapi.json", "/redoc", "/"}
        if settings.api_key and request.url.path not in public_paths:
            provided_key = request.headers.get(settings.api_key_header_name)
            if not provided_key:
                logger.warning("api_key_missing")
                return JSONResponse(
                    status_code=401,
                    content=error_envelope(
                        "UNAUTHORIZED",
                        f"API key required in {settings.api_key_header_name} header",
                    ),
                    headers=headers,
                )
            if provided_key != settings.api_key:
                logger.warning("api_key_invalid")
                return JSONResponse(
                    status_code=403,
                    content=error_envelope("FORBIDDEN", "Invalid API key"),
                    headers=headers,
                )

        content_length = request.headers.get("content-length")
        if content_length and int(content_length) > settings.max_request_body_size:
            logger.warning(
                "request_body_too_large",
                content_length=int(content_length),
                max_size=settings.max_request_body_size,
            )
            return JSONResponse(
                status_code=413,
                content=error_envelope(
                    "PAYLOAD_TOO_LARGE",
                    f"Request body exceeds {settings.max_request_body_size} bytes",
                ),
                headers=headers,
            )

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception("request_failed", error=str(e))
            return JSONResponse(
                status_code=500,
                content=error_envelope(
                    ErrorCode.INTERNAL_ERROR.value,
                    "Internal server error",
                    retryable=True,
                ),
                headers=headers,
            )

        duration_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"
        response.headers["X-API-Version"] = __version__

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        return response

    return request_middleware


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Map an EngineError to its status code and the public error envelope.

    The response carries the user-safe message; the full message and details
    go to the log.
    """
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "engine_error",
        code=exc.code.value,
        error=exc.message,
        details=exc.details,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"loc": ".".join(str(p) for p in err.get("loc", ())), "msg": err.get("msg")}
        for err in exc.errors()
    ]
    logger.info("request_validation_failed", errors=errors, path=request.url.path)
    return JSONResponse(
        status_code=400,
        content=error_envelope(
            ErrorCode.VALIDATION_ERROR.value,
            "Request validation failed",
            retryable=False,
            errors=errors,
        ),
    )


def setup_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, engine_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, request_validation_handler  # type: ignore[arg-type]
    )


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Set up all middleware for the application."""
    setup_rate_limiter(app, settings)
    setup_cors(app)
    setup_error_handlers(app)

    # Security headers (added first, runs last in middleware stack)
    app.middleware("http")(security_headers_middleware)

    # Request middleware (request ID, timing, auth, size limits)
    app.middleware("http")(create_request_middleware(settings))
