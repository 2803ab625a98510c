"""Sentry initialization and configuration."""

import os
from typing import Any, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from app import __version__
from app.config import Settings
from app.core.errors import EngineError, ErrorCode

logger = structlog.get_logger(__name__)

# 503s raised on purpose: the kill switch and an open channel circuit
EXPECTED_UNAVAILABLE = {ErrorCode.MODULE_DISABLED, ErrorCode.CIRCUIT_OPEN}

# Operator-triggered batch runs are rare and worth a full trace
ALWAYS_TRACED = ("/jobs/run", "/distribution/scheduled/run")


def _is_expected(exc: BaseException) -> bool:
    if isinstance(exc, EngineError) and exc.code in EXPECTED_UNAVAILABLE:
        return True
    status_code = getattr(exc, "status_code", None)
    return isinstance(status_code, int) and 400 <= status_code < 500


def _before_send(event: dict, hint: dict) -> Optional[dict]:
    """
    Drop events for outcomes the engine reports by design.

    Duplicate jobs, invalid transitions, validation failures and deliberate
    503s are not bugs. Everything else is captured.
    """
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]
        if exc_value is not None and _is_expected(exc_value):
            return None

    response = event.get("contexts", {}).get("response", {})
    if 400 <= response.get("status_code", 0) < 500:
        return None

    return event


def _create_traces_sampler(settings: Settings) -> Any:
    """Create a route-aware sampling function for Sentry traces."""

    def traces_sampler(sampling_context: dict) -> float:
        tx_name = sampling_context.get("transaction_context", {}).get("name", "")

        if tx_name.endswith("/health"):
            return 0.0
        if tx_name.endswith(ALWAYS_TRACED):
            return 1.0

        parent = sampling_context.get("parent_sampled")
        if parent is not None:
            return float(parent)

        return settings.sentry_traces_sample_rate

    return traces_sampler


def service_tags(settings: Settings) -> dict[str, Any]:
    """Tags attached to every event from this process."""
    return {
        "service": "pressroom",
        "store": "postgres" if settings.database_url else "memory",
        "distribution_enabled": settings.distribution_enabled,
        "jobs_worker_enabled": settings.jobs_worker_enabled,
    }


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry if DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    if not settings.sentry_dsn:
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        release=os.environ.get("GIT_SHA", f"pressroom@{__version__}"),
        integrations=[
            # Only ERROR+ log records become events
            LoggingIntegration(level=None, event_level="ERROR"),
            StarletteIntegration(transaction_style="url"),
            FastApiIntegration(transaction_style="url"),
        ],
        traces_sampler=_create_traces_sampler(settings),
        profiles_sample_rate=settings.sentry_profiles_sample_rate,
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=_before_send,
    )

    for key, value in service_tags(settings).items():
        sentry_sdk.set_tag(key, value)

    logger.info(
        "sentry_initialized",
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )

    return True
