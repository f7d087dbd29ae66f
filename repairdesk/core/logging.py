"""Logging and tracing setup for the RepairDesk API."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from repairdesk import __version__
from repairdesk.core.config import Settings

APP_LOGGER = "repairdesk"

# Chatty third-party loggers and the level they are capped at.
_QUIET_LOGGERS = {
    "sqlalchemy.engine": "WARNING",
    "asyncpg": "WARNING",
    "uvicorn.access": "INFO",
}

_active_provider: TracerProvider | None = None


def parse_otlp_headers(header_string: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` into a header mapping, skipping junk."""

    if not header_string:
        return {}
    headers: dict[str, str] = {}
    for item in header_string.split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def build_logging_config(settings: Settings) -> dict[str, Any]:
    level = settings.log_level.upper()
    if not isinstance(logging.getLevelName(level), int):
        level = "INFO"

    loggers: dict[str, Any] = {
        APP_LOGGER: {"level": level, "propagate": True},
    }
    for name, cap in _QUIET_LOGGERS.items():
        # Never louder than the application itself.
        effective = max(logging.getLevelName(cap), logging.getLevelName(level))
        loggers[name] = {"level": logging.getLevelName(effective), "propagate": True}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"repairdesk": {"format": settings.log_format}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "repairdesk"},
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": loggers,
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Apply the logging configuration and return the ``repairdesk`` logger."""

    dictConfig(build_logging_config(settings))
    return logging.getLogger(APP_LOGGER)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP tracer provider when tracing is enabled.

    Ticket spans (``tickets.accept_job`` and friends) are emitted by the
    service either way; without a provider they are no-ops.
    """

    global _active_provider

    if not settings.otel_enabled or _active_provider is not None:
        return None

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
            "deployment.environment": settings.environment,
        }
    )
    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint or None,
        headers=parse_otlp_headers(settings.otel_exporter_otlp_headers) or None,
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _active_provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _active_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _active_provider:
        _active_provider = None
