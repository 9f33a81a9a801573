"""Logging and tracing setup for the ticket service."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ticketdesk.core.config import Settings

APP_LOGGER = "ticketdesk"

# Driver and server loggers that are too chatty at the application level.
_QUIET_LOGGERS = ("asyncpg", "uvicorn.access")

_tracer_provider: TracerProvider | None = None


def _parse_headers(header_string: str | None) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by commas, as in OTEL_EXPORTER_OTLP_HEADERS."""

    pairs: dict[str, str] = {}
    for item in (header_string or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            pairs[key.strip()] = value.strip()
    return pairs


def _logging_config(level: int, log_format: str) -> dict[str, Any]:
    quiet_level = max(level, logging.WARNING)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"ticketdesk": {"format": log_format}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "ticketdesk",
                "level": level,
            }
        },
        "loggers": {name: {"level": quiet_level} for name in _QUIET_LOGGERS},
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Install console logging for the process and return the ``ticketdesk`` logger."""

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    dictConfig(_logging_config(level, settings.log_format))

    logger = logging.getLogger(APP_LOGGER)
    logger.setLevel(level)
    return logger


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Register an OTLP-exporting tracer provider when tracing is enabled."""

    global _tracer_provider

    if not settings.otel_enabled or _tracer_provider is not None:
        return None

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=_parse_headers(settings.otel_exporter_otlp_headers) or None,
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending spans and forget the registered provider."""

    global _tracer_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _tracer_provider:
        _tracer_provider = None
