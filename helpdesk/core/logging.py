"""Logging and tracing for the intake chat and the resolution workflow.

Log records from the ``helpdesk`` tree carry the deployment environment and,
while a resolution span is open, its trace id, so a failed SharePoint upload
in the log can be matched to its trace.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from helpdesk.core.config import Settings

ROOT_LOGGER = "helpdesk"
SUBSYSTEM_LOGGERS = ("helpdesk.intake", "helpdesk.tickets", "helpdesk.sharepoint", "helpdesk.resolution")

_TRACER_INITIALISED = False


class HelpdeskContextFilter(logging.Filter):
    """Stamp ``environment`` and ``trace_id`` onto every record."""

    def __init__(self, environment: str = "development") -> None:
        super().__init__()
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.environment = self.environment
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id, "032x") if context.is_valid else "-"
        return True


def _parse_headers(header_string: str | None) -> dict[str, str]:
    if not header_string:
        return {}
    headers: dict[str, str] = {}
    for item in header_string.split(","):
        if "=" not in item:
            continue
        key, value = item.split("=", 1)
        headers[key.strip()] = value.strip()
    return headers


def _level(name: str | None, default: int) -> int:
    if not name:
        return default
    return getattr(logging, name.upper(), default)


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the helpdesk handler and return the ``helpdesk`` logger."""

    level = _level(settings.log_level, logging.INFO)
    sharepoint_level = _level(settings.sharepoint_log_level, level)
    loggers: dict[str, dict[str, object]] = {name: {"level": level} for name in SUBSYSTEM_LOGGERS}
    loggers["helpdesk.sharepoint"] = {"level": sharepoint_level}
    loggers[ROOT_LOGGER] = {"level": level}
    # transport request lines stay out of INFO output
    loggers["httpx"] = {"level": "WARNING"}
    loggers["httpcore"] = {"level": "WARNING"}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "context": {
                    "()": HelpdeskContextFilter,
                    "environment": settings.environment,
                }
            },
            "formatters": {
                "default": {
                    "format": settings.log_format,
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["context"],
                    "level": min(level, sharepoint_level),
                }
            },
            "loggers": loggers,
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )

    return logging.getLogger(ROOT_LOGGER)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP-exporting tracer provider when tracing is enabled."""

    global _TRACER_INITIALISED

    if _TRACER_INITIALISED or not settings.otel_enabled:
        return None

    resource = Resource(
        attributes={
            "service.name": settings.otel_service_name,
            "service.namespace": ROOT_LOGGER,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)

    exporter_kwargs: dict[str, object] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = _parse_headers(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_kwargs["headers"] = headers

    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))

    trace.set_tracer_provider(provider)
    _TRACER_INITIALISED = True
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending spans and release the provider."""

    if provider is None:
        return

    global _TRACER_INITIALISED
    provider.shutdown()
    _TRACER_INITIALISED = False
