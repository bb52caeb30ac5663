"""OpenTelemetry tracing configuration for blobstore storage.

Tracing is off by default. When enabled, storage and object operations emit
``blobstore.<operation>`` spans (see ``blobstore_storage.tracing``).

Environment Variables:
    BLOBSTORE_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    BLOBSTORE_REQUIRE_OTEL: Set to "1" to fail if tracing cannot initialize
    BLOBSTORE_OTEL_SERVICE_NAME: Service name for spans (default: "blobstore")
    BLOBSTORE_OTEL_EXPORTER: Exporter type - "otlp" or "console" (default: "otlp")
    BLOBSTORE_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (optional)
    BLOBSTORE_OTEL_EXPORTER_OTLP_PROTOCOL: "grpc" or "http" (default: "grpc")
    BLOBSTORE_OTEL_RESOURCE_ATTRS: Comma-separated k=v pairs for resource attributes
    BLOBSTORE_OTEL_TEST_CAPTURE: Set to "1" to use in-memory exporter for tests

Span attributes never carry payload bytes or credentials.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, SpanProcessor, TracerProvider

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes"})

_provider: TracerProvider | None = None
_capture_exporter: Any = None
_configured = False


class TracingConfigError(Exception):
    """Raised when tracing cannot be set up and BLOBSTORE_REQUIRE_OTEL=1."""


def get_env_bool(key: str, default: bool = False) -> bool:
    """Read a "1"/"true"/"yes" style flag; anything else yields ``default``."""
    value = os.environ.get(key, "").strip().lower()
    return True if value in _TRUE_VALUES else default


def _parse_resource_attrs(raw: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            attrs[key.strip()] = value.strip()
    return attrs


@dataclass(frozen=True)
class TracingSettings:
    """Tracing options read from ``BLOBSTORE_OTEL_*`` variables."""

    enabled: bool = False
    required: bool = False
    test_capture: bool = False
    service_name: str = "blobstore"
    exporter: str = "otlp"
    otlp_endpoint: str | None = None
    otlp_protocol: str = "grpc"
    resource_attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> TracingSettings:
        env = os.environ
        return cls(
            enabled=get_env_bool("BLOBSTORE_OTEL_ENABLED"),
            required=get_env_bool("BLOBSTORE_REQUIRE_OTEL"),
            test_capture=get_env_bool("BLOBSTORE_OTEL_TEST_CAPTURE"),
            service_name=env.get("BLOBSTORE_OTEL_SERVICE_NAME", "").strip() or "blobstore",
            exporter=env.get("BLOBSTORE_OTEL_EXPORTER", "").strip().lower() or "otlp",
            otlp_endpoint=env.get("BLOBSTORE_OTEL_EXPORTER_OTLP_ENDPOINT", "").strip() or None,
            otlp_protocol=env.get("BLOBSTORE_OTEL_EXPORTER_OTLP_PROTOCOL", "").strip().lower()
            or "grpc",
            resource_attributes=_parse_resource_attrs(
                env.get("BLOBSTORE_OTEL_RESOURCE_ATTRS", "")
            ),
        )

    @property
    def exporter_label(self) -> str:
        return "in-memory" if self.test_capture else self.exporter


def _span_processor(settings: TracingSettings) -> SpanProcessor:
    """Build the span processor for the configured exporter."""
    global _capture_exporter

    from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

    if settings.test_capture:
        from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
            InMemorySpanExporter,
        )

        _capture_exporter = InMemorySpanExporter()
        return SimpleSpanProcessor(_capture_exporter)

    if settings.exporter == "console":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        return SimpleSpanProcessor(ConsoleSpanExporter())

    options = {"endpoint": settings.otlp_endpoint} if settings.otlp_endpoint else {}
    if settings.otlp_protocol == "http":
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    return BatchSpanProcessor(OTLPSpanExporter(**options))


def configure_tracing() -> bool:
    """Install the global tracer provider described by the environment.

    Safe to call repeatedly; the provider is installed at most once per
    process.

    Returns:
        True when tracing is on, False when disabled or setup failed.

    Raises:
        TracingConfigError: If setup fails and BLOBSTORE_REQUIRE_OTEL=1.
    """
    global _provider, _configured

    settings = TracingSettings.from_env()
    if not settings.enabled:
        _configured = True
        logger.debug("Tracing disabled; set BLOBSTORE_OTEL_ENABLED=1 to enable")
        return False

    # OpenTelemetry accepts one global provider per process.
    if settings.test_capture and _capture_exporter is not None:
        return True
    if _configured and _provider is not None:
        return True
    _configured = True

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider

        resource = Resource.create(
            {"service.name": settings.service_name, **settings.resource_attributes}
        )
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(_span_processor(settings))
        trace.set_tracer_provider(provider)
    except Exception as e:
        logger.error("Tracing setup failed: %s", e)
        if settings.required:
            raise TracingConfigError(
                f"BLOBSTORE_REQUIRE_OTEL is set but tracing configuration failed: {e}"
            ) from e
        return False

    _provider = provider
    logger.info(
        "Tracing enabled: service=%s exporter=%s",
        settings.service_name,
        settings.exporter_label,
    )
    return True


def get_test_spans() -> list[ReadableSpan]:
    """Return spans held by the in-memory exporter, oldest first."""
    if _capture_exporter is None:
        return []
    return list(_capture_exporter.get_finished_spans())


def clear_test_spans() -> None:
    if _capture_exporter is not None:
        _capture_exporter.clear()


def reset_tracing() -> None:
    """Forget configuration state so the next ``configure_tracing`` re-reads env.

    The global provider and the capture exporter survive, since OpenTelemetry
    does not allow replacing the provider; captured spans are cleared.
    """
    global _configured

    clear_test_spans()
    _configured = False
