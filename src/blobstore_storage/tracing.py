"""Tracing decorator for storage and object operations.

Spans are named ``blobstore.<operation>`` and carry ``blobstore.oid``,
``blobstore.pid`` (object operations) and ``storage.backend``. Payload bytes
and credentials are never exported.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar, cast

from blobstore_storage.observability.tracing import get_env_bool

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _is_otel_enabled() -> bool:
    return get_env_bool("BLOBSTORE_OTEL_ENABLED", False)


def traced_storage_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace a storage method with OpenTelemetry.

    The decorated object supplies span attributes through an optional
    ``_trace_attributes(*args)`` method and ``backend_name`` property.

    Args:
        operation: Operation name (e.g., "create_object", "create_stored_payload").

    Returns:
        Decorated function that emits spans when tracing is enabled.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            if not _is_otel_enabled():
                return func(self, *args, **kwargs)

            try:
                from opentelemetry import trace
            except ImportError:
                return func(self, *args, **kwargs)

            tracer = trace.get_tracer("blobstore_storage")
            with tracer.start_as_current_span(f"blobstore.{operation}") as span:
                span.set_attribute("storage.backend", getattr(self, "backend_name", "unknown"))
                attributes = getattr(self, "_trace_attributes", None)
                if attributes is not None:
                    for key, value in attributes(*args, **kwargs).items():
                        if value is not None:
                            span.set_attribute(key, str(value))

                try:
                    return func(self, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

        return cast(F, wrapper)

    return decorator
