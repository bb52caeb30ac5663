"""Blobstore observability.

Provides optional OpenTelemetry tracing for storage operations.
"""

from blobstore_storage.observability.tracing import configure_tracing, reset_tracing

__all__ = ["configure_tracing", "reset_tracing"]
