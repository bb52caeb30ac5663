"""Blobstore storage error types.

Provides typed exceptions for object and payload operations. All errors are
fail-closed: operations that cannot complete consistently raise, and no
operation retries or falls back on its own.
"""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for blobstore storage operations.

    Attributes:
        message: Human-readable error message.
        oid: Object identifier associated with the operation (if applicable).
        pid: Payload identifier associated with the operation (if applicable).
    """

    def __init__(
        self,
        message: str,
        *,
        oid: str | None = None,
        pid: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.oid = oid
        self.pid = pid

    def __str__(self) -> str:
        parts = [self.message]
        if self.oid:
            parts.append(f"oid={self.oid}")
        if self.pid:
            parts.append(f"pid={self.pid}")
        return " ".join(parts)


class ConfigError(StorageError):
    """Raised for missing or invalid configuration.

    Covers unknown providers, keys a provider requires but which are absent,
    an unmatched ``location`` and failure to create a filesystem base
    directory.
    """

    def __init__(self, message: str = "Invalid blobstore configuration") -> None:
        super().__init__(message)


class InvalidArgumentError(StorageError):
    """Raised when an OID, PID or stream argument is empty or malformed."""


class DuplicateOIDError(StorageError):
    """Raised when creating an object whose OID already exists."""

    def __init__(
        self,
        message: str = "Object already exists",
        *,
        oid: str | None = None,
    ) -> None:
        super().__init__(message, oid=oid)


class DuplicatePIDError(StorageError):
    """Raised when creating a payload whose PID is already in the manifest."""

    def __init__(
        self,
        message: str = "Payload already exists in manifest",
        *,
        oid: str | None = None,
        pid: str | None = None,
    ) -> None:
        super().__init__(message, oid=oid, pid=pid)


class NotFoundError(StorageError):
    """Raised when an object, a payload or a linked file does not exist."""

    def __init__(
        self,
        message: str = "Not found",
        *,
        oid: str | None = None,
        pid: str | None = None,
    ) -> None:
        super().__init__(message, oid=oid, pid=pid)


class BackendError(StorageError):
    """Raised when the blob store backend cannot complete an operation.

    Wraps driver failures (I/O errors, HTTP errors, database errors) rather
    than logical errors like a missing payload.
    """

    def __init__(
        self,
        message: str = "Blob store backend error",
        *,
        oid: str | None = None,
        pid: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, oid=oid, pid=pid)
        self.cause = cause


class FormatError(StorageError):
    """Raised when a manifest or sidecar metadata blob cannot be parsed."""
