"""Blob store driver interface.

Provides the capability set the storage layer binds to. Every backend
(transient memory, local filesystem, Swift, S3, GridFS) implements
BlobStoreDriver; nothing above this module talks to a backend library.
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import BinaryIO

from blobstore_storage.errors import BackendError, StorageError

logger = logging.getLogger(__name__)


class StorageType(StrEnum):
    """Kind of a container listing entry."""

    BLOB = "BLOB"
    FOLDER = "FOLDER"
    RELATIVE_PATH = "RELATIVE_PATH"
    CONTAINER = "CONTAINER"


@dataclass(frozen=True)
class Location:
    """An assignable region or zone of a backend."""

    id: str
    description: str = ""


@dataclass(frozen=True)
class StorageMetadata:
    """One entry of a container listing."""

    name: str
    type: StorageType


@dataclass
class BlobMetadata:
    """Metadata of a stored or to-be-stored blob.

    Attributes:
        name: Blob path within its container.
        user_metadata: Free-form string map carried with the blob.
        last_modified: Modification time, None when not yet known.
        content_type: MIME type handed to the backend on write.
    """

    name: str
    user_metadata: dict[str, str] = field(default_factory=dict)
    last_modified: datetime | None = None
    content_type: str | None = None


class BlobPayload:
    """The byte content of a blob.

    Content is held as bytes, as a one-shot stream, or as an opener callable
    that drivers use to defer reads until ``open_stream`` is called.
    """

    def __init__(
        self,
        data: bytes | None = None,
        *,
        stream: BinaryIO | None = None,
        opener: Callable[[], BinaryIO] | None = None,
        content_length: int | None = None,
    ) -> None:
        self._data = data
        self._stream = stream
        self._opener = opener
        if content_length is None and data is not None:
            content_length = len(data)
        self.content_length = content_length

    @property
    def is_empty(self) -> bool:
        return self._data is None and self._stream is None and self._opener is None

    def open_stream(self) -> BinaryIO:
        """Return a readable binary stream positioned at byte 0.

        Raises:
            BackendError: If the payload has no content source.
        """
        if self._data is not None:
            return io.BytesIO(self._data)
        if self._opener is not None:
            return self._opener()
        if self._stream is not None:
            stream, self._stream = self._stream, None
            return stream
        raise BackendError("Blob has no payload")

    def read_all(self) -> bytes:
        if self._data is not None:
            return self._data
        stream = self.open_stream()
        try:
            return stream.read()
        finally:
            stream.close()


@dataclass
class Blob:
    """A blob handle: metadata plus payload."""

    metadata: BlobMetadata
    payload: BlobPayload


class BlobBuilder:
    """Fluent builder for blobs handed to ``put_blob``."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._user_metadata: dict[str, str] = {}
        self._content_type: str | None = None
        self._payload = BlobPayload()

    def user_metadata(self, metadata: Mapping[str, str]) -> BlobBuilder:
        self._user_metadata = dict(metadata)
        return self

    def content_type(self, content_type: str | None) -> BlobBuilder:
        self._content_type = content_type
        return self

    def payload(self, content: bytes | str | BinaryIO) -> BlobBuilder:
        if isinstance(content, str):
            content = content.encode("utf-8")
        if isinstance(content, bytes | bytearray):
            self._payload = BlobPayload(bytes(content))
        else:
            self._payload = BlobPayload(stream=content)
        return self

    def build(self) -> Blob:
        return Blob(
            metadata=BlobMetadata(
                name=self._name,
                user_metadata=self._user_metadata,
                content_type=self._content_type,
            ),
            payload=self._payload,
        )


class BlobStoreDriver(ABC):
    """Abstract base class for blob store backends.

    Paths are ``/``-separated names within a container. Drivers translate
    their library failures into BackendError and never retry.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for logging and tracing."""
        ...

    @property
    def supports_user_metadata(self) -> bool:
        """Whether ``put_blob`` persists ``user_metadata`` with the blob."""
        return True

    def blob_builder(self, name: str) -> BlobBuilder:
        return BlobBuilder(name)

    @contextmanager
    def _translate_errors(self, operation: str, path: str | None = None) -> Iterator[None]:
        """Re-raise driver library failures as BackendError."""
        try:
            yield
        except StorageError:
            raise
        except Exception as e:  # noqa: BLE001
            target = f" {path}" if path else ""
            raise BackendError(
                message=f"{self.backend_name} {operation}{target} failed: {e}",
                cause=e,
            ) from e

    @abstractmethod
    def blob_exists(self, container: str, path: str) -> bool:
        """Return True when the blob exists."""
        ...

    @abstractmethod
    def get_blob(self, container: str, path: str) -> Blob | None:
        """Return a blob handle, or None when the blob does not exist.

        The handle's payload may be read lazily.
        """
        ...

    @abstractmethod
    def put_blob(self, container: str, blob: Blob) -> None:
        """Write bytes and user metadata, overwriting any existing blob."""
        ...

    @abstractmethod
    def remove_blob(self, container: str, path: str) -> None:
        """Remove a blob; removing a missing blob is not an error."""
        ...

    @abstractmethod
    def create_container_in_location(self, location: Location | None, container: str) -> bool:
        """Create a container if absent.

        Returns:
            True if the container was created, False if it already existed.
        """
        ...

    @abstractmethod
    def directory_exists(self, container: str, directory: str) -> bool:
        ...

    @abstractmethod
    def create_directory(self, container: str, directory: str) -> None:
        ...

    @abstractmethod
    def delete_directory(self, container: str, directory: str) -> None:
        """Recursively delete everything under ``directory/``."""
        ...

    @abstractmethod
    def list(self, container: str) -> list[StorageMetadata]:
        """List the top level of a container."""
        ...

    @abstractmethod
    def list_assignable_locations(self) -> list[Location]:
        ...

    def close(self) -> None:
        """Release the backend session."""
        logger.debug("Closed %s driver", self.backend_name)


def top_level_entries(names: list[str]) -> list[StorageMetadata]:
    """Fold a flat blob listing into top-level entries.

    ``a/b`` contributes RELATIVE_PATH ``a``; a name without ``/`` is a BLOB.
    """
    folders: dict[str, None] = {}
    blobs: dict[str, None] = {}
    for name in names:
        head, sep, _ = name.partition("/")
        if sep:
            if head:
                folders[head] = None
        else:
            blobs[name] = None

    entries = [StorageMetadata(name=n, type=StorageType.RELATIVE_PATH) for n in sorted(folders)]
    entries.extend(
        StorageMetadata(name=n, type=StorageType.BLOB) for n in sorted(blobs) if n not in folders
    )
    return entries
