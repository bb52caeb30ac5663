"""Payload: one binary stream of a digital object plus its metadata.

A payload lives at blob path ``oid/pid``. Its type, label and content type
travel as blob user metadata, or in a ``oid/pid.meta`` properties sidecar
when the backend cannot carry user metadata. Metadata is loaded lazily on
first access and cached until ``close``.
"""

from __future__ import annotations

import io
import logging
from contextlib import closing
from datetime import datetime
from typing import TYPE_CHECKING, Any, BinaryIO

from blobstore_storage import properties
from blobstore_storage.backends.base import Blob
from blobstore_storage.errors import BackendError, InvalidArgumentError, NotFoundError
from blobstore_storage.mime import get_mime_type
from blobstore_storage.models import (
    DEFAULT_MIME_TYPE,
    PayloadMetadata,
    PayloadType,
    payload_path,
    sidecar_path,
)
from blobstore_storage.tracing import traced_storage_operation

if TYPE_CHECKING:
    from blobstore_storage.client import BlobStoreClient

logger = logging.getLogger(__name__)


class Payload:
    """Handle on one payload blob.

    Accessors (``type``, ``label``, ``content_type``, ``size``,
    ``last_modified``) load metadata from the backend on first use and raise
    the backend's error if that load fails.
    """

    def __init__(self, client: BlobStoreClient, oid: str, pid: str) -> None:
        self._client = client
        self._oid = oid
        self._pid = pid
        self._path = payload_path(oid, pid)
        self._blob: Blob | None = None
        self._exists = False
        self._type: PayloadType | None = None
        self._label: str | None = None
        self._content_type: str | None = None

    def __repr__(self) -> str:
        return f"Payload(oid={self._oid!r}, pid={self._pid!r})"

    @property
    def id(self) -> str:
        return self._pid

    @property
    def oid(self) -> str:
        return self._oid

    @property
    def path(self) -> str:
        return self._path

    @property
    def backend_name(self) -> str:
        return self._client.provider

    def _trace_attributes(self, *args: Any, **kwargs: Any) -> dict[str, str | None]:
        return {"blobstore.oid": self._oid, "blobstore.pid": self._pid}

    def load(self) -> None:
        """Fetch the blob handle and its metadata from the backend.

        Raises:
            BackendError: If the backend fails or a sidecar is missing.
            FormatError: If stored metadata cannot be parsed.
        """
        driver = self._client.get_client()
        container = self._client.container_name

        blob = None
        if driver.blob_exists(container, self._path):
            blob = driver.get_blob(container, self._path)

        if blob is None:
            self._blob = driver.blob_builder(self._path).build()
            self._exists = False
            return

        self._blob = blob
        self._exists = True
        metadata = PayloadMetadata.from_dict(self._read_user_metadata(blob), self._pid)
        self._type = metadata.payload_type
        self._label = metadata.label
        self._content_type = metadata.content_type

    def _read_user_metadata(self, blob: Blob) -> dict[str, str]:
        if self._client.supports_user_metadata:
            return dict(blob.metadata.user_metadata)

        meta_path = sidecar_path(self._oid, self._pid)
        meta_blob = self._client.get_client().get_blob(self._client.container_name, meta_path)
        if meta_blob is None:
            raise BackendError(
                f"Failed to retrieve payload metadata: {meta_path} is missing",
                oid=self._oid,
                pid=self._pid,
            )
        with closing(meta_blob.payload.open_stream()) as stream:
            return properties.load_bytes(stream.read())

    def _ensure_loaded(self) -> Blob:
        if self._blob is None:
            self.load()
        assert self._blob is not None
        return self._blob

    def _refetch(self) -> Blob | None:
        blob = self._client.get_client().get_blob(self._client.container_name, self._path)
        if blob is not None:
            self._blob = blob
        return blob

    def open(self) -> BinaryIO:
        """Open the payload bytes for sequential reading from byte 0.

        Raises:
            NotFoundError: If the payload blob does not exist.
        """
        blob = self._ensure_loaded()
        if not self._exists or blob.payload.is_empty:
            raise NotFoundError("Payload blob does not exist", oid=self._oid, pid=self._pid)
        return blob.payload.open_stream()

    def read(self) -> bytes:
        """Return the full payload content."""
        with closing(self.open()) as stream:
            return stream.read()

    def size(self) -> int | None:
        """Return the payload length in bytes, or None when unknown."""
        blob = self._ensure_loaded()
        if not self._exists:
            return None
        if blob.payload.content_length is None:
            # Listings and lazy handles may omit the length.
            blob = self._refetch() or blob
        return blob.payload.content_length

    def last_modified(self) -> datetime | None:
        """Return the payload modification time, or None when unknown."""
        blob = self._ensure_loaded()
        if not self._exists:
            return None
        if blob.metadata.last_modified is None:
            blob = self._refetch() or blob
        return blob.metadata.last_modified

    @property
    def type(self) -> PayloadType | None:
        self._ensure_loaded()
        return self._type

    @type.setter
    def type(self, value: PayloadType) -> None:
        self._ensure_loaded()
        self._type = PayloadType(value)

    @property
    def label(self) -> str | None:
        self._ensure_loaded()
        return self._label

    @label.setter
    def label(self, value: str) -> None:
        self._ensure_loaded()
        self._label = value

    @property
    def content_type(self) -> str | None:
        self._ensure_loaded()
        return self._content_type

    @content_type.setter
    def content_type(self, value: str) -> None:
        self._ensure_loaded()
        self._content_type = value

    @property
    def linked(self) -> bool:
        return False

    def to_metadata(self) -> PayloadMetadata:
        """Return the metadata that the next write will store."""
        self._ensure_loaded()
        return PayloadMetadata(
            id=self._pid,
            payload_type=self._type or PayloadType.SOURCE,
            label=self._label or self._pid,
            content_type=self._content_type or DEFAULT_MIME_TYPE,
        )

    @traced_storage_operation("write_payload")
    def write_payload(
        self,
        stream: BinaryIO | bytes,
        determine_content_type: bool = True,
    ) -> None:
        """Write or overwrite the payload blob.

        Args:
            stream: Binary stream (or bytes) holding the new content.
            determine_content_type: Buffer the whole stream in memory and
                sniff its MIME type. When False the stream is handed to the
                backend as-is and the current content type is kept.

        Raises:
            InvalidArgumentError: If stream is None.
            BackendError: If reading the stream or writing to the backend fails.
        """
        if stream is None:
            raise InvalidArgumentError("Payload stream is required", oid=self._oid, pid=self._pid)
        if isinstance(stream, bytes | bytearray):
            stream = io.BytesIO(bytes(stream))

        self._ensure_loaded()
        if self._label is None:
            self._label = self._pid
        if self._type is None:
            self._type = PayloadType.SOURCE

        content: bytes | BinaryIO = stream
        if determine_content_type:
            try:
                content = stream.read()
            except OSError as e:
                raise BackendError(
                    f"Failed to determine content type: {e}",
                    oid=self._oid,
                    pid=self._pid,
                    cause=e,
                ) from e
            self._content_type = get_mime_type(content, self._pid)

        user_metadata = self.to_metadata().to_dict()
        driver = self._client.get_client()
        container = self._client.container_name

        blob = (
            driver.blob_builder(self._path)
            .user_metadata(user_metadata)
            .content_type(user_metadata["contenttype"])
            .payload(content)
            .build()
        )
        driver.put_blob(container, blob)

        if not self._client.supports_user_metadata:
            self._write_sidecar(user_metadata)

        logger.debug(
            "Wrote payload: oid=%s pid=%s type=%s content_type=%s",
            self._oid,
            self._pid,
            self._type,
            self._content_type,
        )
        # Next read re-fetches the stored blob; metadata fields stay as written.
        self._blob = None

    def _write_sidecar(self, user_metadata: dict[str, str]) -> None:
        driver = self._client.get_client()
        meta_blob = (
            driver.blob_builder(sidecar_path(self._oid, self._pid))
            .content_type("text/plain")
            .payload(properties.dump_bytes(user_metadata))
            .build()
        )
        driver.put_blob(self._client.container_name, meta_blob)

    def close(self) -> None:
        """Drop the cached blob handle; the next access reloads it."""
        self._blob = None
        self._exists = False
