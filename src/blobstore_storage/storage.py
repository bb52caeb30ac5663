"""Blobstore storage facade.

Maps the digital object model onto a blob store container: each object is a
top-level prefix ``oid/`` holding its payload blobs and manifest.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from blobstore_storage.backends.base import StorageType
from blobstore_storage.client import BlobStoreClient
from blobstore_storage.config import load_config
from blobstore_storage.digital_object import DigitalObject
from blobstore_storage.errors import (
    DuplicateOIDError,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
)
from blobstore_storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

PLUGIN_ID = "blobstore"
PLUGIN_NAME = "Blobstore Storage Plugin"

_OBJECT_ENTRY_TYPES = frozenset({StorageType.FOLDER, StorageType.RELATIVE_PATH})


def _validate_oid(oid: str | None) -> str:
    if not oid:
        raise InvalidArgumentError("Object ID is required")
    if "/" in oid:
        raise InvalidArgumentError("Object ID must not contain '/'", oid=oid)
    return oid


class Storage:
    """Digital object storage over a configured blob store.

    Object creation and removal are serialized; reads take no lock.
    """

    id = PLUGIN_ID
    name = PLUGIN_NAME

    def __init__(self, client: BlobStoreClient) -> None:
        self._client = client
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls, source: str | Path | Mapping[str, Any] | None = None
    ) -> Storage:
        """Build a storage facade from a config file, JSON string or mapping.

        The client is not connected until ``init`` or the first operation.

        Raises:
            ConfigError: If the configuration cannot be read or validated.
        """
        return cls(BlobStoreClient(load_config(source)))

    @property
    def client(self) -> BlobStoreClient:
        return self._client

    @property
    def backend_name(self) -> str:
        return self._client.provider

    def _trace_attributes(
        self, oid: str | None = None, *args: Any, **kwargs: Any
    ) -> dict[str, str | None]:
        return {"blobstore.oid": oid}

    def init(self) -> None:
        """Connect to the backend and check the connection."""
        self._client.init()
        self._client.get_client()
        logger.info(
            "Blobstore storage initialized: provider=%s container=%s",
            self._client.provider,
            self._client.container_name,
        )

    def shutdown(self) -> None:
        self._client.close()

    def __enter__(self) -> Storage:
        self.init()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    @traced_storage_operation("create_object")
    def create_object(self, oid: str) -> DigitalObject:
        """Create an empty object.

        Raises:
            InvalidArgumentError: If oid is empty or contains ``/``.
            DuplicateOIDError: If the object already exists.
        """
        oid = _validate_oid(oid)
        with self._lock:
            driver = self._client.get_client()
            container = self._client.container_name
            if driver.directory_exists(container, oid):
                raise DuplicateOIDError(oid=oid)
            driver.create_directory(container, oid)
            logger.debug("Created object: oid=%s", oid)
            return DigitalObject(self._client, oid)

    @traced_storage_operation("get_object")
    def get_object(self, oid: str) -> DigitalObject:
        """Open an existing object and rehydrate its manifest.

        Raises:
            InvalidArgumentError: If oid is empty or contains ``/``.
            NotFoundError: If the object does not exist.
        """
        oid = _validate_oid(oid)
        driver = self._client.get_client()
        if not driver.directory_exists(self._client.container_name, oid):
            raise NotFoundError("Object not found", oid=oid)
        return DigitalObject(self._client, oid)

    @traced_storage_operation("remove_object")
    def remove_object(self, oid: str) -> None:
        """Delete an object and every blob under its prefix.

        Raises:
            InvalidArgumentError: If oid is empty or contains ``/``.
            NotFoundError: If the object does not exist.
        """
        oid = _validate_oid(oid)
        with self._lock:
            driver = self._client.get_client()
            container = self._client.container_name
            if not driver.directory_exists(container, oid):
                raise NotFoundError("Object not found", oid=oid)
            driver.delete_directory(container, oid)
            logger.debug("Removed object: oid=%s", oid)

    def get_object_id_list(self) -> set[str]:
        """Return the OIDs of all objects in the container.

        Backend failures are logged and yield an empty set.
        """
        try:
            entries = self._client.get_client().list(self._client.container_name)
        except StorageError as e:
            logger.error("Error getting list of object ids: %s", e)
            return set()
        return {entry.name for entry in entries if entry.type in _OBJECT_ENTRY_TYPES}
