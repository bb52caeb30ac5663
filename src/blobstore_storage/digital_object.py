"""Digital object: a named collection of payloads under one OID.

The object's manifest blob (``oid/object-manifest``) is authoritative for
which payloads exist; the blob listing is never scanned.

Payload types are classified on creation:
- ``TF-OBJ-META`` is always Annotation
- the first other payload created while no Source is recorded becomes Source
- everything else is Other
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO

from blobstore_storage.errors import DuplicatePIDError, InvalidArgumentError, NotFoundError
from blobstore_storage.models import (
    METADATA_PAYLOAD_ID,
    METADATA_SUFFIX,
    ObjectManifest,
    PayloadType,
    manifest_path,
    payload_path,
    sidecar_path,
)
from blobstore_storage.payload import Payload
from blobstore_storage.tracing import traced_storage_operation

if TYPE_CHECKING:
    from blobstore_storage.client import BlobStoreClient

logger = logging.getLogger(__name__)


class DigitalObject:
    """One stored object and its payload manifest.

    Construction reads the manifest from the backend, writing an empty one
    when the object has none yet. Mutating operations are serialized per
    instance; reads take no lock.
    """

    def __init__(self, client: BlobStoreClient, oid: str) -> None:
        self._client = client
        self._oid = oid
        self._lock = threading.RLock()
        self._manifest: dict[str, Payload] = {}
        self._source_id: str | None = None
        self._build_manifest()

    def __repr__(self) -> str:
        return f"DigitalObject(oid={self._oid!r}, payloads={len(self._manifest)})"

    @property
    def id(self) -> str:
        return self._oid

    @property
    def payload_ids(self) -> list[str]:
        """PIDs in manifest order."""
        return list(self._manifest)

    @property
    def source_id(self) -> str | None:
        return self._source_id

    @property
    def backend_name(self) -> str:
        return self._client.provider

    def _trace_attributes(
        self, pid: str | None = None, *args: Any, **kwargs: Any
    ) -> dict[str, str | None]:
        return {"blobstore.oid": self._oid, "blobstore.pid": pid}

    def _build_manifest(self) -> None:
        """Rehydrate the in-memory manifest from ``oid/object-manifest``.

        Raises:
            FormatError: If the manifest blob is not valid manifest JSON.
            BackendError: If the backend fails.
        """
        driver = self._client.get_client()
        container = self._client.container_name
        path = manifest_path(self._oid)

        manifest_blob = driver.get_blob(container, path)
        if manifest_blob is None:
            empty = (
                driver.blob_builder(path)
                .content_type("application/json")
                .payload("{}")
                .build()
            )
            driver.put_blob(container, empty)
            logger.debug("Wrote empty manifest: oid=%s", self._oid)
            return

        manifest = ObjectManifest.from_json(manifest_blob.payload.read_all(), oid=self._oid)
        for name in manifest.names:
            if name.endswith(METADATA_SUFFIX):
                continue
            payload = Payload(self._client, self._oid, name)
            if payload.type == PayloadType.SOURCE:
                self._source_id = name
            self._manifest[name] = payload

    def _update_object_manifest(self) -> None:
        driver = self._client.get_client()
        manifest = ObjectManifest.build(list(self._manifest), self._source_id)
        blob = (
            driver.blob_builder(manifest_path(self._oid))
            .content_type("application/json")
            .payload(manifest.to_json())
            .build()
        )
        driver.put_blob(self._client.container_name, blob)

    def _validate_pid(self, pid: str | None) -> str:
        if not pid:
            raise InvalidArgumentError("Payload ID is required", oid=self._oid)
        return pid

    def _require_payload(self, pid: str | None) -> str:
        pid = self._validate_pid(pid)
        if pid not in self._manifest:
            raise NotFoundError("Payload not found", oid=self._oid, pid=pid)
        return pid

    @traced_storage_operation("create_stored_payload")
    def create_stored_payload(self, pid: str, stream: BinaryIO | bytes) -> Payload:
        """Store a new payload and add it to the manifest.

        Args:
            pid: Payload identifier, unique within this object.
            stream: Payload content.

        Returns:
            A payload handle reloaded from the backend.

        Raises:
            InvalidArgumentError: If pid is empty or ends with ``.meta``, or
                stream is None.
            DuplicatePIDError: If pid is already in the manifest.
            BackendError: If the backend write fails.
        """
        pid = self._validate_pid(pid)
        if stream is None:
            raise InvalidArgumentError("Payload stream is required", oid=self._oid, pid=pid)
        if pid.endswith(METADATA_SUFFIX):
            raise InvalidArgumentError(
                f"Payload IDs ending with '{METADATA_SUFFIX}' are reserved",
                oid=self._oid,
                pid=pid,
            )

        with self._lock:
            if pid in self._manifest:
                raise DuplicatePIDError(oid=self._oid, pid=pid)

            payload = Payload(self._client, self._oid, pid)
            previous_source = self._source_id
            if pid == METADATA_PAYLOAD_ID:
                payload.type = PayloadType.ANNOTATION
            elif self._source_id is None:
                payload.type = PayloadType.SOURCE
                self._source_id = pid
            else:
                payload.type = PayloadType.OTHER

            try:
                payload.write_payload(stream)
            except Exception:
                self._source_id = previous_source
                raise

            stored = Payload(self._client, self._oid, pid)
            stored.load()
            self._manifest[pid] = stored
            self._update_object_manifest()

        logger.debug("Created payload: oid=%s pid=%s type=%s", self._oid, pid, stored.type)
        return stored

    def create_linked_payload(self, pid: str, file_path: str | Path) -> Payload:
        """Store a copy of a local file as a payload.

        Linked payloads are not supported; the file's bytes are stored
        instead of a link.

        Raises:
            NotFoundError: If the file cannot be opened.
        """
        logger.warning(
            "Linked payloads are not supported, storing a copy: oid=%s pid=%s path=%s",
            self._oid,
            pid,
            file_path,
        )
        try:
            handle = open(file_path, "rb")  # noqa: SIM115
        except OSError as e:
            raise NotFoundError(
                f"Linked file not readable: {file_path}", oid=self._oid, pid=pid
            ) from e
        with handle:
            return self.create_stored_payload(pid, handle)

    def get_payload(self, pid: str) -> Payload:
        """Return a fresh handle on a manifest payload.

        Raises:
            NotFoundError: If pid is not in the manifest.
        """
        pid = self._require_payload(pid)
        return Payload(self._client, self._oid, pid)

    @traced_storage_operation("update_payload")
    def update_payload(self, pid: str, stream: BinaryIO | bytes) -> Payload:
        """Overwrite a payload's content, keeping its type and label.

        Raises:
            NotFoundError: If pid is not in the manifest.
            InvalidArgumentError: If stream is None.
        """
        with self._lock:
            pid = self._require_payload(pid)
            if stream is None:
                raise InvalidArgumentError("Payload stream is required", oid=self._oid, pid=pid)

            Payload(self._client, self._oid, pid).write_payload(stream)
            stored = Payload(self._client, self._oid, pid)
            stored.load()
            self._manifest[pid] = stored

        logger.debug("Updated payload: oid=%s pid=%s", self._oid, pid)
        return stored

    @traced_storage_operation("remove_payload")
    def remove_payload(self, pid: str) -> None:
        """Remove a payload blob, its sidecar and its manifest entry.

        Raises:
            NotFoundError: If pid is not in the manifest.
        """
        with self._lock:
            pid = self._require_payload(pid)
            del self._manifest[pid]
            if self._source_id == pid:
                self._source_id = None

            driver = self._client.get_client()
            container = self._client.container_name
            driver.remove_blob(container, payload_path(self._oid, pid))
            driver.remove_blob(container, sidecar_path(self._oid, pid))
            self._update_object_manifest()

        logger.debug("Removed payload: oid=%s pid=%s", self._oid, pid)
