"""In-memory blob store.

Keeps containers in process memory. State lives in a named
TransientState so a client that reconnects sees the same blobs; call
``reset_transient_stores`` to drop everything (tests).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime

from blobstore_storage.backends.base import (
    Blob,
    BlobMetadata,
    BlobPayload,
    BlobStoreDriver,
    Location,
    StorageMetadata,
    StorageType,
    top_level_entries,
)
from blobstore_storage.errors import BackendError

logger = logging.getLogger(__name__)


@dataclass
class _StoredBlob:
    data: bytes
    user_metadata: dict[str, str]
    content_type: str | None
    last_modified: datetime


@dataclass
class TransientState:
    """Containers of one in-memory store."""

    containers: dict[str, dict[str, _StoredBlob]] = field(default_factory=dict)
    directories: dict[str, set[str]] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)


_STATES: dict[str, TransientState] = {}
_STATES_LOCK = threading.Lock()


def shared_state(name: str = "default") -> TransientState:
    with _STATES_LOCK:
        return _STATES.setdefault(name, TransientState())


def reset_transient_stores() -> None:
    with _STATES_LOCK:
        _STATES.clear()


class TransientBlobStore(BlobStoreDriver):
    """Blob store held in process memory.

    With ``user_metadata=False`` the store drops user metadata on write,
    behaving like a backend that cannot carry it.
    """

    def __init__(
        self,
        state: TransientState | None = None,
        *,
        user_metadata: bool = True,
        locations: list[Location] | None = None,
    ) -> None:
        self._state = state or TransientState()
        self._user_metadata = user_metadata
        self._locations = list(locations or [])

    @property
    def backend_name(self) -> str:
        return "transient"

    @property
    def supports_user_metadata(self) -> bool:
        return self._user_metadata

    def _container(self, container: str) -> dict[str, _StoredBlob]:
        try:
            return self._state.containers[container]
        except KeyError:
            raise BackendError(f"Container does not exist: {container}") from None

    def blob_exists(self, container: str, path: str) -> bool:
        with self._state.lock:
            return path in self._container(container)

    def get_blob(self, container: str, path: str) -> Blob | None:
        with self._state.lock:
            stored = self._container(container).get(path)
        if stored is None:
            return None
        return Blob(
            metadata=BlobMetadata(
                name=path,
                user_metadata=dict(stored.user_metadata),
                last_modified=stored.last_modified,
                content_type=stored.content_type,
            ),
            payload=BlobPayload(stored.data),
        )

    def put_blob(self, container: str, blob: Blob) -> None:
        data = blob.payload.read_all()
        stored = _StoredBlob(
            data=data,
            user_metadata=dict(blob.metadata.user_metadata) if self._user_metadata else {},
            content_type=blob.metadata.content_type,
            last_modified=datetime.now(UTC),
        )
        with self._state.lock:
            self._container(container)[blob.metadata.name] = stored
        logger.debug("Put transient blob %s/%s (%d bytes)", container, blob.metadata.name, len(data))

    def remove_blob(self, container: str, path: str) -> None:
        with self._state.lock:
            self._container(container).pop(path, None)

    def create_container_in_location(self, location: Location | None, container: str) -> bool:
        with self._state.lock:
            if container in self._state.containers:
                return False
            self._state.containers[container] = {}
            self._state.directories[container] = set()
            return True

    def directory_exists(self, container: str, directory: str) -> bool:
        prefix = directory.rstrip("/") + "/"
        with self._state.lock:
            blobs = self._container(container)
            if directory.rstrip("/") in self._state.directories[container]:
                return True
            return any(name.startswith(prefix) for name in blobs)

    def create_directory(self, container: str, directory: str) -> None:
        with self._state.lock:
            self._container(container)
            self._state.directories[container].add(directory.rstrip("/"))

    def delete_directory(self, container: str, directory: str) -> None:
        name = directory.rstrip("/")
        prefix = name + "/"
        with self._state.lock:
            blobs = self._container(container)
            for path in [p for p in blobs if p.startswith(prefix)]:
                del blobs[path]
            self._state.directories[container].discard(name)

    def list(self, container: str) -> list[StorageMetadata]:
        with self._state.lock:
            names = list(self._container(container))
            directories = set(self._state.directories[container])

        entries = top_level_entries(names)
        listed = {entry.name for entry in entries}
        entries.extend(
            StorageMetadata(name=d, type=StorageType.FOLDER)
            for d in sorted(directories)
            if d not in listed
        )
        return entries

    def list_assignable_locations(self) -> list[Location]:
        return list(self._locations)
