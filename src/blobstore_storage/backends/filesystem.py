"""Local filesystem blob store.

Layout:
    {base_dir}/{container}/{path}

User metadata is kept in extended attributes in the ``user.`` namespace.
Filesystems without extended attribute support (FAT32, HFS, some tmpfs
mounts) cannot carry user metadata; the client detects this with
``supports_extended_attributes`` and falls back to sidecar metadata blobs.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO

from blobstore_storage.backends.base import (
    Blob,
    BlobMetadata,
    BlobPayload,
    BlobStoreDriver,
    Location,
    StorageMetadata,
    StorageType,
)
from blobstore_storage.errors import BackendError, InvalidArgumentError

logger = logging.getLogger(__name__)

_XATTR_PREFIX = "user.blobstore."
_PROBE_ATTRIBUTE = "user.blobstore-probe"
_TMP_SUFFIX = ".tmp"


def supports_extended_attributes(directory: Path) -> bool:
    """Probe whether a directory's filesystem accepts user extended attributes."""
    if not hasattr(os, "setxattr"):
        return False
    try:
        os.setxattr(directory, _PROBE_ATTRIBUTE, b"1")
        os.removexattr(directory, _PROBE_ATTRIBUTE)
    except OSError as e:
        logger.debug("Extended attributes unsupported at %s: %s", directory, e)
        return False
    return True


def _is_unsafe_path(path: str) -> bool:
    """Check a blob path for traversal sequences or unusable characters."""
    if not path or "\x00" in path or "\\" in path:
        return True
    if path.startswith(("/", "~")):
        return True
    return any(segment in ("..", ".") for segment in path.rstrip("/").split("/"))


class FilesystemBlobStore(BlobStoreDriver):
    """Blob store on a local directory tree."""

    def __init__(self, base_dir: str | Path, *, user_metadata: bool = True) -> None:
        self._base_dir = Path(base_dir).resolve()
        self._user_metadata = user_metadata
        logger.debug(
            "FilesystemBlobStore initialized with base_dir=%s user_metadata=%s",
            self._base_dir,
            user_metadata,
        )

    @property
    def backend_name(self) -> str:
        return "filesystem"

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def supports_user_metadata(self) -> bool:
        return self._user_metadata

    def _container_dir(self, container: str) -> Path:
        if _is_unsafe_path(container) or "/" in container:
            raise InvalidArgumentError(f"Invalid container name: {container!r}")
        return self._base_dir / container

    def _resolve(self, container: str, path: str) -> Path:
        if _is_unsafe_path(path):
            raise InvalidArgumentError(f"Invalid blob path: {path!r}")
        container_dir = self._container_dir(container)
        resolved = (container_dir / path).resolve()
        try:
            resolved.relative_to(container_dir.resolve())
        except ValueError as e:
            raise InvalidArgumentError(f"Blob path escapes container: {path!r}") from e
        return resolved

    def _read_user_metadata(self, file_path: Path) -> dict[str, str]:
        if not self._user_metadata:
            return {}
        metadata: dict[str, str] = {}
        for attribute in os.listxattr(file_path):
            if attribute.startswith(_XATTR_PREFIX):
                value = os.getxattr(file_path, attribute)
                metadata[attribute[len(_XATTR_PREFIX) :]] = value.decode("utf-8")
        return metadata

    def _write_user_metadata(self, file_path: Path, metadata: dict[str, str]) -> None:
        for key, value in metadata.items():
            os.setxattr(file_path, _XATTR_PREFIX + key, value.encode("utf-8"))

    def blob_exists(self, container: str, path: str) -> bool:
        return self._resolve(container, path).is_file()

    def get_blob(self, container: str, path: str) -> Blob | None:
        file_path = self._resolve(container, path)
        with self._translate_errors("get_blob", path):
            if not file_path.is_file():
                return None
            stat = file_path.stat()
            user_metadata = self._read_user_metadata(file_path)

        def opener() -> BinaryIO:
            with self._translate_errors("open", path):
                return file_path.open("rb")

        return Blob(
            metadata=BlobMetadata(
                name=path,
                user_metadata=user_metadata,
                last_modified=datetime.fromtimestamp(stat.st_mtime, UTC),
            ),
            payload=BlobPayload(opener=opener, content_length=stat.st_size),
        )

    def put_blob(self, container: str, blob: Blob) -> None:
        """Write a blob atomically via a temporary file in the target directory."""
        name = blob.metadata.name
        file_path = self._resolve(container, name)
        if not self._container_dir(container).is_dir():
            raise BackendError(f"Container does not exist: {container}")

        tmp_file = file_path.parent / f".{file_path.name}.{uuid.uuid4().hex}{_TMP_SUFFIX}"
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            source = blob.payload.open_stream()
            try:
                with tmp_file.open("wb") as target:
                    shutil.copyfileobj(source, target)
            finally:
                source.close()
            if self._user_metadata:
                self._write_user_metadata(tmp_file, blob.metadata.user_metadata)
            tmp_file.replace(file_path)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise BackendError(
                message=f"Failed to write blob {name}: {e}",
                cause=e,
            ) from e

        logger.debug("Stored blob %s/%s", container, name)

    def remove_blob(self, container: str, path: str) -> None:
        file_path = self._resolve(container, path)
        with self._translate_errors("remove_blob", path):
            file_path.unlink(missing_ok=True)

    def create_container_in_location(self, location: Location | None, container: str) -> bool:
        container_dir = self._container_dir(container)
        with self._translate_errors("create_container", container):
            if container_dir.is_dir():
                return False
            container_dir.mkdir(parents=True, exist_ok=True)
        return True

    def directory_exists(self, container: str, directory: str) -> bool:
        return self._resolve(container, directory).is_dir()

    def create_directory(self, container: str, directory: str) -> None:
        with self._translate_errors("create_directory", directory):
            self._resolve(container, directory).mkdir(parents=True, exist_ok=True)

    def delete_directory(self, container: str, directory: str) -> None:
        dir_path = self._resolve(container, directory)
        with self._translate_errors("delete_directory", directory):
            if dir_path.is_dir():
                shutil.rmtree(dir_path)

    def list(self, container: str) -> list[StorageMetadata]:
        container_dir = self._container_dir(container)
        with self._translate_errors("list", container):
            entries = sorted(container_dir.iterdir(), key=lambda p: p.name)
        return [
            StorageMetadata(
                name=entry.name,
                type=StorageType.FOLDER if entry.is_dir() else StorageType.BLOB,
            )
            for entry in entries
            if not entry.name.endswith(_TMP_SUFFIX)
        ]

    def list_assignable_locations(self) -> list[Location]:
        return []
