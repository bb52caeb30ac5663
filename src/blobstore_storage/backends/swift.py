"""OpenStack Swift blob store using python-swiftclient.

User metadata travels as ``X-Object-Meta-*`` headers. Directory markers are
zero-length ``application/directory`` objects named ``{oid}/``.
"""

from __future__ import annotations

import io
import logging
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any

from blobstore_storage.backends.base import (
    Blob,
    BlobMetadata,
    BlobPayload,
    BlobStoreDriver,
    Location,
    StorageMetadata,
    StorageType,
)
from blobstore_storage.errors import ConfigError

logger = logging.getLogger(__name__)

_META_HEADER = "x-object-meta-"
DIRECTORY_CONTENT_TYPE = "application/directory"


def _is_not_found(exc: Exception) -> bool:
    return getattr(exc, "http_status", None) == 404


def _auth_version(endpoint: str) -> str:
    trimmed = endpoint.rstrip("/")
    if trimmed.endswith("/v3"):
        return "3"
    if trimmed.endswith("/v2.0"):
        return "2.0"
    return "1"


def _parse_last_modified(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


class SwiftBlobStore(BlobStoreDriver):
    """Blob store on an OpenStack Swift cluster."""

    def __init__(
        self,
        *,
        endpoint: str | None = None,
        identity: str = "",
        password: str = "",
        region: str | None = None,
        connection: Any | None = None,
    ) -> None:
        self._region = region
        if connection is not None:
            self._conn = connection
            return

        try:
            from swiftclient import client as swift_client
        except ImportError as exc:
            raise ConfigError(
                "python-swiftclient is required for the swift provider "
                "(pip install 'blobstore-storage[swift]')"
            ) from exc

        if not endpoint:
            raise ConfigError("Provider 'swift' requires an endpoint")

        auth_version = _auth_version(endpoint)
        os_options: dict[str, str] = {}
        user = identity
        if auth_version != "1" and ":" in identity:
            # Keystone identities are written tenant:user.
            tenant, user = identity.split(":", 1)
            os_options["tenant_name"] = tenant
            os_options["project_name"] = tenant
        if region:
            os_options["region_name"] = region

        self._conn = swift_client.Connection(
            authurl=endpoint,
            user=user,
            key=password,
            auth_version=auth_version,
            os_options=os_options,
        )

    @property
    def backend_name(self) -> str:
        return "swift"

    def blob_exists(self, container: str, path: str) -> bool:
        with self._translate_errors("head_object", path):
            try:
                self._conn.head_object(container, path)
            except Exception as e:  # noqa: BLE001
                if _is_not_found(e):
                    return False
                raise
        return True

    def get_blob(self, container: str, path: str) -> Blob | None:
        with self._translate_errors("head_object", path):
            try:
                headers = self._conn.head_object(container, path)
            except Exception as e:  # noqa: BLE001
                if _is_not_found(e):
                    return None
                raise

        user_metadata = {
            key[len(_META_HEADER) :].lower(): value
            for key, value in headers.items()
            if key.lower().startswith(_META_HEADER)
        }
        length = headers.get("content-length")

        def opener() -> io.BytesIO:
            with self._translate_errors("get_object", path):
                _, body = self._conn.get_object(container, path)
            return io.BytesIO(body)

        return Blob(
            metadata=BlobMetadata(
                name=path,
                user_metadata=user_metadata,
                last_modified=_parse_last_modified(headers.get("last-modified")),
                content_type=headers.get("content-type"),
            ),
            payload=BlobPayload(
                opener=opener,
                content_length=int(length) if length is not None else None,
            ),
        )

    def put_blob(self, container: str, blob: Blob) -> None:
        name = blob.metadata.name
        headers = {
            f"X-Object-Meta-{key}": value for key, value in blob.metadata.user_metadata.items()
        }
        source = blob.payload.open_stream()
        try:
            with self._translate_errors("put_object", name):
                self._conn.put_object(
                    container,
                    name,
                    contents=source,
                    content_type=blob.metadata.content_type,
                    headers=headers,
                )
        finally:
            source.close()
        logger.debug("Stored swift object %s/%s", container, name)

    def remove_blob(self, container: str, path: str) -> None:
        with self._translate_errors("delete_object", path):
            try:
                self._conn.delete_object(container, path)
            except Exception as e:  # noqa: BLE001
                if not _is_not_found(e):
                    raise

    def create_container_in_location(self, location: Location | None, container: str) -> bool:
        with self._translate_errors("put_container", container):
            try:
                self._conn.head_container(container)
                return False
            except Exception as e:  # noqa: BLE001
                if not _is_not_found(e):
                    raise
            self._conn.put_container(container)
        logger.info("Created swift container %s", container)
        return True

    def _list_names(self, container: str, prefix: str) -> list[str]:
        with self._translate_errors("get_container", container):
            _, objects = self._conn.get_container(container, prefix=prefix, full_listing=True)
        return [obj["name"] for obj in objects if "name" in obj]

    def directory_exists(self, container: str, directory: str) -> bool:
        prefix = directory.rstrip("/") + "/"
        with self._translate_errors("get_container", container):
            _, objects = self._conn.get_container(container, prefix=prefix, limit=1)
        return bool(objects)

    def create_directory(self, container: str, directory: str) -> None:
        marker = directory.rstrip("/") + "/"
        with self._translate_errors("put_object", marker):
            self._conn.put_object(
                container,
                marker,
                contents=b"",
                content_type=DIRECTORY_CONTENT_TYPE,
            )

    def delete_directory(self, container: str, directory: str) -> None:
        prefix = directory.rstrip("/") + "/"
        for name in self._list_names(container, prefix):
            self.remove_blob(container, name)

    def list(self, container: str) -> list[StorageMetadata]:
        with self._translate_errors("get_container", container):
            _, objects = self._conn.get_container(container, delimiter="/", full_listing=True)

        entries: dict[str, StorageMetadata] = {}
        for obj in objects:
            if "subdir" in obj:
                name = obj["subdir"].rstrip("/")
                entries[name] = StorageMetadata(name=name, type=StorageType.RELATIVE_PATH)
            elif obj.get("content_type") == DIRECTORY_CONTENT_TYPE:
                name = obj["name"].rstrip("/")
                entries.setdefault(name, StorageMetadata(name=name, type=StorageType.FOLDER))
            else:
                entries.setdefault(
                    obj["name"], StorageMetadata(name=obj["name"], type=StorageType.BLOB)
                )
        return list(entries.values())

    def list_assignable_locations(self) -> list[Location]:
        """Return the configured region.

        The connection authenticates against that region, so an unknown
        region already fails at connect time.
        """
        return [Location(id=self._region)] if self._region else []

    def close(self) -> None:
        self._conn.close()
        super().close()
