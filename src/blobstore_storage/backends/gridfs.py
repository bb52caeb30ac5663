"""MongoDB GridFS blob store using pymongo.

Each container is a GridFS bucket (``{container}.files`` /
``{container}.chunks``) in the connection string's default database. Blob
paths are GridFS filenames; user metadata lives in the file document's
``metadata`` field. Overwrites store a new version and delete the old ones.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC
from typing import Any

from blobstore_storage.backends.base import (
    Blob,
    BlobMetadata,
    BlobPayload,
    BlobStoreDriver,
    Location,
    StorageMetadata,
    top_level_entries,
)
from blobstore_storage.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "fascinator"


def _prefix_query(directory: str) -> dict[str, Any]:
    prefix = directory.rstrip("/") + "/"
    return {"filename": {"$regex": "^" + re.escape(prefix)}}


class GridFsBlobStore(BlobStoreDriver):
    """Blob store on MongoDB GridFS."""

    def __init__(
        self,
        connection_string: str | None = None,
        *,
        database: Any | None = None,
        gridfs_module: Any | None = None,
    ) -> None:
        self._mongo: Any | None = None
        if database is not None and gridfs_module is not None:
            self._db = database
            self._gridfs = gridfs_module
        else:
            try:
                import gridfs
                from pymongo import MongoClient
            except ImportError as exc:
                raise ConfigError(
                    "pymongo is required for the gridfs provider "
                    "(pip install 'blobstore-storage[gridfs]')"
                ) from exc
            if not connection_string:
                raise ConfigError("Provider 'gridfs' requires gridFsConnectionString")

            self._mongo = MongoClient(connection_string, tz_aware=True)
            self._db = self._mongo.get_default_database(default=DEFAULT_DATABASE)
            self._gridfs = gridfs
        self._buckets: dict[str, Any] = {}

    @property
    def backend_name(self) -> str:
        return "gridfs"

    def _bucket(self, container: str) -> Any:
        bucket = self._buckets.get(container)
        if bucket is None:
            bucket = self._gridfs.GridFS(self._db, collection=container)
            self._buckets[container] = bucket
        return bucket

    def blob_exists(self, container: str, path: str) -> bool:
        with self._translate_errors("exists", path):
            return bool(self._bucket(container).exists(filename=path))

    def get_blob(self, container: str, path: str) -> Blob | None:
        bucket = self._bucket(container)
        with self._translate_errors("get_last_version", path):
            try:
                grid_out = bucket.get_last_version(filename=path)
            except self._gridfs.errors.NoFile:
                return None

        last_modified = grid_out.upload_date
        if last_modified is not None and last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=UTC)

        def opener() -> Any:
            with self._translate_errors("get_last_version", path):
                return bucket.get_last_version(filename=path)

        return Blob(
            metadata=BlobMetadata(
                name=path,
                user_metadata=dict(grid_out.metadata or {}),
                last_modified=last_modified,
                content_type=(grid_out.metadata or {}).get("contenttype"),
            ),
            payload=BlobPayload(opener=opener, content_length=grid_out.length),
        )

    def put_blob(self, container: str, blob: Blob) -> None:
        name = blob.metadata.name
        bucket = self._bucket(container)
        source = blob.payload.open_stream()
        try:
            with self._translate_errors("put", name):
                new_id = bucket.put(
                    source,
                    filename=name,
                    metadata=dict(blob.metadata.user_metadata),
                )
                for old in bucket.find({"filename": name, "_id": {"$ne": new_id}}):
                    bucket.delete(old._id)
        finally:
            source.close()
        logger.debug("Stored gridfs file %s/%s", container, name)

    def remove_blob(self, container: str, path: str) -> None:
        bucket = self._bucket(container)
        with self._translate_errors("delete", path):
            for grid_out in bucket.find({"filename": path}):
                bucket.delete(grid_out._id)

    def create_container_in_location(self, location: Location | None, container: str) -> bool:
        # GridFS collections are created on first write.
        with self._translate_errors("list_collections", container):
            existing = f"{container}.files" in self._db.list_collection_names()
        self._bucket(container)
        return not existing

    def directory_exists(self, container: str, directory: str) -> bool:
        with self._translate_errors("exists", directory):
            return bool(self._bucket(container).exists(_prefix_query(directory)))

    def create_directory(self, container: str, directory: str) -> None:
        marker = directory.rstrip("/") + "/"
        with self._translate_errors("put", marker):
            self._bucket(container).put(b"", filename=marker, metadata={})

    def delete_directory(self, container: str, directory: str) -> None:
        bucket = self._bucket(container)
        with self._translate_errors("delete", directory):
            for grid_out in bucket.find(_prefix_query(directory)):
                bucket.delete(grid_out._id)

    def list(self, container: str) -> list[StorageMetadata]:
        with self._translate_errors("distinct", container):
            names = list(self._db[f"{container}.files"].distinct("filename"))
        return top_level_entries(names)

    def list_assignable_locations(self) -> list[Location]:
        return []

    def close(self) -> None:
        if self._mongo is not None:
            self._mongo.close()
        super().close()
