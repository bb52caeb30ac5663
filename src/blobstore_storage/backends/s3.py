"""S3 and S3-compatible (MinIO, Ceph RGW) blob store using boto3.

User metadata travels as ``x-amz-meta-*`` object metadata. Directory
markers are zero-length objects named ``{oid}/``.
"""

from __future__ import annotations

import logging
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

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
_DELETE_BATCH = 1000


def _error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None) or {}
    error = response.get("Error") or {}
    return str(error.get("Code") or "")


class S3BlobStore(BlobStoreDriver):
    """Blob store on an S3 bucket per container."""

    def __init__(
        self,
        *,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str | None = None,
        client: Any | None = None,
    ) -> None:
        self._region = region
        if client is not None:
            self._client = client
            self._session = None
            return

        try:
            import boto3
        except ImportError as exc:
            raise ConfigError(
                "boto3 is required for the s3 provider (pip install 'blobstore-storage[s3]')"
            ) from exc

        self._session = boto3.session.Session(
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            region_name=region,
        )
        self._client = self._session.client("s3", endpoint_url=endpoint_url)

    @property
    def backend_name(self) -> str:
        return "s3"

    def _head(self, container: str, path: str) -> dict[str, Any] | None:
        try:
            return self._client.head_object(Bucket=container, Key=path)
        except Exception as e:  # noqa: BLE001
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise

    def blob_exists(self, container: str, path: str) -> bool:
        with self._translate_errors("head_object", path):
            return self._head(container, path) is not None

    def get_blob(self, container: str, path: str) -> Blob | None:
        with self._translate_errors("head_object", path):
            head = self._head(container, path)
        if head is None:
            return None

        def opener() -> Any:
            with self._translate_errors("get_object", path):
                response = self._client.get_object(Bucket=container, Key=path)
            return response["Body"]

        return Blob(
            metadata=BlobMetadata(
                name=path,
                user_metadata=dict(head.get("Metadata") or {}),
                last_modified=head.get("LastModified"),
                content_type=head.get("ContentType"),
            ),
            payload=BlobPayload(opener=opener, content_length=head.get("ContentLength")),
        )

    def put_blob(self, container: str, blob: Blob) -> None:
        name = blob.metadata.name
        extra_args: dict[str, Any] = {"Metadata": dict(blob.metadata.user_metadata)}
        if blob.metadata.content_type:
            extra_args["ContentType"] = blob.metadata.content_type

        source = blob.payload.open_stream()
        try:
            with self._translate_errors("upload", name):
                self._client.upload_fileobj(source, container, name, ExtraArgs=extra_args)
        finally:
            source.close()
        logger.debug("Stored s3 object %s/%s", container, name)

    def remove_blob(self, container: str, path: str) -> None:
        with self._translate_errors("delete_object", path):
            self._client.delete_object(Bucket=container, Key=path)

    def create_container_in_location(self, location: Location | None, container: str) -> bool:
        with self._translate_errors("create_bucket", container):
            try:
                self._client.head_bucket(Bucket=container)
                return False
            except Exception as e:  # noqa: BLE001
                if _error_code(e) not in _NOT_FOUND_CODES:
                    raise

            kwargs: dict[str, Any] = {"Bucket": container}
            if location is not None and location.id != "us-east-1":
                kwargs["CreateBucketConfiguration"] = {"LocationConstraint": location.id}
            try:
                self._client.create_bucket(**kwargs)
            except Exception as e:  # noqa: BLE001
                if _error_code(e) == "BucketAlreadyOwnedByYou":
                    return False
                raise
        logger.info("Created s3 bucket %s", container)
        return True

    def _list_keys(self, container: str, prefix: str) -> list[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        keys: list[str] = []
        with self._translate_errors("list_objects", prefix):
            for page in paginator.paginate(Bucket=container, Prefix=prefix):
                for obj in page.get("Contents", []) or []:
                    key = obj.get("Key")
                    if key:
                        keys.append(key)
        return keys

    def directory_exists(self, container: str, directory: str) -> bool:
        prefix = directory.rstrip("/") + "/"
        with self._translate_errors("list_objects", prefix):
            response = self._client.list_objects_v2(Bucket=container, Prefix=prefix, MaxKeys=1)
        return bool(response.get("KeyCount") or response.get("Contents"))

    def create_directory(self, container: str, directory: str) -> None:
        marker = directory.rstrip("/") + "/"
        with self._translate_errors("put_object", marker):
            self._client.put_object(Bucket=container, Key=marker, Body=b"")

    def delete_directory(self, container: str, directory: str) -> None:
        keys = self._list_keys(container, directory.rstrip("/") + "/")
        chunks = [keys[i : i + _DELETE_BATCH] for i in range(0, len(keys), _DELETE_BATCH)]
        for chunk in chunks:
            with self._translate_errors("delete_objects", directory):
                self._client.delete_objects(
                    Bucket=container,
                    Delete={"Objects": [{"Key": key} for key in chunk], "Quiet": True},
                )

    def list(self, container: str) -> list[StorageMetadata]:
        paginator = self._client.get_paginator("list_objects_v2")
        entries: dict[str, StorageMetadata] = {}
        with self._translate_errors("list_objects", container):
            for page in paginator.paginate(Bucket=container, Delimiter="/"):
                for common in page.get("CommonPrefixes", []) or []:
                    name = common["Prefix"].rstrip("/")
                    entries[name] = StorageMetadata(name=name, type=StorageType.RELATIVE_PATH)
                for obj in page.get("Contents", []) or []:
                    key = obj["Key"]
                    entries.setdefault(key, StorageMetadata(name=key, type=StorageType.BLOB))
        return list(entries.values())

    def list_assignable_locations(self) -> list[Location]:
        if self._session is None:
            return [Location(id=self._region)] if self._region else []
        return [Location(id=region) for region in self._session.get_available_regions("s3")]

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            close()
        super().close()
