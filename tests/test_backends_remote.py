"""Tests for the Swift, S3 and GridFS drivers against fake client libraries.

No network services are needed: each driver accepts an injected client
object, and the fakes below reproduce the library calls the drivers make.
"""

from __future__ import annotations

import io
import re
import types
from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock

import pytest

from blobstore_storage.backends.base import Location, StorageMetadata, StorageType
from blobstore_storage.backends.gridfs import GridFsBlobStore
from blobstore_storage.backends.s3 import S3BlobStore
from blobstore_storage.backends.swift import SwiftBlobStore, _auth_version
from blobstore_storage.client import BlobStoreClient
from blobstore_storage.config import load_config
from blobstore_storage.errors import BackendError
from blobstore_storage.models import PayloadType
from blobstore_storage.storage import Storage


class FakeSwiftError(Exception):
    """Mimics swiftclient.ClientException."""

    def __init__(self, message: str, http_status: int) -> None:
        super().__init__(message)
        self.http_status = http_status


class FakeSwiftConnection:
    """In-memory stand-in for swiftclient.client.Connection."""

    def __init__(self) -> None:
        self.containers: dict[str, dict[str, dict[str, Any]]] = {}
        self.closed = False

    def _objects(self, container: str) -> dict[str, dict[str, Any]]:
        if container not in self.containers:
            raise FakeSwiftError("Container GET failed", 404)
        return self.containers[container]

    def head_container(self, container: str) -> dict[str, str]:
        self._objects(container)
        return {}

    def put_container(self, container: str) -> None:
        self.containers.setdefault(container, {})

    def put_object(
        self,
        container: str,
        name: str,
        contents: Any = b"",
        content_type: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        data = contents if isinstance(contents, bytes) else contents.read()
        self._objects(container)[name] = {
            "data": data,
            "content_type": content_type or "application/octet-stream",
            "headers": {k.lower(): v for k, v in (headers or {}).items()},
        }
        return "etag"

    def head_object(self, container: str, name: str) -> dict[str, str]:
        obj = self._objects(container).get(name)
        if obj is None:
            raise FakeSwiftError("Object HEAD failed", 404)
        return {
            "content-length": str(len(obj["data"])),
            "content-type": obj["content_type"],
            "last-modified": "Wed, 01 May 2024 10:00:00 GMT",
            **obj["headers"],
        }

    def get_object(self, container: str, name: str) -> tuple[dict[str, str], bytes]:
        headers = self.head_object(container, name)
        return headers, self._objects(container)[name]["data"]

    def delete_object(self, container: str, name: str) -> None:
        if self._objects(container).pop(name, None) is None:
            raise FakeSwiftError("Object DELETE failed", 404)

    def get_container(
        self,
        container: str,
        prefix: str | None = None,
        delimiter: str | None = None,
        limit: int | None = None,
        full_listing: bool = False,
    ) -> tuple[dict[str, str], list[dict[str, Any]]]:
        objects = self._objects(container)
        names = sorted(n for n in objects if n.startswith(prefix or ""))
        listing: list[dict[str, Any]] = []
        seen: set[str] = set()
        for name in names:
            if delimiter and delimiter in name:
                subdir = name.split(delimiter, 1)[0] + delimiter
                if subdir not in seen:
                    seen.add(subdir)
                    listing.append({"subdir": subdir})
                continue
            listing.append({"name": name, "content_type": objects[name]["content_type"]})
        return {}, listing[:limit] if limit else listing

    def close(self) -> None:
        self.closed = True


class TestSwiftBlobStore:
    """Tests for SwiftBlobStore."""

    @pytest.fixture
    def conn(self) -> FakeSwiftConnection:
        return FakeSwiftConnection()

    @pytest.fixture
    def store(self, conn: FakeSwiftConnection) -> SwiftBlobStore:
        store = SwiftBlobStore(connection=conn, region="RegionOne")
        store.create_container_in_location(None, "box")
        return store

    def test_container_created_once(self, conn: FakeSwiftConnection) -> None:
        store = SwiftBlobStore(connection=conn)
        assert store.create_container_in_location(None, "box") is True
        assert store.create_container_in_location(None, "box") is False

    def test_metadata_travels_as_headers(
        self, store: SwiftBlobStore, conn: FakeSwiftConnection
    ) -> None:
        blob = (
            store.blob_builder("obj/p")
            .user_metadata({"label": "L", "payloadtype": "Source"})
            .content_type("text/plain")
            .payload(b"hello")
            .build()
        )
        store.put_blob("box", blob)

        assert conn.containers["box"]["obj/p"]["headers"] == {
            "x-object-meta-label": "L",
            "x-object-meta-payloadtype": "Source",
        }
        stored = store.get_blob("box", "obj/p")
        assert stored is not None
        assert stored.metadata.user_metadata == {"label": "L", "payloadtype": "Source"}
        assert stored.metadata.content_type == "text/plain"
        assert stored.metadata.last_modified == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)
        assert stored.payload.content_length == 5
        assert stored.payload.read_all() == b"hello"

    def test_missing_object(self, store: SwiftBlobStore) -> None:
        assert store.blob_exists("box", "obj/none") is False
        assert store.get_blob("box", "obj/none") is None
        store.remove_blob("box", "obj/none")

    def test_other_errors_become_backend_errors(self) -> None:
        conn = MagicMock()
        conn.head_object.side_effect = FakeSwiftError("Unauthorized", 401)
        broken = SwiftBlobStore(connection=conn)

        with pytest.raises(BackendError) as exc_info:
            broken.blob_exists("box", "obj/p")
        assert isinstance(exc_info.value.cause, FakeSwiftError)

    def test_directories_and_listing(self, store: SwiftBlobStore) -> None:
        store.create_directory("box", "obj1")
        store.put_blob("box", store.blob_builder("obj1/p").payload(b"x").build())
        store.put_blob("box", store.blob_builder("loose").payload(b"x").build())

        assert store.directory_exists("box", "obj1") is True
        assert store.directory_exists("box", "obj2") is False
        entries = {entry.name: entry.type for entry in store.list("box")}
        assert entries == {"obj1": StorageType.RELATIVE_PATH, "loose": StorageType.BLOB}

        store.delete_directory("box", "obj1")
        assert store.directory_exists("box", "obj1") is False
        assert store.blob_exists("box", "loose") is True

    def test_locations_are_configured_region(self, store: SwiftBlobStore) -> None:
        assert store.list_assignable_locations() == [Location("RegionOne")]
        assert SwiftBlobStore(connection=FakeSwiftConnection()).list_assignable_locations() == []

    def test_close_closes_connection(
        self, store: SwiftBlobStore, conn: FakeSwiftConnection
    ) -> None:
        store.close()
        assert conn.closed is True

    @pytest.mark.parametrize(
        ("endpoint", "expected"),
        [
            ("http://keystone:5000/v2.0", "2.0"),
            ("http://keystone:5000/v3/", "3"),
            ("http://swift:8080/auth/v1.0", "1"),
        ],
    )
    def test_auth_version_from_endpoint(self, endpoint: str, expected: str) -> None:
        assert _auth_version(endpoint) == expected


class FakeClientError(Exception):
    """Mimics botocore.exceptions.ClientError."""

    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.response = {"Error": {"Code": code}}


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client."""

    def __init__(self) -> None:
        self.buckets: dict[str, dict[str, dict[str, Any]]] = {}
        self.delete_batches: list[int] = []
        self.create_calls: list[dict[str, Any]] = []

    def _bucket(self, name: str) -> dict[str, dict[str, Any]]:
        if name not in self.buckets:
            raise FakeClientError("NoSuchBucket")
        return self.buckets[name]

    def head_bucket(self, Bucket: str) -> dict[str, Any]:  # noqa: N803
        if Bucket not in self.buckets:
            raise FakeClientError("404")
        return {}

    def create_bucket(self, **kwargs: Any) -> dict[str, Any]:
        self.create_calls.append(kwargs)
        self.buckets[kwargs["Bucket"]] = {}
        return {}

    def upload_fileobj(
        self, fileobj: Any, bucket: str, key: str, ExtraArgs: dict[str, Any]  # noqa: N803
    ) -> None:
        self._bucket(bucket)[key] = {
            "Body": fileobj.read(),
            "Metadata": ExtraArgs.get("Metadata", {}),
            "ContentType": ExtraArgs.get("ContentType", "binary/octet-stream"),
        }

    def put_object(self, Bucket: str, Key: str, Body: bytes) -> dict[str, Any]:  # noqa: N803
        self._bucket(Bucket)[Key] = {"Body": Body, "Metadata": {}, "ContentType": ""}
        return {}

    def head_object(self, Bucket: str, Key: str) -> dict[str, Any]:  # noqa: N803
        obj = self._bucket(Bucket).get(Key)
        if obj is None:
            raise FakeClientError("404")
        return {
            "ContentLength": len(obj["Body"]),
            "ContentType": obj["ContentType"],
            "Metadata": obj["Metadata"],
            "LastModified": datetime(2024, 5, 1, tzinfo=UTC),
        }

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:  # noqa: N803
        return {"Body": io.BytesIO(self._bucket(Bucket)[Key]["Body"])}

    def delete_object(self, Bucket: str, Key: str) -> dict[str, Any]:  # noqa: N803
        self._bucket(Bucket).pop(Key, None)
        return {}

    def delete_objects(self, Bucket: str, Delete: dict[str, Any]) -> dict[str, Any]:  # noqa: N803
        self.delete_batches.append(len(Delete["Objects"]))
        for item in Delete["Objects"]:
            self._bucket(Bucket).pop(item["Key"], None)
        return {}

    def list_objects_v2(
        self,
        Bucket: str,  # noqa: N803
        Prefix: str = "",  # noqa: N803
        Delimiter: str | None = None,  # noqa: N803
        MaxKeys: int = 1000,  # noqa: N803
    ) -> dict[str, Any]:
        keys = sorted(k for k in self._bucket(Bucket) if k.startswith(Prefix))
        contents: list[dict[str, Any]] = []
        prefixes: list[dict[str, str]] = []
        for key in keys:
            rest = key[len(Prefix) :]
            if Delimiter and Delimiter in rest:
                common = Prefix + rest.split(Delimiter, 1)[0] + Delimiter
                if {"Prefix": common} not in prefixes:
                    prefixes.append({"Prefix": common})
                continue
            contents.append({"Key": key})
        contents = contents[:MaxKeys]
        return {"Contents": contents, "CommonPrefixes": prefixes, "KeyCount": len(contents)}

    def get_paginator(self, operation: str) -> Any:
        client = self

        class Paginator:
            def paginate(self, **kwargs: Any) -> list[dict[str, Any]]:
                kwargs.setdefault("MaxKeys", 10**6)
                return [client.list_objects_v2(**kwargs)]

        return Paginator()


class TestS3BlobStore:
    """Tests for S3BlobStore."""

    @pytest.fixture
    def client(self) -> FakeS3Client:
        return FakeS3Client()

    @pytest.fixture
    def store(self, client: FakeS3Client) -> S3BlobStore:
        store = S3BlobStore(client=client, region="eu-west-1")
        store.create_container_in_location(None, "box")
        return store

    def test_bucket_created_with_location_constraint(self, client: FakeS3Client) -> None:
        store = S3BlobStore(client=client)

        assert store.create_container_in_location(Location("eu-west-1"), "eu") is True
        assert store.create_container_in_location(Location("us-east-1"), "us") is True
        assert store.create_container_in_location(None, "eu") is False

        assert client.create_calls == [
            {"Bucket": "eu", "CreateBucketConfiguration": {"LocationConstraint": "eu-west-1"}},
            {"Bucket": "us"},
        ]

    def test_bucket_already_owned(self) -> None:
        client = MagicMock()
        client.head_bucket.side_effect = FakeClientError("404")
        client.create_bucket.side_effect = FakeClientError("BucketAlreadyOwnedByYou")

        assert S3BlobStore(client=client).create_container_in_location(None, "box") is False

    def test_put_get_with_metadata(self, store: S3BlobStore) -> None:
        blob = (
            store.blob_builder("obj/p")
            .user_metadata({"label": "L"})
            .content_type("text/plain")
            .payload(b"hello")
            .build()
        )
        store.put_blob("box", blob)

        stored = store.get_blob("box", "obj/p")
        assert stored is not None
        assert stored.metadata.user_metadata == {"label": "L"}
        assert stored.metadata.content_type == "text/plain"
        assert stored.payload.content_length == 5
        assert stored.payload.read_all() == b"hello"

    def test_missing_object(self, store: S3BlobStore) -> None:
        assert store.blob_exists("box", "obj/none") is False
        assert store.get_blob("box", "obj/none") is None

    def test_access_denied_becomes_backend_error(self) -> None:
        client = MagicMock()
        client.head_object.side_effect = FakeClientError("AccessDenied")

        with pytest.raises(BackendError, match="AccessDenied"):
            S3BlobStore(client=client).blob_exists("box", "obj/p")

    def test_directories_and_listing(self, store: S3BlobStore) -> None:
        store.create_directory("box", "obj1")
        store.put_blob("box", store.blob_builder("obj1/p").payload(b"x").build())
        store.put_blob("box", store.blob_builder("loose").payload(b"x").build())

        assert store.directory_exists("box", "obj1") is True
        assert store.directory_exists("box", "obj2") is False
        assert store.list("box") == [
            StorageMetadata("obj1", StorageType.RELATIVE_PATH),
            StorageMetadata("loose", StorageType.BLOB),
        ]

    def test_delete_directory_in_batches(self, store: S3BlobStore, client: FakeS3Client) -> None:
        for i in range(1203):
            client.buckets["box"][f"obj1/p{i}"] = {"Body": b"", "Metadata": {}, "ContentType": ""}

        store.delete_directory("box", "obj1")

        assert client.delete_batches == [1000, 203]
        assert client.buckets["box"] == {}

    def test_locations_from_region_when_client_injected(self, store: S3BlobStore) -> None:
        assert store.list_assignable_locations() == [Location("eu-west-1")]


class FakeNoFile(Exception):
    """Mimics gridfs.errors.NoFile."""


class FakeGridOut:
    def __init__(self, file_id: int, filename: str, data: bytes, metadata: dict[str, str]):
        self._id = file_id
        self.filename = filename
        self.length = len(data)
        self.metadata = metadata
        self.upload_date = datetime(2024, 5, 1, 12, 0)
        self._stream = io.BytesIO(data)

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def close(self) -> None:
        self._stream.close()


def _matches(doc: FakeGridOut, query: dict[str, Any]) -> bool:
    for key, condition in query.items():
        value = getattr(doc, key)
        if isinstance(condition, dict):
            if "$regex" in condition and not re.match(condition["$regex"], value):
                return False
            if "$ne" in condition and value == condition["$ne"]:
                return False
        elif value != condition:
            return False
    return True


class FakeGridFS:
    """In-memory stand-in for gridfs.GridFS over one collection."""

    def __init__(self, files: list[FakeGridOut], counter: list[int]) -> None:
        self._files = files
        self._counter = counter

    def put(self, data: Any, filename: str, metadata: dict[str, str]) -> int:
        self._counter[0] += 1
        content = data if isinstance(data, bytes) else data.read()
        self._files.append(FakeGridOut(self._counter[0], filename, content, metadata))
        return self._counter[0]

    def exists(self, document: dict[str, Any] | None = None, **kwargs: Any) -> bool:
        query = document or kwargs
        return any(_matches(f, query) for f in self._files)

    def find(self, query: dict[str, Any]) -> list[FakeGridOut]:
        return [f for f in self._files if _matches(f, query)]

    def get_last_version(self, filename: str) -> FakeGridOut:
        versions = [f for f in self._files if f.filename == filename]
        if not versions:
            raise FakeNoFile(filename)
        latest = versions[-1]
        return FakeGridOut(latest._id, latest.filename, latest._stream.getvalue(), latest.metadata)

    def delete(self, file_id: int) -> None:
        self._files[:] = [f for f in self._files if f._id != file_id]


class FakeDatabase:
    """Stand-in for a pymongo Database holding GridFS collections."""

    def __init__(self) -> None:
        self.collections: dict[str, list[FakeGridOut]] = {}
        self.counter = [0]

    def list_collection_names(self) -> list[str]:
        return [f"{name}.files" for name in self.collections]

    def __getitem__(self, name: str) -> Any:
        files = self.collections.get(name.removesuffix(".files"), [])
        collection = MagicMock()
        collection.distinct.side_effect = lambda field: sorted({f.filename for f in files})
        return collection


def _fake_gridfs_module(db: FakeDatabase) -> Any:
    def make(database: FakeDatabase, collection: str) -> FakeGridFS:
        return FakeGridFS(database.collections.setdefault(collection, []), database.counter)

    return types.SimpleNamespace(
        GridFS=make,
        errors=types.SimpleNamespace(NoFile=FakeNoFile),
    )


class TestGridFsBlobStore:
    """Tests for GridFsBlobStore."""

    @pytest.fixture
    def db(self) -> FakeDatabase:
        return FakeDatabase()

    @pytest.fixture
    def store(self, db: FakeDatabase) -> GridFsBlobStore:
        store = GridFsBlobStore(database=db, gridfs_module=_fake_gridfs_module(db))
        store.create_container_in_location(None, "box")
        return store

    def test_container_creation_reports_existing(self, db: FakeDatabase) -> None:
        store = GridFsBlobStore(database=db, gridfs_module=_fake_gridfs_module(db))
        assert store.create_container_in_location(None, "box") is True
        assert store.create_container_in_location(None, "box") is False

    def test_put_get_with_metadata(self, store: GridFsBlobStore) -> None:
        blob = store.blob_builder("obj/p").user_metadata({"label": "L"}).payload(b"hello").build()
        store.put_blob("box", blob)

        stored = store.get_blob("box", "obj/p")
        assert stored is not None
        assert stored.metadata.user_metadata == {"label": "L"}
        assert stored.metadata.last_modified == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        assert stored.payload.content_length == 5
        assert stored.payload.read_all() == b"hello"

    def test_overwrite_keeps_single_version(self, store: GridFsBlobStore, db: FakeDatabase) -> None:
        store.put_blob("box", store.blob_builder("obj/p").payload(b"one").build())
        store.put_blob("box", store.blob_builder("obj/p").payload(b"two").build())

        assert [f.filename for f in db.collections["box"]] == ["obj/p"]
        stored = store.get_blob("box", "obj/p")
        assert stored is not None
        assert stored.payload.read_all() == b"two"

    def test_missing_file(self, store: GridFsBlobStore) -> None:
        assert store.blob_exists("box", "obj/none") is False
        assert store.get_blob("box", "obj/none") is None
        store.remove_blob("box", "obj/none")

    def test_directories_and_listing(self, store: GridFsBlobStore) -> None:
        store.create_directory("box", "obj1")
        store.put_blob("box", store.blob_builder("obj1/p").payload(b"x").build())
        store.put_blob("box", store.blob_builder("loose").payload(b"x").build())

        assert store.directory_exists("box", "obj1") is True
        assert store.directory_exists("box", "obj10") is False
        assert store.list("box") == [
            StorageMetadata("obj1", StorageType.RELATIVE_PATH),
            StorageMetadata("loose", StorageType.BLOB),
        ]

        store.delete_directory("box", "obj1")
        assert store.directory_exists("box", "obj1") is False
        assert store.blob_exists("box", "loose") is True


class TestStorageOverS3:
    """End-to-end object and payload operations through a fake S3 client."""

    @pytest.fixture
    def storage(self) -> Storage:
        client = FakeS3Client()
        config = load_config(
            {"provider": "s3", "containerName": "box", "location": "EU-WEST-1"}
        )
        storage = Storage(
            BlobStoreClient(
                config,
                driver_factory=lambda cfg, _: S3BlobStore(client=client, region="eu-west-1"),
            )
        )
        storage.init()
        return storage

    def test_object_lifecycle(self, storage: Storage) -> None:
        obj = storage.create_object("obj1")
        obj.create_stored_payload("data.txt", b"hello")
        obj.create_stored_payload("notes", b"N")

        assert storage.get_object_id_list() == {"obj1"}
        reopened = storage.get_object("obj1")
        assert reopened.payload_ids == ["data.txt", "notes"]
        assert reopened.source_id == "data.txt"

        payload = reopened.get_payload("notes")
        assert payload.type is PayloadType.OTHER
        assert payload.read() == b"N"

        storage.remove_object("obj1")
        assert storage.get_object_id_list() == set()

    def test_native_metadata_without_sidecars(self, storage: Storage) -> None:
        storage.create_object("obj1").create_stored_payload("data.txt", b"hello")

        driver = storage.client.get_client()
        assert storage.client.supports_user_metadata is True
        assert driver.blob_exists("box", "obj1/data.txt.meta") is False
