"""Blob store drivers.

Providers:
- transient: in-process memory (tests, ephemeral use)
- filesystem: local directory tree, user metadata in extended attributes
- swift: OpenStack Swift via python-swiftclient
- s3: S3-compatible stores via boto3
- gridfs: MongoDB GridFS via pymongo

Third-party libraries are imported only when their provider is selected.
"""

from __future__ import annotations

from collections.abc import Callable

from blobstore_storage.backends.base import (
    Blob,
    BlobBuilder,
    BlobMetadata,
    BlobPayload,
    BlobStoreDriver,
    Location,
    StorageMetadata,
    StorageType,
)
from blobstore_storage.config import BlobStoreConfig
from blobstore_storage.errors import ConfigError

DriverFactory = Callable[[BlobStoreConfig, bool | None], BlobStoreDriver]


def _transient(config: BlobStoreConfig, user_metadata: bool | None) -> BlobStoreDriver:
    from blobstore_storage.backends.transient import TransientBlobStore, shared_state

    locations = [Location(id=config.location)] if config.location else None
    return TransientBlobStore(
        shared_state(config.endpoint or "default"),
        user_metadata=True if user_metadata is None else user_metadata,
        locations=locations,
    )


def _filesystem(config: BlobStoreConfig, user_metadata: bool | None) -> BlobStoreDriver:
    from blobstore_storage.backends.filesystem import FilesystemBlobStore

    if not config.file_system_location:
        raise ConfigError("Provider 'filesystem' requires fileSystemLocation")
    return FilesystemBlobStore(
        config.file_system_location,
        user_metadata=True if user_metadata is None else user_metadata,
    )


def _swift(config: BlobStoreConfig, user_metadata: bool | None) -> BlobStoreDriver:
    from blobstore_storage.backends.swift import SwiftBlobStore

    return SwiftBlobStore(
        endpoint=config.endpoint,
        identity=config.identity,
        password=config.password,
        region=config.location,
    )


def _s3(config: BlobStoreConfig, user_metadata: bool | None) -> BlobStoreDriver:
    from blobstore_storage.backends.s3 import S3BlobStore

    return S3BlobStore(
        endpoint_url=config.endpoint,
        access_key=config.identity,
        secret_key=config.password,
        region=config.location,
    )


def _gridfs(config: BlobStoreConfig, user_metadata: bool | None) -> BlobStoreDriver:
    from blobstore_storage.backends.gridfs import GridFsBlobStore

    return GridFsBlobStore(config.grid_fs_connection_string)


PROVIDERS: dict[str, DriverFactory] = {
    "transient": _transient,
    "filesystem": _filesystem,
    "swift": _swift,
    "s3": _s3,
    "gridfs": _gridfs,
}


def create_driver(config: BlobStoreConfig, user_metadata: bool | None = None) -> BlobStoreDriver:
    """Build the driver for the configured provider.

    Args:
        config: Blobstore configuration.
        user_metadata: Capability decided by the caller; None lets the driver
            use its native capability.

    Raises:
        ConfigError: If the provider is unknown or its library is missing.
    """
    factory = PROVIDERS.get(config.provider)
    if factory is None:
        raise ConfigError(
            f"Unknown blobstore provider '{config.provider}'. Valid options: {sorted(PROVIDERS)}"
        )
    return factory(config, user_metadata)


__all__ = [
    "Blob",
    "BlobBuilder",
    "BlobMetadata",
    "BlobPayload",
    "BlobStoreDriver",
    "DriverFactory",
    "Location",
    "PROVIDERS",
    "StorageMetadata",
    "StorageType",
    "create_driver",
]
