"""Blobstore storage: digital objects and payloads over pluggable blob stores.

Each object is a prefix ``oid/`` in one container holding its payload blobs,
a JSON manifest (``oid/object-manifest``) and, when the backend cannot carry
per-blob user metadata, ``oid/pid.meta`` properties sidecars.

Backends:
- transient: in-process memory
- filesystem: local directories, metadata in extended attributes
- swift: OpenStack Swift
- s3: S3-compatible object stores
- gridfs: MongoDB GridFS

Environment Variables:
    BLOBSTORE_CONFIG: Default configuration file for ``Storage.from_config``
        and the CLI.
    BLOBSTORE_OTEL_ENABLED: Set to "1" to emit OpenTelemetry spans.
"""

from blobstore_storage.client import BlobStoreClient
from blobstore_storage.config import BlobStoreConfig, load_config
from blobstore_storage.digital_object import DigitalObject
from blobstore_storage.errors import (
    BackendError,
    ConfigError,
    DuplicateOIDError,
    DuplicatePIDError,
    FormatError,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
)
from blobstore_storage.models import PayloadMetadata, PayloadType
from blobstore_storage.payload import Payload
from blobstore_storage.storage import Storage

__version__ = "0.1.0"

__all__ = [
    "BackendError",
    "BlobStoreClient",
    "BlobStoreConfig",
    "ConfigError",
    "DigitalObject",
    "DuplicateOIDError",
    "DuplicatePIDError",
    "FormatError",
    "InvalidArgumentError",
    "NotFoundError",
    "Payload",
    "PayloadMetadata",
    "PayloadType",
    "Storage",
    "StorageError",
    "load_config",
]
