"""Pytest configuration and fixtures for blobstore storage tests.

Storages are built over the transient (in-memory) driver in both metadata
modes, plus the filesystem driver with the capability pinned so results do
not depend on the test machine's xattr support.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from blobstore_storage.backends.transient import reset_transient_stores
from blobstore_storage.client import BlobStoreClient
from blobstore_storage.config import load_config
from blobstore_storage.storage import Storage

TEST_CONTAINER = "fascinator-test"


@pytest.fixture(autouse=True)
def clean_transient_stores() -> Iterator[None]:
    """Give every test empty in-memory stores."""
    reset_transient_stores()
    yield
    reset_transient_stores()


@pytest.fixture(autouse=True)
def tracing_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tracing off unless a test enables it."""
    monkeypatch.delenv("BLOBSTORE_OTEL_ENABLED", raising=False)
    monkeypatch.delenv("BLOBSTORE_CONFIG", raising=False)


def make_storage(**settings: Any) -> Storage:
    """Build and initialize a Storage from blobstore settings."""
    settings.setdefault("containerName", TEST_CONTAINER)
    config = load_config({"storage": {"blobstore": settings}})
    storage = Storage(BlobStoreClient(config))
    storage.init()
    return storage


@pytest.fixture
def native_storage() -> Iterator[Storage]:
    """Transient storage that carries user metadata natively."""
    storage = make_storage(provider="transient", supportsUserMetadata=True)
    yield storage
    storage.shutdown()


@pytest.fixture
def sidecar_storage() -> Iterator[Storage]:
    """Transient storage that writes ``.meta`` sidecars."""
    storage = make_storage(provider="transient", supportsUserMetadata=False)
    yield storage
    storage.shutdown()


@pytest.fixture(params=["native", "sidecar"])
def storage(request: pytest.FixtureRequest) -> Iterator[Storage]:
    """Transient storage in each metadata mode."""
    storage = make_storage(
        provider="transient",
        supportsUserMetadata=request.param == "native",
    )
    yield storage
    storage.shutdown()


@pytest.fixture
def filesystem_storage(tmp_path: Path) -> Iterator[Storage]:
    """Filesystem storage in sidecar mode under a temp directory."""
    storage = make_storage(
        provider="filesystem",
        fileSystemLocation=str(tmp_path / "blobs"),
        supportsUserMetadata=False,
    )
    yield storage
    storage.shutdown()


@pytest.fixture
def storage_factory() -> Iterator[Any]:
    """Build initialized storages from settings; all are shut down afterwards."""
    built: list[Storage] = []

    def factory(**settings: Any) -> Storage:
        storage = make_storage(**settings)
        built.append(storage)
        return storage

    yield factory
    for storage in built:
        storage.shutdown()
