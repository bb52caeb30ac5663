"""Blob store client.

Wraps the configured backend driver and is shared by a Storage facade and
every DigitalObject and Payload it hands out. Holds the container name and
the ``supports_user_metadata`` capability flag, and rebuilds the driver
session after every RECONNECT_INTERVAL calls to ``get_client``.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from types import TracebackType

from blobstore_storage.backends import DriverFactory, create_driver
from blobstore_storage.backends.base import BlobStoreDriver, Location
from blobstore_storage.backends.filesystem import supports_extended_attributes
from blobstore_storage.config import BlobStoreConfig
from blobstore_storage.errors import ConfigError

logger = logging.getLogger(__name__)

RECONNECT_INTERVAL = 100


class BlobStoreClient:
    """Connection holder for one configured blob store.

    Thread-safe: connection state is guarded by a lock. ``init`` is
    idempotent; ``get_client`` connects on demand.
    """

    def __init__(
        self,
        config: BlobStoreConfig,
        *,
        driver_factory: DriverFactory | None = None,
        reconnect_interval: int = RECONNECT_INTERVAL,
    ) -> None:
        self._config = config
        self._driver_factory = driver_factory or create_driver
        self._reconnect_interval = reconnect_interval
        self._lock = threading.Lock()
        self._driver: BlobStoreDriver | None = None
        self._connect_count = 0
        self._supports_user_metadata = True

    @property
    def config(self) -> BlobStoreConfig:
        return self._config

    @property
    def provider(self) -> str:
        return self._config.provider

    @property
    def container_name(self) -> str:
        return self._config.container_name

    @property
    def supports_user_metadata(self) -> bool:
        """Whether payload metadata is carried natively by the backend.

        Connects first if needed, since filesystem detection probes the
        storage directory.
        """
        with self._lock:
            if self._driver is None:
                self._connect_locked()
            return self._supports_user_metadata

    @property
    def is_connected(self) -> bool:
        return self._driver is not None

    def init(self) -> None:
        """Validate configuration and connect; a no-op once connected.

        Raises:
            ConfigError: If configuration is incomplete or the location is
                unknown to the backend.
            BackendError: If the backend rejects the connection.
        """
        with self._lock:
            if self._driver is not None:
                return
            self._connect_locked()

    def get_client(self) -> BlobStoreDriver:
        """Return the live driver, rebuilding the session when due."""
        with self._lock:
            if self._driver is None or self._connect_count >= self._reconnect_interval:
                self._connect_locked()
            self._connect_count += 1
            return self._driver

    def close(self) -> None:
        """Release the backend session; the next ``get_client`` reconnects."""
        with self._lock:
            if self._driver is None:
                return
            driver, self._driver = self._driver, None
            self._connect_count = 0
            driver.close()
            logger.info("Closed blobstore connection: provider=%s", self.provider)

    def __enter__(self) -> BlobStoreClient:
        self.init()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _detect_filesystem_capability(self) -> bool:
        base_dir = Path(self._config.file_system_location or "")
        try:
            base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Failed to create storage directory {base_dir}: {e}") from e
        return supports_extended_attributes(base_dir)

    def _resolve_location(self, driver: BlobStoreDriver) -> Location | None:
        wanted = self._config.location
        if not wanted:
            return None
        for location in driver.list_assignable_locations():
            if location.id.lower() == wanted.lower():
                return location
        raise ConfigError(f"{wanted} location not found in blobstore")

    def _connect_locked(self) -> None:
        config = self._config
        config.validate_for_provider()

        user_metadata = config.supports_user_metadata
        if config.provider == "filesystem" and user_metadata is None:
            user_metadata = self._detect_filesystem_capability()

        reconnecting = self._driver is not None
        if reconnecting:
            self._driver.close()
            self._driver = None

        driver = self._driver_factory(config, user_metadata)
        try:
            location = self._resolve_location(driver)
            created = driver.create_container_in_location(location, config.container_name)
        except Exception:
            driver.close()
            raise

        self._supports_user_metadata = (
            user_metadata if user_metadata is not None else driver.supports_user_metadata
        )
        self._driver = driver
        self._connect_count = 0

        logger.info(
            "%s blobstore: provider=%s container=%s created=%s user_metadata=%s",
            "Reconnected" if reconnecting else "Connected",
            config.provider,
            config.container_name,
            created,
            self._supports_user_metadata,
        )
