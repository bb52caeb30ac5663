"""Blobstore configuration.

Configuration is a JSON document rooted at ``storage.blobstore``::

    {
      "storage": {
        "blobstore": {
          "provider": "filesystem",
          "containerName": "fascinator",
          "fileSystemLocation": "/var/lib/blobstore"
        }
      }
    }

Environment Variables:
    BLOBSTORE_CONFIG: Path of the JSON configuration file used when no
        explicit source is given (CLI default).
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from blobstore_storage.errors import ConfigError

logger = logging.getLogger(__name__)

BLOBSTORE_CONFIG_ENV = "BLOBSTORE_CONFIG"

DEFAULT_PROVIDER = "swift"
DEFAULT_CONTAINER_NAME = "fascinator"

# Keys each provider cannot connect without.
_REQUIRED_KEYS: dict[str, tuple[str, ...]] = {
    "filesystem": ("file_system_location",),
    "gridfs": ("grid_fs_connection_string",),
    "swift": ("identity", "password", "endpoint"),
}


class BlobStoreConfig(BaseModel):
    """Settings of the ``storage.blobstore`` section.

    Attributes:
        provider: Backend identifier (swift, filesystem, gridfs, s3, transient).
        identity: Authentication identity.
        password: Authentication credential.
        container_name: Container or bucket holding all objects.
        location: Optional region/zone id, matched case-insensitively.
        file_system_location: Base directory of the filesystem provider.
        grid_fs_connection_string: MongoDB URI of the gridfs provider.
        supports_user_metadata: Explicit capability override; None auto-detects.
        endpoint: Service or auth endpoint URL.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    provider: str = DEFAULT_PROVIDER
    identity: str = ""
    password: str = Field(default="", repr=False)
    container_name: str = Field(default=DEFAULT_CONTAINER_NAME, alias="containerName")
    location: str | None = None
    file_system_location: str | None = Field(default=None, alias="fileSystemLocation")
    grid_fs_connection_string: str | None = Field(
        default=None, alias="gridFsConnectionString", repr=False
    )
    supports_user_metadata: bool | None = Field(default=None, alias="supportsUserMetadata")
    endpoint: str | None = None

    def validate_for_provider(self) -> None:
        """Check the keys the configured provider requires.

        Raises:
            ConfigError: If a required key is missing or empty.
        """
        if not self.container_name:
            raise ConfigError("containerName must not be empty")

        missing = [
            type(self).model_fields[name].alias or name
            for name in _REQUIRED_KEYS.get(self.provider, ())
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigError(
                f"Provider '{self.provider}' requires storage.blobstore keys: {', '.join(missing)}"
            )


def _blobstore_section(document: Mapping[str, Any]) -> Mapping[str, Any]:
    storage = document.get("storage")
    if isinstance(storage, Mapping) and "blobstore" in storage:
        section = storage["blobstore"]
        if not isinstance(section, Mapping):
            raise ConfigError("storage.blobstore must be a JSON object")
        return section
    return document


def _read_document(source: str | Path) -> Any:
    text: str
    path = Path(source)
    if isinstance(source, Path) or (
        not str(source).lstrip().startswith("{") and path.is_file()
    ):
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file {path}: {e}") from e
    else:
        text = str(source)

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid configuration JSON: {e}") from e


def load_config(source: str | Path | Mapping[str, Any] | None = None) -> BlobStoreConfig:
    """Load blobstore configuration.

    Args:
        source: A mapping, a path to a JSON file, or a JSON string. A document
            with a ``storage.blobstore`` section is descended into; otherwise
            the document is taken as the section itself. If None, the file
            named by BLOBSTORE_CONFIG is read, or defaults are used.

    Returns:
        The parsed configuration.

    Raises:
        ConfigError: If the source cannot be read or fails validation.
    """
    if source is None:
        source = os.environ.get(BLOBSTORE_CONFIG_ENV) or {}

    document = source if isinstance(source, Mapping) else _read_document(source)
    if not isinstance(document, Mapping):
        raise ConfigError("Configuration document must be a JSON object")

    try:
        config = BlobStoreConfig.model_validate(dict(_blobstore_section(document)))
    except ValidationError as e:
        raise ConfigError(f"Invalid storage.blobstore configuration: {e}") from e

    logger.debug(
        "Loaded blobstore config: provider=%s container=%s",
        config.provider,
        config.container_name,
    )
    return config
