"""Blobstore storage data models.

Provides the payload type enumeration, the per-payload metadata record and
the per-object manifest document.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from blobstore_storage.errors import FormatError

DEFAULT_MIME_TYPE = "application/octet-stream"

METADATA_PAYLOAD_ID = "TF-OBJ-META"
METADATA_SUFFIX = ".meta"
MANIFEST_NAME = "object-manifest"

ID_KEY = "id"
PAYLOAD_TYPE_KEY = "payloadtype"
LABEL_KEY = "label"
LINKED_KEY = "linked"
CONTENT_TYPE_KEY = "contenttype"


class PayloadType(StrEnum):
    """Role of a payload within its object.

    Source: primary content, at most one per object.
    Annotation: the reserved object metadata payload.
    Other: everything else.
    """

    SOURCE = "Source"
    ANNOTATION = "Annotation"
    OTHER = "Other"


def payload_path(oid: str, pid: str) -> str:
    """Return the blob path of a payload."""
    return f"{oid}/{pid}"


def sidecar_path(oid: str, pid: str) -> str:
    """Return the blob path of a payload's sidecar metadata."""
    return f"{oid}/{pid}{METADATA_SUFFIX}"


def manifest_path(oid: str) -> str:
    """Return the blob path of an object's manifest."""
    return f"{oid}/{MANIFEST_NAME}"


@dataclass(frozen=True)
class PayloadMetadata:
    """Metadata stored alongside a payload blob.

    Attributes:
        id: Payload identifier, mirrors the PID.
        payload_type: Role of the payload within its object.
        label: Human-readable label, defaults to the PID.
        content_type: MIME type of the payload bytes.
        linked: Always False; linked payloads are stored as copies.
    """

    id: str
    payload_type: PayloadType
    label: str
    content_type: str = DEFAULT_MIME_TYPE
    linked: bool = False

    def to_dict(self) -> dict[str, str]:
        """Convert to the flat string map written as blob user metadata."""
        return {
            ID_KEY: self.id,
            PAYLOAD_TYPE_KEY: str(self.payload_type),
            LABEL_KEY: self.label,
            LINKED_KEY: "true" if self.linked else "false",
            CONTENT_TYPE_KEY: self.content_type or DEFAULT_MIME_TYPE,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str], pid: str) -> PayloadMetadata:
        """Create metadata from a user metadata or sidecar map.

        Missing keys fall back to the write-time defaults.

        Raises:
            FormatError: If the payload type is not a known PayloadType.
        """
        raw_type = data.get(PAYLOAD_TYPE_KEY)
        try:
            payload_type = PayloadType(raw_type) if raw_type else PayloadType.SOURCE
        except ValueError as e:
            raise FormatError(f"Unknown payload type: {raw_type!r}", pid=pid) from e

        return cls(
            id=data.get(ID_KEY) or pid,
            payload_type=payload_type,
            label=data.get(LABEL_KEY) or pid,
            content_type=data.get(CONTENT_TYPE_KEY) or DEFAULT_MIME_TYPE,
            linked=False,
        )


@dataclass(frozen=True)
class ManifestItem:
    """One entry of an object manifest."""

    name: str
    is_source: bool = False

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": "Source" if self.is_source else "other"}


@dataclass
class ObjectManifest:
    """The JSON manifest listing an object's payloads.

    Serialized as ``{"items": [{"name": PID, "type": "Source"|"other"}]}``.
    PIDs ending with ``.meta`` are never listed.
    """

    items: list[ManifestItem] = field(default_factory=list)

    @property
    def names(self) -> list[str]:
        return [item.name for item in self.items]

    @classmethod
    def build(cls, pids: list[str], source_id: str | None) -> ObjectManifest:
        """Build a manifest from payload IDs in insertion order."""
        return cls(
            items=[
                ManifestItem(name=pid, is_source=pid == source_id)
                for pid in pids
                if not pid.endswith(METADATA_SUFFIX)
            ]
        )

    def to_json(self) -> str:
        return json.dumps({"items": [item.to_dict() for item in self.items]}, indent=2)

    @classmethod
    def from_json(cls, text: str | bytes, oid: str | None = None) -> ObjectManifest:
        """Parse a manifest document.

        An empty document or a missing ``items`` array yields no payloads.

        Raises:
            FormatError: If the document is not valid manifest JSON.
        """
        try:
            data: Any = json.loads(text) if text and text.strip() else {}
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FormatError(f"Malformed object manifest: {e}", oid=oid) from e

        if not isinstance(data, dict):
            raise FormatError("Object manifest is not a JSON object", oid=oid)

        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise FormatError("Object manifest 'items' is not an array", oid=oid)

        items: list[ManifestItem] = []
        for raw in raw_items:
            if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
                raise FormatError("Object manifest item has no name", oid=oid)
            items.append(
                ManifestItem(name=raw["name"], is_source=raw.get("type") == "Source")
            )
        return cls(items=items)
