"""MIME type detection for payload bytes.

Detection order:
    1. Magic bytes (PDF, PNG, JPEG, GIF, gzip, ZIP with OOXML sniffing)
    2. Markup and JSON prefixes (XML, HTML, JSON)
    3. Filename extension via ``mimetypes``
    4. UTF-8 decodable text -> text/plain
    5. application/octet-stream
"""

from __future__ import annotations

import json
import mimetypes
import zipfile
from io import BytesIO

from blobstore_storage.models import DEFAULT_MIME_TYPE

PDF_MAGIC = b"%PDF-"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
JPEG_MAGIC = b"\xff\xd8\xff"
GIF_MAGICS = (b"GIF87a", b"GIF89a")
GZIP_MAGIC = b"\x1f\x8b"
ZIP_MAGIC = b"PK\x03\x04"

_OOXML_TYPES = {
    "xl/workbook.xml": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "word/document.xml": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "ppt/presentation.xml": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}

# Enough bytes to judge whether a payload is text.
_TEXT_SAMPLE = 8192


def _detect_zip(data: bytes) -> str:
    """Return the OOXML type of a ZIP payload, or application/zip."""
    try:
        with zipfile.ZipFile(BytesIO(data), "r") as zf:
            names = set(zf.namelist())
    except zipfile.BadZipFile:
        return "application/zip"

    for marker, mime_type in _OOXML_TYPES.items():
        if marker in names:
            return mime_type
    return "application/zip"


def _detect_magic(data: bytes) -> str | None:
    if data.startswith(PDF_MAGIC):
        return "application/pdf"
    if data.startswith(PNG_MAGIC):
        return "image/png"
    if data.startswith(JPEG_MAGIC):
        return "image/jpeg"
    if data.startswith(GIF_MAGICS):
        return "image/gif"
    if data.startswith(GZIP_MAGIC):
        return "application/gzip"
    if data.startswith(ZIP_MAGIC):
        return _detect_zip(data)
    return None


def _looks_like_text(sample: bytes) -> bool:
    if b"\x00" in sample:
        return False
    try:
        sample.decode("utf-8")
    except UnicodeDecodeError as e:
        # A multi-byte character cut at the sample boundary is still text.
        return e.start >= len(sample) - 3 and len(sample) == _TEXT_SAMPLE
    return True


def _detect_markup(data: bytes) -> str | None:
    head = data[:256].lstrip(b"\xef\xbb\xbf \t\r\n").lower()
    if head.startswith(b"<?xml"):
        return "application/xml"
    if head.startswith((b"<!doctype html", b"<html")):
        return "text/html"
    if head[:1] in (b"{", b"["):
        try:
            json.loads(data)
        except (ValueError, UnicodeDecodeError):
            return None
        return "application/json"
    return None


def get_mime_type(data: bytes, filename: str | None = None) -> str:
    """Determine the MIME type of payload bytes.

    Args:
        data: Payload content.
        filename: Optional name (usually the PID) for extension lookup.

    Returns:
        A MIME type string; never None.
    """
    detected = _detect_magic(data)
    if detected:
        return detected

    detected = _detect_markup(data)
    if detected:
        return detected

    if filename:
        guessed, _ = mimetypes.guess_type(filename, strict=False)
        if guessed:
            return guessed

    if data and _looks_like_text(data[:_TEXT_SAMPLE]):
        return "text/plain"

    return DEFAULT_MIME_TYPE
