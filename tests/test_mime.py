"""Tests for payload MIME type detection."""

from __future__ import annotations

import io
import zipfile

import pytest

from blobstore_storage.mime import get_mime_type


def _zip_with(name: str) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr(name, "<xml/>")
    return buffer.getvalue()


class TestMagicBytes:
    """Tests for signature-based detection."""

    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            (b"%PDF-1.7\n...", "application/pdf"),
            (b"\x89PNG\r\n\x1a\n\x00\x00", "image/png"),
            (b"\xff\xd8\xff\xe0\x00\x10JFIF", "image/jpeg"),
            (b"GIF89a\x01\x00", "image/gif"),
            (b"\x1f\x8b\x08\x00", "application/gzip"),
        ],
    )
    def test_detects_signature(self, data: bytes, expected: str) -> None:
        assert get_mime_type(data, "blob") == expected

    def test_signature_wins_over_extension(self) -> None:
        assert get_mime_type(b"%PDF-1.4", "notes.txt") == "application/pdf"

    def test_docx_detected_from_zip_contents(self) -> None:
        data = _zip_with("word/document.xml")
        assert get_mime_type(data) == (
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
        )

    def test_xlsx_detected_from_zip_contents(self) -> None:
        data = _zip_with("xl/workbook.xml")
        assert get_mime_type(data) == (
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )

    def test_plain_zip(self) -> None:
        assert get_mime_type(_zip_with("readme.txt")) == "application/zip"


class TestMarkup:
    """Tests for markup and JSON detection."""

    def test_xml(self) -> None:
        assert get_mime_type(b'<?xml version="1.0"?><a/>') == "application/xml"

    def test_html(self) -> None:
        assert get_mime_type(b"<!DOCTYPE html><html></html>") == "text/html"

    def test_json_object(self) -> None:
        assert get_mime_type(b"{}", "TF-OBJ-META") == "application/json"

    def test_invalid_json_falls_through_to_text(self) -> None:
        assert get_mime_type(b"{ not json", "notes") == "text/plain"


class TestFallbacks:
    """Tests for extension, text and default detection."""

    def test_extension_lookup(self) -> None:
        assert get_mime_type(b"hello", "data.txt") == "text/plain"
        assert get_mime_type(b"a,b\n1,2\n", "table.csv") == "text/csv"

    def test_utf8_text_without_extension(self) -> None:
        assert get_mime_type("héllo".encode(), "notes") == "text/plain"

    def test_binary_without_extension(self) -> None:
        assert get_mime_type(b"\x00\x01\x02\xfe", "blob") == "application/octet-stream"

    def test_empty_payload(self) -> None:
        assert get_mime_type(b"", "blob") == "application/octet-stream"
