"""Java ``.properties`` serialization for sidecar metadata blobs.

Sidecar blobs are written in the format ``java.util.Properties.store``
produces so stores shared with JVM consumers stay readable by both:

- ISO-8859-1 text, one ``key=value`` per line, ``#`` timestamp header
- backslash escapes for ``\\t \\n \\r \\f``, separators and comment chars
- ``\\uXXXX`` escapes for characters outside printable ASCII

Parsing accepts ``=``, ``:`` or whitespace separators, ``#``/``!`` comments
and backslash line continuations.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import UTC, datetime

from blobstore_storage.errors import FormatError

_ESCAPES = {"\t": "\\t", "\n": "\\n", "\r": "\\r", "\f": "\\f"}
_UNESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_SPECIALS = "=:#!"
_UNICODE_ESCAPE = re.compile(r"[0-9a-fA-F]{4}")


def _escape(text: str, *, is_key: bool) -> str:
    out: list[str] = []
    for i, ch in enumerate(text):
        if ch == "\\":
            out.append("\\\\")
        elif ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif ch in _SPECIALS:
            out.append("\\" + ch)
        elif ch == " ":
            # Keys escape every space; values only a leading one.
            out.append("\\ " if is_key or i == 0 else " ")
        elif ord(ch) < 0x20 or ord(ch) > 0x7E:
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return "".join(out)


def dumps(properties: Mapping[str, str], *, timestamp: datetime | None = None) -> str:
    """Serialize a string map to properties text."""
    when = timestamp or datetime.now(UTC)
    lines = ["#" + when.strftime("%a %b %d %H:%M:%S UTC %Y")]
    for key, value in properties.items():
        lines.append(f"{_escape(key, is_key=True)}={_escape(value, is_key=False)}")
    return "\n".join(lines) + "\n"


def dump_bytes(properties: Mapping[str, str]) -> bytes:
    return dumps(properties).encode("latin-1")


def _logical_lines(text: str) -> list[str]:
    """Join continuation lines and drop blanks and comments."""
    result: list[str] = []
    pending: str | None = None
    for raw in text.splitlines():
        line = raw.lstrip(" \t\f")
        if pending is None:
            if not line or line[0] in "#!":
                continue
        else:
            line = pending + line

        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending = line[:-1]
            continue
        pending = None
        result.append(line)

    if pending is not None:
        result.append(pending)
    return result


def _unescape(text: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        i += 1
        if i >= len(text):
            break
        nxt = text[i]
        if nxt == "u":
            code = text[i + 1 : i + 5]
            if not _UNICODE_ESCAPE.fullmatch(code):
                raise FormatError(f"Malformed \\uXXXX escape in properties: {code!r}")
            out.append(chr(int(code, 16)))
            i += 5
            continue
        out.append(_UNESCAPES.get(nxt, nxt))
        i += 1
    return "".join(out)


def _split(line: str) -> tuple[str, str]:
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == "\\":
            i += 2
            continue
        if ch in "=: \t\f":
            break
        i += 1

    key = line[:i]
    rest = line[i:].lstrip(" \t\f")
    if rest[:1] in ("=", ":") and (i >= len(line) or line[i] in " \t\f"):
        rest = rest[1:].lstrip(" \t\f")
    elif i < len(line) and line[i] in "=:":
        rest = line[i + 1 :].lstrip(" \t\f")
    return key, rest


def loads(text: str) -> dict[str, str]:
    """Parse properties text into a string map.

    Raises:
        FormatError: If an escape sequence is malformed.
    """
    result: dict[str, str] = {}
    for line in _logical_lines(text):
        key, value = _split(line)
        result[_unescape(key)] = _unescape(value)
    return result


def load_bytes(data: bytes) -> dict[str, str]:
    return loads(data.decode("latin-1"))
