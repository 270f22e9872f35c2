"""`Content-Length` framing for JSON-RPC messages exchanged over stdio.

A frame on the wire looks like::

    Content-Length: 52\r\n
    Content-Type: application/vscode-jsonrpc; charset=utf-8\r\n
    \r\n
    {"jsonrpc":"2.0","id":1,"result":null}

Decoding is tolerant: stray lines between frames (server trace output) are
skipped, and bodies that do not parse as JSON are dropped without ending the
stream.
"""

from __future__ import annotations

import json
from typing import Any, BinaryIO, Dict, Iterator, Optional

from lsp_bench.errors import TruncatedFrameError


JsonObj = Dict[str, Any]

_CONTENT_LENGTH = "content-length"
_KNOWN_HEADERS = {_CONTENT_LENGTH, "content-type"}


def encode_message(msg: JsonObj) -> bytes:
    """Serialize one message into a complete frame (header + UTF-8 body)."""
    body = json.dumps(msg, separators=(",", ":")).encode("utf-8")
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


def _parse_header(line: bytes) -> Optional[tuple[str, str]]:
    try:
        k, v = line.decode("ascii", errors="replace").split(":", 1)
    except ValueError:
        return None
    key = k.strip().lower()
    if key not in _KNOWN_HEADERS:
        return None
    return key, v.strip()


def _read_exact(stream: BinaryIO, length: int) -> bytes:
    # Pipes may hand back fewer bytes than asked for.
    chunks: list[bytes] = []
    remaining = length
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _read_headers(stream: BinaryIO) -> Optional[Dict[str, str]]:
    """Read one header block. Returns None on end of stream."""
    headers: Dict[str, str] = {}
    while True:
        line = stream.readline()
        if not line:
            return None
        if not line.strip():
            if headers:
                return headers
            # Blank line before any header: leftover from garbage output.
            continue
        parsed = _parse_header(line)
        if parsed is not None:
            headers[parsed[0]] = parsed[1]


def read_message(stream: BinaryIO) -> Optional[JsonObj]:
    """Read the next well-formed message from ``stream``.

    Returns None once the stream is exhausted. Header blocks without a usable
    ``Content-Length`` and bodies that are not valid JSON are skipped.

    Raises:
        TruncatedFrameError: the stream ended in the middle of a body.
    """
    while True:
        headers = _read_headers(stream)
        if headers is None:
            return None

        try:
            length = int(headers.get(_CONTENT_LENGTH, ""))
        except ValueError:
            continue
        if length <= 0:
            continue

        body = _read_exact(stream, length)
        if len(body) < length:
            raise TruncatedFrameError(
                f"expected {length} body bytes, got {len(body)} before EOF"
            )

        try:
            msg = json.loads(body.decode("utf-8", errors="replace"))
        except ValueError:
            continue
        return msg


def iter_messages(stream: BinaryIO) -> Iterator[JsonObj]:
    """Yield decoded messages until the stream ends.

    A truncated trailing frame ends the sequence quietly; nothing is yielded
    for it.
    """
    while True:
        try:
            msg = read_message(stream)
        except TruncatedFrameError:
            return
        if msg is None:
            return
        yield msg
