"""
File Transfer Protocol

Design Decision: Metadata Framing
=================================

Options Considered:
1. Fixed binary header (name length + name + 8-byte size)
   - Compact
   - Hard to extend, awkward to debug

2. Length-prefixed JSON header, then raw bytes
   - One short header, no extra round trip
   - Human readable, trivially extensible

3. Per-chunk message framing (type + length + payload)
   - Needed for pause/resume/cancel
   - Overhead we don't need for a single file

Decision: 2-byte length prefix + JSON header + raw file content
- The receiver knows the header size up front and can bound it
- After the header the stream is the file, byte for byte, until `size`
  bytes have been written and the sender closes the connection

Wire Format:
```
+----------------+-----------------------------+------------------------+
| Length (2B BE) | Header (UTF-8 JSON)         | File content (size B)  |
+----------------+-----------------------------+------------------------+

Header JSON:
{"name": "report.pdf", "size": 12345}
```
"""

import asyncio
import json
import logging
import os
import struct
from dataclasses import dataclass
from typing import Tuple

from .errors import PeerConnectionError, ProtocolError

logger = logging.getLogger(__name__)

LENGTH_FORMAT = '>H'
LENGTH_SIZE = struct.calcsize(LENGTH_FORMAT)

# Largest header the 2-byte prefix can describe
MAX_HEADER_LENGTH = 0xFFFF

# Sizes travel as signed 64-bit values
MAX_FILE_SIZE = 2 ** 63 - 1

DEFAULT_CHUNK_SIZE = 8192

HEADER_KEYS = frozenset({'name', 'size'})


@dataclass(frozen=True)
class TransferMetadata:
    """Name and size of the file that follows the header."""
    name: str
    size: int

    def to_json(self) -> str:
        """Serialize to the JSON text carried in the header."""
        return json.dumps(
            {'name': self.name, 'size': self.size},
            ensure_ascii=False,
            separators=(',', ':'),
        )


def encode_header(metadata: TransferMetadata) -> bytes:
    """
    Frame metadata for the wire.

    Returns:
        Length prefix followed by the UTF-8 JSON text

    Raises:
        ProtocolError: if the encoded text does not fit the length prefix
    """
    body = metadata.to_json().encode('utf-8')
    if len(body) > MAX_HEADER_LENGTH:
        raise ProtocolError(
            f"Metadata header too large: {len(body)} bytes "
            f"(max {MAX_HEADER_LENGTH})"
        )
    return struct.pack(LENGTH_FORMAT, len(body)) + body


def decode_header(body: bytes) -> TransferMetadata:
    """
    Parse and validate a header body (without its length prefix).

    Raises:
        ProtocolError: if the body is not UTF-8, not a JSON object, or does
            not hold exactly a non-empty string `name` and a non-negative
            integer `size`
    """
    try:
        text = body.decode('utf-8')
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Metadata header is not valid UTF-8: {e}") from e

    try:
        data = json.loads(text)
    except ValueError as e:
        raise ProtocolError(f"Metadata header is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Metadata header must be a JSON object")

    missing = HEADER_KEYS - data.keys()
    if missing:
        raise ProtocolError(f"Metadata header missing keys: {sorted(missing)}")

    extra = data.keys() - HEADER_KEYS
    if extra:
        raise ProtocolError(f"Metadata header has unexpected keys: {sorted(extra)}")

    name = data['name']
    size = data['size']

    if not isinstance(name, str) or not name:
        raise ProtocolError("Metadata 'name' must be a non-empty string")

    # bool is an int subclass, reject it explicitly
    if not isinstance(size, int) or isinstance(size, bool):
        raise ProtocolError(f"Metadata 'size' must be an integer, got {size!r}")

    if size < 0 or size > MAX_FILE_SIZE:
        raise ProtocolError(f"Metadata 'size' out of range: {size}")

    return TransferMetadata(name=name, size=size)


async def read_header(reader: asyncio.StreamReader,
                      max_length: int = MAX_HEADER_LENGTH) -> TransferMetadata:
    """
    Read one length-prefixed metadata header from a stream.

    Args:
        reader: Stream positioned at the start of the header
        max_length: Largest header body accepted

    Raises:
        ProtocolError: on a truncated header, an oversized length prefix or
            an invalid body
    """
    try:
        prefix = await reader.readexactly(LENGTH_SIZE)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError("Connection closed before metadata header") from e

    length = struct.unpack(LENGTH_FORMAT, prefix)[0]
    if length > max_length:
        raise ProtocolError(
            f"Metadata header length {length} exceeds maximum {max_length}"
        )

    try:
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError(
            f"Metadata header truncated: got {len(e.partial)} of {length} bytes"
        ) from e

    return decode_header(body)


def validate_filename(name: str) -> str:
    """
    Make sure a name from the wire can only land inside the save directory.

    Raises:
        ProtocolError: if the name carries path components or cannot be
            encoded (JSON allows lone surrogates such as "\\ud800")
    """
    separators = {'/', '\\', os.sep}
    if os.altsep:
        separators.add(os.altsep)

    if name in ('.', '..') or '\x00' in name or any(s in name for s in separators):
        raise ProtocolError(f"Refusing unsafe file name from peer: {name!r}")

    try:
        name.encode('utf-8')
    except UnicodeEncodeError as e:
        raise ProtocolError(f"Refusing unencodable file name from peer: {name!r}") from e
    return name


async def connect_to_peer(host: str, port: int,
                          timeout: float = 10.0
                          ) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """
    Open a stream connection to a receiver.

    Raises:
        PeerConnectionError: on refusal, timeout or name resolution failure
    """
    try:
        return await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout
        )
    except asyncio.TimeoutError as e:
        raise PeerConnectionError(
            f"Timed out connecting to {host}:{port} after {timeout}s"
        ) from e
    except OSError as e:
        raise PeerConnectionError(f"Failed to connect to {host}:{port}: {e}") from e


async def close_writer(writer: asyncio.StreamWriter):
    """Close a stream, ignoring errors from an already broken connection."""
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
