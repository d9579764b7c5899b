"""AWS event-stream binary framing (application/vnd.amazon.eventstream).

Message layout::

    [total length:4][headers length:4][prelude crc:4][headers][payload][message crc:4]

All integers are big-endian. Only string headers (type 7) are used by
Transcribe streaming.
"""

import json
import struct
import zlib
from typing import Any, Dict, Optional, Tuple

PRELUDE_LENGTH = 12
CRC_LENGTH = 4
HEADER_TYPE_STRING = 7

AUDIO_EVENT_HEADERS = {
    ":content-type": "application/octet-stream",
    ":event-type": "AudioEvent",
    ":message-type": "event",
}


class EventStreamError(Exception):
    """Malformed frame."""


class EventStreamException(Exception):
    """Server-side exception frame (``:message-type`` = ``exception``)."""

    def __init__(self, message: str, exception_type: str = ""):
        super().__init__(message)
        self.exception_type = exception_type


def _crc32(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


def encode_headers(headers: Dict[str, str]) -> bytes:
    out = bytearray()
    for name, value in headers.items():
        name_bytes = name.encode("utf-8")
        value_bytes = value.encode("utf-8")
        out += struct.pack(">B", len(name_bytes)) + name_bytes
        out += struct.pack(">BH", HEADER_TYPE_STRING, len(value_bytes)) + value_bytes
    return bytes(out)


def encode_message(headers: Dict[str, str], payload: bytes) -> bytes:
    header_bytes = encode_headers(headers)
    total_length = PRELUDE_LENGTH + len(header_bytes) + len(payload) + CRC_LENGTH
    prelude = struct.pack(">II", total_length, len(header_bytes))
    prelude += struct.pack(">I", _crc32(prelude))
    body = prelude + header_bytes + payload
    return body + struct.pack(">I", _crc32(body))


def encode_audio_event(pcm: bytes) -> bytes:
    """Wrap a PCM chunk as an AudioEvent. An empty chunk signals end of stream."""
    return encode_message(AUDIO_EVENT_HEADERS, pcm)


def decode_headers(data: bytes) -> Dict[str, str]:
    headers = {}
    pos = 0
    while pos < len(data):
        name_length = data[pos]
        pos += 1
        name = data[pos:pos + name_length].decode("utf-8")
        pos += name_length
        header_type = data[pos]
        pos += 1
        if header_type != HEADER_TYPE_STRING:
            # Other header types are not sent by Transcribe
            break
        (value_length,) = struct.unpack(">H", data[pos:pos + 2])
        pos += 2
        headers[name] = data[pos:pos + value_length].decode("utf-8")
        pos += value_length
    return headers


def decode_message(data: bytes) -> Tuple[Dict[str, str], bytes]:
    """Split a frame into headers and payload, verifying both checksums."""
    if len(data) < PRELUDE_LENGTH + CRC_LENGTH:
        raise EventStreamError(f"Frame too short ({len(data)} bytes)")

    total_length, headers_length, prelude_crc = struct.unpack(">III", data[:PRELUDE_LENGTH])
    if total_length != len(data):
        raise EventStreamError(f"Frame length mismatch: header says {total_length}, got {len(data)}")
    if _crc32(data[:8]) != prelude_crc:
        raise EventStreamError("Prelude checksum mismatch")
    (message_crc,) = struct.unpack(">I", data[-CRC_LENGTH:])
    if _crc32(data[:-CRC_LENGTH]) != message_crc:
        raise EventStreamError("Message checksum mismatch")

    headers_end = PRELUDE_LENGTH + headers_length
    headers = decode_headers(data[PRELUDE_LENGTH:headers_end])
    return headers, data[headers_end:-CRC_LENGTH]


def decode_transcript_event(data: bytes) -> Optional[Dict[str, Any]]:
    """Decode a Transcribe frame to its JSON payload.

    Raises EventStreamException for exception frames; returns None when the
    payload is not JSON.
    """
    headers, payload = decode_message(data)
    text = payload.decode("utf-8", errors="replace")

    if headers.get(":message-type") == "exception":
        detail = text
        try:
            detail = json.loads(text).get("Message", text)
        except (json.JSONDecodeError, AttributeError):
            pass
        raise EventStreamException(detail, headers.get(":exception-type", ""))

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None
