from __future__ import annotations

import struct
from typing import BinaryIO, Tuple

from .constants import MAX_RECORD_SIZE, RECORD_ALIGNMENT
from .errors import MalformedHeader, MalformedRecord


# Length-prefixed record:
#  - payload_len u32 (padded payload length)
#  - payload, zero padded to a 4-byte boundary
#
# The archive header is two nested records:
#  - outer record, payload = u32 length of the inner record
#  - inner record, payload = u32 header byte length || header bytes || padding
_U32 = struct.Struct("<I")


def _padding(n: int) -> int:
    return (-n) % RECORD_ALIGNMENT


def encode_record(payload: bytes) -> bytes:
    padded = payload + b"\x00" * _padding(len(payload))
    if len(padded) > 0xFFFFFFFF:
        raise ValueError("Record payload too large for u32 length")
    return _U32.pack(len(padded)) + padded


def _read_exact(f: BinaryIO, n: int) -> bytes:
    b = f.read(n)
    if len(b) != n:
        raise MalformedRecord(f"Unexpected EOF: wanted {n} bytes, got {len(b)}")
    return b


def _check_length(n: int) -> None:
    if n > MAX_RECORD_SIZE:
        raise MalformedRecord(f"Record length {n} exceeds safety bound")


def decode_record(buf: bytes) -> bytes:
    """Return the payload of the record at the start of ``buf``."""
    if len(buf) < _U32.size:
        raise MalformedRecord("Record too short for length prefix")
    (n,) = _U32.unpack_from(buf)
    _check_length(n)
    if n > len(buf) - _U32.size:
        raise MalformedRecord("Record length exceeds available bytes")
    return buf[_U32.size : _U32.size + n]


def read_record(f: BinaryIO) -> bytes:
    (n,) = _U32.unpack(_read_exact(f, _U32.size))
    _check_length(n)
    return _read_exact(f, n)


def pack_header(text: str) -> bytes:
    """Frame header text as the outer and inner records."""
    raw = text.encode("utf-8")
    inner = encode_record(_U32.pack(len(raw)) + raw)
    outer = encode_record(_U32.pack(len(inner)))
    return outer + inner


def read_header(f: BinaryIO) -> Tuple[str, int]:
    """Read the framed header from the current position of ``f``.

    Returns:
        (header_text, data_start) where ``data_start`` is the absolute
        position of the first byte after the padded inner record.
    """
    start = f.tell()
    outer = read_record(f)
    if len(outer) < _U32.size:
        raise MalformedRecord("Outer record payload too short")
    (inner_len,) = _U32.unpack_from(outer)
    _check_length(inner_len)
    inner = _read_exact(f, inner_len)
    payload = decode_record(inner)
    if len(payload) < _U32.size:
        raise MalformedRecord("Inner record payload too short")
    (text_len,) = _U32.unpack_from(payload)
    if text_len > len(payload) - _U32.size:
        raise MalformedRecord("Header string length exceeds record payload")
    try:
        text = payload[_U32.size : _U32.size + text_len].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedHeader(f"Header is not valid UTF-8: {exc}") from exc
    return text, start + _U32.size + len(outer) + inner_len
