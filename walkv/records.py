"""Binary record formats for WAL entries, segment entries and sparse index entries."""

from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from typing import BinaryIO

from walkv.errors import BadChecksumError

TOMBSTONE = b"__TOMBSTONE__"
CHECKPOINT = b"__CHECKPOINT__"

# checksum, sequence number, key size, value size (little-endian)
LOG_HEADER = struct.Struct("<IQII")
# checksum, key size, value size (little-endian)
KV_HEADER = struct.Struct("<III")
# checksum, segment id, key size, offset (big-endian)
SPARSE_HEADER = struct.Struct(">IQIq")

_LOG_BODY = struct.Struct("<QII")
_KV_BODY = struct.Struct("<II")
_SPARSE_BODY = struct.Struct(">QIq")


def compute_checksum(data: bytes) -> int:
    """Return the CRC-32 (IEEE) checksum of ``data``."""
    return zlib.crc32(data) & 0xFFFFFFFF


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read up to ``size`` bytes, stopping early only at end of stream."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


@dataclass
class LogRecord:
    """A WAL record: 20-byte header followed by key and value."""

    checksum: int = 0
    sequence_num: int = 0
    key: bytes = b""
    value: bytes = b""
    key_size: int | None = None
    value_size: int | None = None

    def __post_init__(self) -> None:
        self.key = bytes(self.key)
        self.value = bytes(self.value)
        if self.key_size is None:
            self.key_size = len(self.key)
        if self.value_size is None:
            self.value_size = len(self.value)

    def size(self) -> int:
        """Total encoded size of the record in bytes."""
        return LOG_HEADER.size + self.key_size + self.value_size

    def serialize(self) -> bytes:
        """Encode the record as header plus payload."""
        header = LOG_HEADER.pack(
            self.checksum, self.sequence_num, self.key_size, self.value_size
        )
        return header + self.key + self.value

    def compute_checksum_for_record(self) -> int:
        """Checksum over every field except the checksum itself."""
        body = _LOG_BODY.pack(self.sequence_num, self.key_size, self.value_size)
        return compute_checksum(body + self.key + self.value)

    @classmethod
    def deserialize(cls, data: bytes) -> LogRecord:
        """Decode a record; raises ValueError if ``data`` is too short."""
        data = bytes(data)
        if len(data) < LOG_HEADER.size:
            raise ValueError("log record is too short")
        checksum, sequence_num, key_size, value_size = LOG_HEADER.unpack_from(data)
        expected = LOG_HEADER.size + key_size + value_size
        if len(data) < expected:
            raise ValueError(
                f"log record data too short: expected {expected} bytes, got {len(data)}"
            )
        start = LOG_HEADER.size
        key = data[start : start + key_size]
        value = data[start + key_size : expected]
        return cls(checksum, sequence_num, key, value, key_size, value_size)


def create_log_record(sequence_num: int, key: bytes, value: bytes) -> LogRecord:
    """Build a log record whose checksum covers everything after the checksum field."""
    key, value = bytes(key), bytes(value)
    body = _LOG_BODY.pack(sequence_num, len(key), len(value)) + key + value
    return LogRecord(compute_checksum(body), sequence_num, key, value)


@dataclass
class KVRecord:
    """A segment record: 12-byte header followed by key and value."""

    checksum: int = 0
    key: bytes = b""
    value: bytes = b""
    key_size: int | None = None
    value_size: int | None = None

    def __post_init__(self) -> None:
        self.key = bytes(self.key)
        self.value = bytes(self.value)
        if self.key_size is None:
            self.key_size = len(self.key)
        if self.value_size is None:
            self.value_size = len(self.value)

    def size(self) -> int:
        """Total encoded size of the record in bytes."""
        return KV_HEADER.size + self.key_size + self.value_size

    def serialize(self) -> bytes:
        """Encode the record as header plus payload."""
        header = KV_HEADER.pack(self.checksum, self.key_size, self.value_size)
        return header + self.key + self.value

    def compute_checksum_for_record(self) -> int:
        """Checksum over every field except the checksum itself."""
        body = _KV_BODY.pack(self.key_size, self.value_size)
        return compute_checksum(body + self.key + self.value)

    @classmethod
    def deserialize(cls, data: bytes) -> KVRecord:
        """Decode a record; raises ValueError if ``data`` is too short."""
        data = bytes(data)
        if len(data) < KV_HEADER.size:
            raise ValueError("log record is too short")
        checksum, key_size, value_size = KV_HEADER.unpack_from(data)
        expected = KV_HEADER.size + key_size + value_size
        if len(data) < expected:
            raise ValueError(
                f"log record data too short: expected {expected} bytes, got {len(data)}"
            )
        start = KV_HEADER.size
        key = data[start : start + key_size]
        value = data[start + key_size : expected]
        return cls(checksum, key, value, key_size, value_size)


def kv_record_bytes(key: bytes, value: bytes) -> bytes:
    """Encode a segment record for ``key`` and ``value`` with a valid checksum."""
    key, value = bytes(key), bytes(value)
    body = _KV_BODY.pack(len(key), len(value)) + key + value
    return struct.pack("<I", compute_checksum(body)) + body


@dataclass
class SparseIndexRecord:
    """A sparse index entry mapping a key to its offset in a segment file."""

    checksum: int
    segment_id: int
    key_size: int
    offset: int
    key: bytes = b""

    @classmethod
    def create(cls, segment_id: int, key: bytes, offset: int) -> SparseIndexRecord:
        """Build an entry with its checksum computed."""
        key = bytes(key)
        body = _SPARSE_BODY.pack(segment_id, len(key), offset) + key
        return cls(compute_checksum(body), segment_id, len(key), offset, key)

    @classmethod
    def decode_header(cls, header_bytes: bytes) -> SparseIndexRecord:
        """Decode the 24-byte header; the key is left empty."""
        header_bytes = bytes(header_bytes)
        if len(header_bytes) < SPARSE_HEADER.size:
            raise ValueError("sparse index header: data too short")
        checksum, segment_id, key_size, offset = SPARSE_HEADER.unpack_from(header_bytes)
        return cls(checksum, segment_id, key_size, offset)


def sparse_index_bytes(segment_id: int, key: bytes, offset: int) -> bytes:
    """Encode a sparse index entry, checksum first."""
    key = bytes(key)
    body = _SPARSE_BODY.pack(segment_id, len(key), offset) + key
    return struct.pack(">I", compute_checksum(body)) + body


def read_log_record(stream: BinaryIO) -> LogRecord | None:
    """Read the next WAL record.

    Returns None at a clean end of stream, raises EOFError if the record is
    cut short and BadChecksumError if its checksum does not match.
    """
    header = _read_exact(stream, LOG_HEADER.size)
    if not header:
        return None
    if len(header) < LOG_HEADER.size:
        raise EOFError("truncated log record header")
    checksum, sequence_num, key_size, value_size = LOG_HEADER.unpack(header)
    payload = _read_exact(stream, key_size + value_size)
    if len(payload) < key_size + value_size:
        raise EOFError("truncated log record payload")
    if compute_checksum(header[4:] + payload) != checksum:
        raise BadChecksumError()
    return LogRecord(
        checksum,
        sequence_num,
        payload[:key_size],
        payload[key_size:],
        key_size,
        value_size,
    )


def read_kv_record(stream: BinaryIO) -> KVRecord | None:
    """Read the next segment record.

    Returns None at a clean end of stream, raises EOFError if the record is
    cut short and BadChecksumError if its checksum does not match.
    """
    header = _read_exact(stream, KV_HEADER.size)
    if not header:
        return None
    if len(header) < KV_HEADER.size:
        raise EOFError("truncated segment record header")
    checksum, key_size, value_size = KV_HEADER.unpack(header)
    payload = _read_exact(stream, key_size + value_size)
    if len(payload) < key_size + value_size:
        raise EOFError("truncated segment record payload")
    if compute_checksum(header[4:] + payload) != checksum:
        raise BadChecksumError()
    return KVRecord(checksum, payload[:key_size], payload[key_size:], key_size, value_size)


def read_sparse_index_record(stream: BinaryIO) -> SparseIndexRecord | None:
    """Read the next sparse index entry.

    Returns None at a clean end of stream, raises EOFError if the entry is
    cut short and BadChecksumError if its checksum does not match.
    """
    header = _read_exact(stream, SPARSE_HEADER.size)
    if not header:
        return None
    if len(header) < SPARSE_HEADER.size:
        raise EOFError("truncated sparse index header")
    record = SparseIndexRecord.decode_header(header)
    key = _read_exact(stream, record.key_size)
    if len(key) < record.key_size:
        raise EOFError("truncated sparse index key")
    if compute_checksum(header[4:] + key) != record.checksum:
        raise BadChecksumError()
    record.key = key
    return record