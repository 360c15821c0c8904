"""In-memory table of the latest values and the sparse indexes of flushed segments."""

from __future__ import annotations

import bisect
import logging
import os
from typing import NamedTuple

from walkv.errors import BadChecksumError
from walkv.records import kv_record_bytes, read_kv_record, sparse_index_bytes
from walkv.wal import segment_id_from_index_path, segment_id_from_segment_path

logger = logging.getLogger(__name__)

# Every n-th record written to a segment gets an entry in its sparse index.
SPARSE_INDEX_INTERVAL = 2


class SparseIndexEntry(NamedTuple):
    """A key and the byte offset of its record in a segment file."""

    key: bytes
    offset: int


class MemState:
    """Key-value table plus per-segment sparse indexes; not thread-safe on its own."""

    def __init__(self) -> None:
        self._state: dict[bytes, bytes] = {}
        self._sparse_indexes: dict[int, list[SparseIndexEntry]] = {}

    def __len__(self) -> int:
        return len(self._state)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (bytes, bytearray)) and bytes(key) in self._state

    def add_sparse_index_entry(self, segment_id: int, key: bytes, offset: int) -> None:
        """Append an entry to the sparse index of ``segment_id``."""
        self._sparse_indexes.setdefault(segment_id, []).append(
            SparseIndexEntry(bytes(key), offset)
        )

    def sparse_index(self, segment_id: int) -> list[SparseIndexEntry]:
        """A copy of the sparse index of ``segment_id`` (empty if unknown)."""
        return list(self._sparse_indexes.get(segment_id, ()))

    def sorted_pairs(self) -> list[tuple[bytes, bytes]]:
        """All key-value pairs ordered by key."""
        return sorted(self._state.items())

    def find_key_in_sparse_index(self, segment_id: int, key: bytes) -> int | None:
        """Offset in the segment from which a scan for ``key`` should start.

        Returns None when the segment has no index entries or ``key`` sorts
        before the smallest indexed key.
        """
        entries = self._sparse_indexes.get(segment_id)
        if not entries:
            return None
        key = bytes(key)
        idx = bisect.bisect_left(entries, key, key=lambda entry: entry.key)
        if idx == len(entries):
            idx -= 1
        if key < entries[idx].key:
            if idx == 0:
                return None
            idx -= 1
        return entries[idx].offset

    def get(self, key: bytes) -> bytes:
        """Value stored for ``key``; raises KeyError if it is not in the table."""
        try:
            return self._state[bytes(key)]
        except KeyError:
            raise KeyError(bytes(key)) from None

    def put(self, key: bytes, value: bytes) -> None:
        """Store ``value`` under ``key``."""
        self._state[bytes(key)] = bytes(value)

    def dump(self) -> None:
        """Print the table contents to standard output."""
        print("========== MemState starts ==========")
        for key, value in self._state.items():
            print(
                f"{key.decode('utf-8', 'replace')}: {value.decode('utf-8', 'replace')}"
            )
        print("========== MemState ends ==========")

    def segment_ids_descending(self) -> list[int]:
        """Ids of the segments that have a sparse index, newest first."""
        return sorted(self._sparse_indexes, reverse=True)

    def flush_sparse_index(self, path: str | os.PathLike[str]) -> None:
        """Append the sparse index of the segment named by ``path`` to that file."""
        segment_id = segment_id_from_index_path(path)
        with open(path, "ab") as index_file:
            for entry in self._sparse_indexes.get(segment_id, ()):
                index_file.write(sparse_index_bytes(segment_id, entry.key, entry.offset))
            index_file.flush()
            os.fsync(index_file.fileno())
        logger.info("Flushed sparse index to file: %s", path)

    def flush(self, path: str | os.PathLike[str]) -> None:
        """Write the table to a segment file in key order and index every other record."""
        segment_id = segment_id_from_segment_path(path)
        offset = 0
        with open(path, "ab") as segment_file:
            for idx, (key, value) in enumerate(self.sorted_pairs()):
                data = kv_record_bytes(key, value)
                segment_file.write(data)
                if idx % SPARSE_INDEX_INTERVAL == 0:
                    logger.debug(
                        "Sparse index entry for segment %d at offset %d, key %r",
                        segment_id,
                        offset,
                        key,
                    )
                    self.add_sparse_index_entry(segment_id, key, offset)
                offset += len(data)
            segment_file.flush()
            os.fsync(segment_file.fileno())


def recover_from_segment(path: str | os.PathLike[str]) -> MemState:
    """Load a segment file into a new table.

    A damaged or cut-short tail is dropped and the file is truncated to the
    last good record. Raises OSError if the file cannot be opened.
    """
    state = MemState()
    good_offset = 0
    damaged = False
    with open(path, "rb") as segment_file:
        while True:
            good_offset = segment_file.tell()
            try:
                record = read_kv_record(segment_file)
            except (BadChecksumError, EOFError) as exc:
                logger.warning("Damaged record in segment %s: %s", path, exc)
                damaged = True
                break
            if record is None:
                break
            state.put(record.key, record.value)
    if damaged:
        os.truncate(path, good_offset)
    return state