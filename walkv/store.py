"""The key-value store: WAL-backed writes, checkpoints to sorted segment files, and reads."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import struct
import threading
import time
from pathlib import Path

from walkv.config import Configuration
from walkv.errors import CheckpointCorruptedError, WalError
from walkv.memstate import MemState, recover_from_segment
from walkv.records import CHECKPOINT, TOMBSTONE, compute_checksum, read_kv_record
from walkv.recovery import (
    CHECKPOINT_DIR,
    CHECKPOINT_FILE,
    LOGS_DIR,
    recover_from_wals,
    recover_sparse_index,
)
from walkv.wal import (
    WAL,
    list_wal_files,
    segment_file_name,
    segment_id_from_wal_file_name,
    sparse_index_file_name,
)

logger = logging.getLogger(__name__)

_CHECKSUM = struct.Struct("<I")


class KVStore:
    """A durable key-value store.

    Writes go to the WAL and then the in-memory table; when a WAL segment
    fills up, the table is flushed to a sorted segment file with a sparse
    index and older WAL files are removed.
    """

    def __init__(self, wal: WAL, mem_state: MemState, directory: str | os.PathLike[str]) -> None:
        self.wal = wal
        self.mem_state = mem_state
        self.directory = Path(directory)
        self._lock = threading.Lock()

    @classmethod
    def open(cls, config: Configuration | None = None) -> KVStore:
        """Open or create a store in ``config.base_dir`` and recover its state.

        Raises CheckpointCorruptedError if neither the sparse index nor the
        segment file of the last checkpoint can be read.
        """
        config = config if config is not None else Configuration()
        base = Path(config.base_dir)
        base.mkdir(parents=True, exist_ok=True)

        mem_state = MemState()
        try:
            last_segment_id = recover_sparse_index(base, mem_state)
        except WalError as exc:
            last_segment_id = getattr(exc, "segment_id", 0)
            logger.warning("Sparse index recovery failed (%s), loading segment %d", exc, last_segment_id)
            segment_path = base / CHECKPOINT_DIR / segment_file_name(last_segment_id)
            try:
                mem_state = recover_from_segment(segment_path)
            except OSError as err:
                logger.error("Error recovering from checkpoint: %s", err)
                raise CheckpointCorruptedError() from err
            logger.info("Recovered from segment: %d", last_segment_id)

        wal = recover_from_wals(last_segment_id, base / LOGS_DIR, mem_state, config.checkpoint_size)
        return cls(wal, mem_state, base)

    @property
    def _checkpoint_dir(self) -> Path:
        return self.directory / CHECKPOINT_DIR

    @property
    def _wal_dir(self) -> Path:
        return self.directory / LOGS_DIR

    def get(self, key: bytes) -> bytes | None:
        """Value stored for ``key``, or None if it is missing or deleted."""
        key = bytes(key)
        with self._lock:
            try:
                value: bytes | None = self.mem_state.get(key)
                logger.debug("Found key %r in memtable", key)
            except KeyError:
                value = self._search_segments(key)
        if value is None:
            logger.debug("Key not found: %r", key)
            return None
        if value == TOMBSTONE:
            logger.debug("Key is a tombstone: %r", key)
            return None
        return value

    def _search_segments(self, key: bytes) -> bytes | None:
        segment_ids = self.mem_state.segment_ids_descending()
        logger.debug("Searching in segments: %s", segment_ids)
        for segment_id in segment_ids:
            offset = self.mem_state.find_key_in_sparse_index(segment_id, key)
            if offset is None:
                continue
            path = self._checkpoint_dir / segment_file_name(segment_id)
            value = self._search_in_segment_file(path, offset, key)
            if value is not None:
                logger.debug("Found key %r in segment %d", key, segment_id)
                return value
        return None

    @staticmethod
    def _search_in_segment_file(path: Path, offset: int, key: bytes) -> bytes | None:
        value = None
        with open(path, "rb") as segment_file:
            segment_file.seek(offset)
            while (record := read_kv_record(segment_file)) is not None:
                if record.key == key:
                    value = record.value
                elif record.key > key:
                    break
        return value

    def put(self, key: bytes, value: bytes) -> None:
        """Store ``value`` under ``key``.

        Raises ValueError for a missing key or value, the reserved checkpoint
        key, or the reserved tombstone value.
        """
        if key is None or value is None or bytes(key) == CHECKPOINT or bytes(value) == TOMBSTONE:
            raise ValueError("invalid key or value")
        self._put_internal(bytes(key), bytes(value))

    def delete(self, key: bytes) -> None:
        """Delete ``key`` by writing a tombstone; raises ValueError for the reserved key."""
        if key is None or bytes(key) == CHECKPOINT:
            raise ValueError("invalid key")
        self._put_internal(bytes(key), TOMBSTONE)

    def _put_internal(self, key: bytes, value: bytes) -> None:
        with self._lock:
            checkpoint_needed = self.wal.append(key, value)
            self.mem_state.put(key, value)
            if checkpoint_needed:
                self._do_checkpoint()

    def _do_checkpoint(self) -> None:
        self._checkpoint_dir.mkdir(parents=True, exist_ok=True)
        segment_id = self.wal.current_segment_id()
        self.wal.roll_to_new_segment()

        segment_path = str(self._checkpoint_dir / segment_file_name(segment_id))
        self.wal.append(CHECKPOINT, os.fsencode(segment_path))

        self.mem_state.flush(segment_path)
        self.mem_state.flush_sparse_index(self._checkpoint_dir / sparse_index_file_name(segment_id))
        self._update_checkpoint_file(segment_path)
        self._clean_up_wal_files(segment_id)

    def _update_checkpoint_file(self, segment_path: str) -> None:
        encoded = os.fsencode(segment_path)
        temp_path = self._checkpoint_dir / f"{CHECKPOINT_FILE}.{int(time.time())}"
        with open(temp_path, "wb") as temp_file:
            temp_file.write(_CHECKSUM.pack(compute_checksum(encoded)) + encoded)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        os.replace(temp_path, self._checkpoint_dir / CHECKPOINT_FILE)

    def _clean_up_wal_files(self, last_segment_id: int) -> None:
        for name in list_wal_files(self._wal_dir):
            try:
                segment_id = segment_id_from_wal_file_name(name)
            except ValueError as exc:
                logger.warning("Skipping WAL file %s: %s", name, exc)
                continue
            if segment_id > last_segment_id:
                continue
            try:
                os.remove(self._wal_dir / name)
            except OSError as exc:
                logger.warning("Error removing WAL file %s: %s", name, exc)
            else:
                logger.info("Removed WAL file %s", name)

    def close(self) -> None:
        """Close the active WAL file."""
        self.wal.close()

    def close_and_clean_up(self) -> None:
        """Close the store and delete all of its files."""
        self.close()
        self.clean_up_directories()

    def clean_up_directories(self) -> None:
        """Remove the checkpoint and WAL directories and the base directory."""
        for path in (self._checkpoint_dir, self._wal_dir, self.directory):
            with contextlib.suppress(FileNotFoundError):
                shutil.rmtree(path)

    def last_sequence_num(self) -> int:
        """Sequence number of the last record written to the WAL."""
        return self.wal.last_sequence_num

    def dump(self) -> None:
        """Log the last sequence number and print the in-memory table."""
        logger.info("Last sequence number: %d", self.last_sequence_num())
        self.mem_state.dump()

    def __enter__(self) -> KVStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()