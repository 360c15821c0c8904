"""Startup recovery: locating the last checkpoint and replaying WAL and sparse index files."""

from __future__ import annotations

import logging
import os
import struct
from pathlib import Path
from typing import BinaryIO

from walkv.errors import (
    BadChecksumError,
    CheckpointCorruptedError,
    SparseIndexCorruptedError,
    WalError,
)
from walkv.memstate import MemState
from walkv.records import (
    CHECKPOINT,
    compute_checksum,
    read_log_record,
    read_sparse_index_record,
)
from walkv.wal import (
    WAL,
    list_wal_files,
    segment_id_from_index_path,
    segment_id_from_segment_path,
    segment_id_from_wal_file_name,
    sparse_index_file_name,
    wal_file_name,
)

logger = logging.getLogger(__name__)

CHECKPOINT_DIR = "checkpoints"
LOGS_DIR = "logs"
CHECKPOINT_FILE = "CHECKPOINT"

_CHECKSUM = struct.Struct("<I")


def _wal_sort_key(name: str) -> tuple[int, int]:
    """Order WAL names by segment id; malformed names sort after all others."""
    try:
        return (0, segment_id_from_wal_file_name(name))
    except ValueError:
        return (1, 0)


def last_checkpoint_from_file(checkpoint_dir: str | os.PathLike[str]) -> str | None:
    """Segment path recorded in the CHECKPOINT file, or None if there is no such file.

    Raises CheckpointCorruptedError if the file is too short and
    BadChecksumError if its checksum does not match.
    """
    path = Path(checkpoint_dir) / CHECKPOINT_FILE
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        logger.info("No checkpoint file at %s", path)
        return None
    if len(data) < _CHECKSUM.size:
        logger.warning("Checkpoint file is too short")
        raise CheckpointCorruptedError()
    (checksum,) = _CHECKSUM.unpack_from(data)
    if checksum != compute_checksum(data[_CHECKSUM.size:]):
        logger.warning("Checksum mismatch in checkpoint file")
        raise BadChecksumError()
    return os.fsdecode(data[_CHECKSUM.size:])


def last_checkpoint_from_wal_file(path: str | os.PathLike[str]) -> str | None:
    """Value of the last CHECKPOINT record in a WAL file, or None if it has none.

    Reading stops quietly at a damaged or cut-short record.
    """
    found: str | None = None
    with open(path, "rb") as wal_file:
        while True:
            try:
                record = read_log_record(wal_file)
            except (BadChecksumError, EOFError) as exc:
                logger.warning("Error reading WAL file %s: %s", path, exc)
                break
            if record is None:
                break
            if record.key == CHECKPOINT:
                logger.info("Found CHECKPOINT record in WAL file: %s", path)
                found = os.fsdecode(record.value)
    return found


def last_checkpoint_from_wal_files(wal_dir: str | os.PathLike[str]) -> str | None:
    """Last checkpoint recorded in the WAL files, searching the newest file first."""
    names = sorted(list_wal_files(wal_dir), key=_wal_sort_key, reverse=True)
    for name in names:
        try:
            found = last_checkpoint_from_wal_file(Path(wal_dir) / name)
        except OSError as exc:
            logger.warning("Skipping WAL file %s: %s", name, exc)
            continue
        if found:
            return found
    return None


def last_checkpoint(
    checkpoint_dir: str | os.PathLike[str], wal_dir: str | os.PathLike[str]
) -> str | None:
    """Path of the last checkpointed segment, from the CHECKPOINT file or else the WAL.

    Both directories are created if missing. Returns None when no checkpoint
    can be found.
    """
    try:
        Path(checkpoint_dir).mkdir(parents=True, exist_ok=True)
        Path(wal_dir).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Error creating directories: %s", exc)
        return None

    try:
        found = last_checkpoint_from_file(checkpoint_dir)
    except (WalError, OSError) as exc:
        logger.warning("Cannot use checkpoint file: %s", exc)
        found = None
    if found:
        return found

    try:
        found = last_checkpoint_from_wal_files(wal_dir)
    except OSError as exc:
        logger.warning("Cannot scan WAL files: %s", exc)
        found = None
    return found or None


def recover_from_wal_file(file: BinaryIO, mem_state: MemState, is_last_wal: bool) -> int:
    """Replay a WAL file into ``mem_state`` and return its last sequence number.

    A damaged or cut-short tail is tolerated only in the last WAL file, which
    is then truncated to the last good record and positioned there for
    further appends; in any other file it raises WalError.
    """
    file.seek(0)
    last_sequence_num = 0
    while True:
        good_offset = file.tell()
        try:
            record = read_log_record(file)
        except (BadChecksumError, EOFError) as exc:
            if not is_last_wal:
                raise WalError(
                    f"corrupted intermediate WAL file {getattr(file, 'name', '?')}: {exc}"
                ) from exc
            logger.warning("Bad checksum or unexpected end of file: %s", exc)
            break
        if record is None:
            logger.info("Completed recovery of WAL file: %s", getattr(file, "name", "?"))
            break
        last_sequence_num = record.sequence_num
        mem_state.put(record.key, record.value)

    if is_last_wal:
        logger.info("Truncating WAL file to %d bytes", good_offset)
        file.truncate(good_offset)
        file.seek(good_offset)
    return last_sequence_num


def recover_from_wals(
    last_segment_id: int,
    wal_dir: str | os.PathLike[str],
    mem_state: MemState,
    checkpoint_size: int,
) -> WAL:
    """Replay every WAL file newer than ``last_segment_id`` and return the open WAL.

    The newest WAL file stays open for appends. If there is nothing to
    replay, a new WAL file is started for the segment after ``last_segment_id``.
    """
    directory = Path(wal_dir)
    directory.mkdir(parents=True, exist_ok=True)
    names = sorted(list_wal_files(directory), key=_wal_sort_key)

    wal: WAL | None = None
    for idx, name in enumerate(names):
        try:
            segment_id = segment_id_from_wal_file_name(name)
        except ValueError as exc:
            logger.warning("Skipping WAL file %s: %s", name, exc)
            continue
        if segment_id <= last_segment_id:
            continue
        logger.info("Recovering from WAL file: %s", name)
        is_last = idx == len(names) - 1
        handle = open(directory / name, "a+b")
        try:
            last_sequence_num = recover_from_wal_file(handle, mem_state, is_last)
        except BaseException:
            handle.close()
            raise
        if is_last:
            wal = WAL(directory, handle, segment_id, checkpoint_size, last_sequence_num)
        else:
            handle.close()

    if wal is None:
        new_id = last_segment_id + 1
        logger.info("No WAL files to replay, starting segment %d", new_id)
        handle = open(directory / wal_file_name(new_id), "a+b")
        wal = WAL(directory, handle, new_id, checkpoint_size, 0)
    return wal


def recover_from_sparse_index_file(path: str | os.PathLike[str], mem_state: MemState) -> int:
    """Load a sparse index file into ``mem_state`` and return the end offset.

    Raises SparseIndexCorruptedError, whose ``offset`` attribute holds the
    offset of the last good entry, if an entry is damaged or cut short.
    """
    segment_id = segment_id_from_index_path(path)
    with open(path, "rb") as index_file:
        while True:
            offset = index_file.tell()
            try:
                record = read_sparse_index_record(index_file)
            except (BadChecksumError, EOFError) as exc:
                logger.warning("Damaged sparse index entry in %s: %s", path, exc)
                error = SparseIndexCorruptedError()
                error.offset = offset
                raise error from exc
            if record is None:
                return offset
            mem_state.add_sparse_index_entry(segment_id, record.key, record.offset)


def recover_sparse_index(directory: str | os.PathLike[str], mem_state: MemState) -> int:
    """Load the sparse index of the last checkpoint and return its segment id (0 if none).

    On failure raises a WalError whose ``segment_id`` attribute holds the
    segment id of the last checkpoint as far as it is known. A damaged
    sparse index file is truncated to its last good entry first.
    """
    base = Path(directory)
    checkpoint_path = last_checkpoint(base / CHECKPOINT_DIR, base / LOGS_DIR)
    if not checkpoint_path:
        return 0
    logger.info("Last checkpoint found: %s", checkpoint_path)

    try:
        segment_id = segment_id_from_segment_path(checkpoint_path)
    except ValueError as exc:
        error = CheckpointCorruptedError()
        error.segment_id = 0
        raise error from exc

    index_path = base / CHECKPOINT_DIR / sparse_index_file_name(segment_id)
    try:
        recover_from_sparse_index_file(index_path, mem_state)
    except SparseIndexCorruptedError as exc:
        os.truncate(index_path, exc.offset)
        exc.segment_id = segment_id
        raise
    except (OSError, ValueError) as exc:
        error = WalError(f"cannot recover sparse index {index_path}: {exc}")
        error.segment_id = segment_id
        raise error from exc
    return segment_id