"""Write-ahead log segments and the file naming scheme shared by the store."""

from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path
from typing import BinaryIO

from walkv.records import create_log_record

logger = logging.getLogger(__name__)

WAL_FILE_PREFIX = "wal-"
SEGMENT_FILE_PREFIX = "segment-"
SPARSE_INDEX_FILE_PREFIX = "index-"

DEFAULT_CHECKPOINT_SIZE = 1024

_DIGITS = re.compile(r"[0-9]+")
_MAX_SEGMENT_ID = 2**64 - 1


def _parse_segment_id(text: str) -> int:
    """Parse an unsigned 64-bit decimal segment id, rejecting signs and spaces."""
    if not _DIGITS.fullmatch(text):
        raise ValueError(f"invalid segment id: {text!r}")
    value = int(text)
    if value > _MAX_SEGMENT_ID:
        raise ValueError(f"segment id out of range: {text!r}")
    return value


def _strip_prefix(name: str, prefix: str) -> str:
    return name[len(prefix):] if name.startswith(prefix) else name


def wal_file_name(segment_id: int) -> str:
    """File name of the WAL file for ``segment_id``."""
    return f"{WAL_FILE_PREFIX}{segment_id:06d}"


def segment_file_name(segment_id: int) -> str:
    """File name of the segment file for ``segment_id``."""
    return f"{SEGMENT_FILE_PREFIX}{segment_id:06d}"


def sparse_index_file_name(segment_id: int) -> str:
    """File name of the sparse index file for ``segment_id``."""
    return f"{SPARSE_INDEX_FILE_PREFIX}{segment_id:06d}"


def segment_id_from_wal_file_name(name: str) -> int:
    """Segment id encoded in a WAL file name; raises ValueError if malformed."""
    return _parse_segment_id(_strip_prefix(name, WAL_FILE_PREFIX))


def segment_id_from_segment_path(path: str | os.PathLike[str]) -> int:
    """Segment id encoded in a segment file path; raises ValueError if malformed."""
    return _parse_segment_id(_strip_prefix(Path(path).name, SEGMENT_FILE_PREFIX))


def segment_id_from_index_path(path: str | os.PathLike[str]) -> int:
    """Segment id encoded in a sparse index file path; raises ValueError if malformed."""
    return _parse_segment_id(_strip_prefix(Path(path).name, SPARSE_INDEX_FILE_PREFIX))


def _list_with_prefix(directory: str | os.PathLike[str], prefix: str) -> list[str]:
    return [entry.name for entry in os.scandir(directory) if entry.name.startswith(prefix)]


def list_wal_files(directory: str | os.PathLike[str]) -> list[str]:
    """Names of the WAL files in ``directory``."""
    return _list_with_prefix(directory, WAL_FILE_PREFIX)


def list_segment_files(directory: str | os.PathLike[str]) -> list[str]:
    """Names of the segment files in ``directory``."""
    return _list_with_prefix(directory, SEGMENT_FILE_PREFIX)


def highest_segment_id(files: list[str]) -> int:
    """Highest segment id among WAL file names; malformed names are skipped, 0 if none."""
    highest = 0
    for name in files:
        try:
            highest = max(highest, _parse_segment_id(_strip_prefix(name, WAL_FILE_PREFIX)))
        except ValueError as exc:
            logger.warning("Error parsing segment ID: %s", exc)
    return highest


class WAL:
    """An append-only log split into numbered segment files."""

    def __init__(
        self,
        directory: str | os.PathLike[str],
        active_file: BinaryIO,
        active_segment_id: int,
        segment_size: int = DEFAULT_CHECKPOINT_SIZE,
        last_sequence_num: int = 0,
    ) -> None:
        self.directory = str(directory)
        self.active_file = active_file
        self.active_segment_id = active_segment_id
        self.segment_size = segment_size
        self.last_sequence_num = last_sequence_num
        self._lock = threading.Lock()

    def append(self, key: bytes, value: bytes) -> bool:
        """Append a durable record.

        Returns True when the active segment has reached its size threshold
        and a checkpoint should be run.
        """
        with self._lock:
            self.last_sequence_num += 1
            record = create_log_record(self.last_sequence_num, key, value)
            self.active_file.write(record.serialize())
            self.active_file.flush()
            os.fsync(self.active_file.fileno())
            size = os.fstat(self.active_file.fileno()).st_size
            if size >= self.segment_size:
                logger.info(
                    "WAL is ready to be checkpointed; segment ID: %d",
                    self.active_segment_id,
                )
                return True
            return False

    def current_segment_id(self) -> int:
        """Id of the segment currently written to."""
        return self.active_segment_id

    def last_segment_id(self) -> int:
        """Id of the segment before the active one."""
        if self.active_segment_id <= 1:
            raise RuntimeError("no segments have been written yet")
        return self.active_segment_id - 1

    def last_segment_file(self) -> BinaryIO:
        """Open the previous segment's WAL file for reading."""
        path = Path(self.directory) / wal_file_name(self.last_segment_id())
        return open(path, "rb")

    def roll_to_new_segment(self) -> None:
        """Close the active segment and start writing to the next one."""
        with self._lock:
            self.active_file.close()
            new_id = self.active_segment_id + 1
            path = Path(self.directory) / wal_file_name(new_id)
            self.active_file = open(path, "a+b")
            self.active_segment_id = new_id
            logger.info("Rolled to new segment: %d", new_id)

    def close(self) -> None:
        """Close the active segment file."""
        with self._lock:
            self.active_file.close()

    def __enter__(self) -> WAL:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()