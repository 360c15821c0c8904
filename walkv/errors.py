"""Exceptions raised by the key-value store."""


class WalError(Exception):
    """Base class for all store errors."""


class BadChecksumError(WalError):
    """A record's stored checksum does not match the computed one."""

    def __init__(self, message: str = "checksum mismatch") -> None:
        super().__init__(message)


class CheckpointCorruptedError(WalError):
    """The checkpoint file is corrupted (edited, truncated or bit-flipped)."""

    def __init__(self, message: str = "checkpoint corrupted") -> None:
        super().__init__(message)


class SparseIndexCorruptedError(WalError):
    """A sparse index file is corrupted (edited, truncated or bit-flipped)."""

    def __init__(self, message: str = "sparse index corrupted") -> None:
        super().__init__(message)