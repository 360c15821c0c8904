"""Command that opens a store, prints its table and looks up a range of keys."""

from __future__ import annotations

import logging
import re
import sys

from walkv.config import Configuration
from walkv.errors import WalError
from walkv.store import KVStore

logger = logging.getLogger(__name__)

_INT = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _parse_int64(text: str) -> int:
    if not _INT.fullmatch(text):
        raise ValueError(f"not an integer: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"integer out of range: {text!r}")
    return value


def main(argv: list[str] | None = None) -> int:
    """Run the command with ``argv`` (the arguments after the program name)."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        print("Please specify the root directory for WAL and checkpoints.")
        return 0
    db_dir = args[0]
    try:
        checkpoint_size = _parse_int64(args[1])
    except ValueError:
        print("Please specify the checkpoint size as an integer.")
        return 0

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    config = Configuration().with_base_dir(db_dir).with_checkpoint_size(checkpoint_size)
    try:
        store = KVStore.open(config)
    except (WalError, OSError) as exc:
        logger.error("Error creating KVStore: %s", exc)
        return 1

    with store:
        store.dump()
        for i in range(100):
            try:
                value = store.get(f"key-{i}".encode())
            except (WalError, OSError, EOFError) as exc:
                logger.error("Error getting key-%d: %s", i, exc)
                value = None
            text = value.decode("utf-8", "replace") if value is not None else ""
            logger.info('kv.Get("key-%d"): %s', i, text)
    return 0


if __name__ == "__main__":
    sys.exit(main())