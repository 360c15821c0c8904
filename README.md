# walkv

A small, durable key-value store. Every write is first appended to a
write-ahead log (WAL) and synced to disk, then stored in an in-memory table.
When the active WAL segment reaches the configured checkpoint size, the store
rolls to a new WAL segment, writes the in-memory table to a sorted segment file
with a sparse index (one entry for every second record), records the new
segment in a `CHECKPOINT` file, and removes the WAL segments the checkpoint
covers.

When the store is opened again it finds the last checkpoint (from the
`CHECKPOINT` file, or else from the checkpoint records in the WAL), loads that
segment's sparse index, replays the newer WAL segments into the in-memory
table, and cuts a torn or damaged record off the end of the last WAL segment.
If the sparse index is damaged, it is truncated to its last good entry and the
whole segment file is loaded into memory instead.

## Installation

```
pip install .
```

The package has no dependencies outside the standard library.

## Usage

```python
from walkv.config import Configuration
from walkv.store import KVStore

config = Configuration().with_base_dir("./db").with_checkpoint_size(1024)

with KVStore.open(config) as kv:
    kv.put(b"color", b"blue")
    print(kv.get(b"color"))      # b'blue'
    kv.delete(b"color")
    print(kv.get(b"color"))      # None
```

- `KVStore.open(config)` opens or creates the store in `config.base_dir`.
  Without a configuration it uses the defaults: base directory `./db` and a
  checkpoint size of 1024 bytes.
- `get(key)` returns the value as `bytes`, or `None` when the key is absent or
  deleted.
- `put(key, value)` raises `ValueError` for a `None` key or value, the
  reserved key `__CHECKPOINT__`, or the reserved value `__TOMBSTONE__`.
- `delete(key)` writes a tombstone for the key; it raises `ValueError` for the
  reserved key.
- `last_sequence_num()` returns the sequence number of the last WAL record.
- `dump()` logs the last sequence number and prints the in-memory table.
- `close()` closes the active WAL segment (leaving the `with` block does the
  same). `close_and_clean_up()` also removes the store's directory.

Reads and writes on one `KVStore` are serialised by a lock, so a store can be
shared between threads.

## Errors

All store errors derive from `walkv.errors.WalError`:

- `BadChecksumError` – a record's checksum does not match its contents.
- `CheckpointCorruptedError` – raised by `KVStore.open` when neither the sparse
  index nor the segment file of the last checkpoint can be read.
- `SparseIndexCorruptedError` – a sparse index file is damaged.

A damaged record in any WAL segment other than the last one makes
`KVStore.open` raise `WalError`.

## On-disk layout

```
<base_dir>/
  logs/          wal-000001, wal-000002, ...
  checkpoints/   CHECKPOINT, segment-000001, index-000001, ...
```

WAL records, segment records, sparse index entries and the `CHECKPOINT` file
all carry a CRC-32 checksum, so a torn or flipped write is detected when the
store is opened.

The lower-level pieces can be used on their own: `walkv.records` encodes and
decodes the record formats, `walkv.wal.WAL` is the segmented log,
`walkv.memstate.MemState` is the in-memory table with its sparse indexes, and
`walkv.recovery` holds the startup recovery steps.

## Command line

```
walkv <base-dir> <checkpoint-size>
```

This opens the store in `<base-dir>` with the given checkpoint size, prints
the in-memory table, and looks up the keys `key-0` to `key-99`, logging each
result. With fewer than two arguments, or a checkpoint size that is not an
integer, it prints a usage hint and exits.

## Limitations

- There is no compaction: old segment and sparse index files are never merged
  or removed.
- The in-memory table is not emptied after a checkpoint, so every segment holds
  all keys written up to that point, and the whole data set stays in memory.
- On reopening, only the sparse index of the newest checkpoint is loaded.
- Closing the store does not write a checkpoint; the WAL is replayed on the
  next open instead.
- It is an embedded library only: there is no server or network interface.

## Tests

```
pip install ".[test]"
pytest
```