import pytest

from walkv.records import CHECKPOINT, read_log_record
from walkv.wal import (
    WAL,
    highest_segment_id,
    list_segment_files,
    list_wal_files,
    segment_file_name,
    segment_id_from_index_path,
    segment_id_from_segment_path,
    segment_id_from_wal_file_name,
    sparse_index_file_name,
    wal_file_name,
)


def _open_wal(directory, segment_id=1, segment_size=1024):
    handle = open(directory / wal_file_name(segment_id), "a+b")
    return WAL(directory, handle, segment_id, segment_size, 0)


def test_file_name_formats():
    assert wal_file_name(1) == "wal-000001"
    assert segment_file_name(42) == "segment-000042"
    assert sparse_index_file_name(7) == "index-000007"


@pytest.mark.parametrize("segment_id", [0, 1, 99, 123456, 9999999])
def test_segment_id_round_trips(tmp_path, segment_id):
    assert segment_id_from_wal_file_name(wal_file_name(segment_id)) == segment_id
    seg_path = tmp_path / segment_file_name(segment_id)
    assert segment_id_from_segment_path(seg_path) == segment_id
    idx_path = str(tmp_path / sparse_index_file_name(segment_id))
    assert segment_id_from_index_path(idx_path) == segment_id


@pytest.mark.parametrize("name", ["wal-abc", "wal--1", "wal-+5", "wal- 3", "wal-", "wal-99999999999999999999"])
def test_malformed_wal_names_raise(name):
    with pytest.raises(ValueError):
        segment_id_from_wal_file_name(name)


def test_malformed_segment_path_raises(tmp_path):
    with pytest.raises(ValueError):
        segment_id_from_segment_path(tmp_path / "segment-xyz")


def test_list_files_filters_by_prefix(tmp_path):
    for name in ["wal-000001", "wal-000002", "segment-000001", "index-000001", "CHECKPOINT"]:
        (tmp_path / name).write_bytes(b"")
    assert sorted(list_wal_files(tmp_path)) == ["wal-000001", "wal-000002"]
    assert list_segment_files(tmp_path) == ["segment-000001"]


def test_highest_segment_id_skips_bad_names():
    assert highest_segment_id(["wal-000003", "wal-000010", "wal-junk"]) == 10
    assert highest_segment_id([]) == 0


def test_append_writes_readable_records(tmp_path):
    wal = _open_wal(tmp_path)
    wal.append(b"alpha", b"one")
    wal.append(b"beta", b"two")
    wal.close()
    assert wal.last_sequence_num == 2
    with open(tmp_path / wal_file_name(1), "rb") as stream:
        first = read_log_record(stream)
        second = read_log_record(stream)
        assert read_log_record(stream) is None
    assert (first.sequence_num, first.key, first.value) == (1, b"alpha", b"one")
    assert (second.sequence_num, second.key, second.value) == (2, b"beta", b"two")
    assert first.checksum == first.compute_checksum_for_record()


def test_append_signals_checkpoint_when_full(tmp_path):
    wal = _open_wal(tmp_path, segment_size=60)
    assert wal.append(b"k", b"v") is False
    results = [wal.append(b"key", b"value") for _ in range(3)]
    wal.close()
    assert results[-1] is True
    assert (tmp_path / wal_file_name(1)).stat().st_size >= 60


def test_roll_to_new_segment(tmp_path):
    wal = _open_wal(tmp_path)
    wal.append(b"a", b"1")
    old_handle = wal.active_file
    wal.roll_to_new_segment()
    assert old_handle.closed
    assert wal.current_segment_id() == 2
    assert wal.last_segment_id() == 1
    wal.append(CHECKPOINT, b"path")
    wal.close()
    with open(tmp_path / wal_file_name(2), "rb") as stream:
        record = read_log_record(stream)
    assert record.key == CHECKPOINT
    assert record.sequence_num == 2


def test_last_segment_id_requires_a_previous_segment(tmp_path):
    wal = _open_wal(tmp_path)
    with pytest.raises(RuntimeError):
        wal.last_segment_id()
    wal.close()


def test_last_segment_file_reads_previous_segment(tmp_path):
    wal = _open_wal(tmp_path)
    wal.append(b"first", b"segment")
    wal.roll_to_new_segment()
    with wal.last_segment_file() as stream:
        record = read_log_record(stream)
    wal.close()
    assert (record.key, record.value) == (b"first", b"segment")


def test_context_manager_closes_active_file(tmp_path):
    with _open_wal(tmp_path) as wal:
        wal.append(b"x", b"y")
        handle = wal.active_file
        assert not handle.closed
    assert handle.closed