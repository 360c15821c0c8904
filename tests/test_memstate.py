import os

import pytest

from walkv.memstate import MemState, recover_from_segment
from walkv.records import read_kv_record, read_sparse_index_record


PAIRS = {
    b"key-3": b"value-3",
    b"key-1": b"value-1",
    b"key-5": b"value-5",
    b"key-2": b"value-2",
    b"key-4": b"value-4",
}


def _filled() -> MemState:
    state = MemState()
    for key, value in PAIRS.items():
        state.put(key, value)
    return state


def _record_offsets(path):
    offsets = []
    with open(path, "rb") as handle:
        while True:
            position = handle.tell()
            record = read_kv_record(handle)
            if record is None:
                break
            offsets.append((record.key, record.value, position))
    return offsets


def test_put_and_get():
    state = MemState()
    state.put(b"color", b"blue")
    assert state.get(b"color") == b"blue"
    state.put(b"color", b"red")
    assert state.get(b"color") == b"red"
    assert len(state) == 1


def test_get_missing_raises_key_error():
    state = MemState()
    with pytest.raises(KeyError):
        state.get(b"absent")


def test_empty_key_and_value_are_stored():
    state = MemState()
    state.put(b"", b"value2")
    state.put(b"color", b"")
    assert state.get(b"") == b"value2"
    assert state.get(b"color") == b""


def test_sorted_pairs_are_in_key_order():
    pairs = _filled().sorted_pairs()
    assert [key for key, _ in pairs] == sorted(PAIRS)
    assert dict(pairs) == PAIRS


def test_find_key_in_sparse_index():
    state = MemState()
    state.add_sparse_index_entry(7, b"b", 0)
    state.add_sparse_index_entry(7, b"d", 10)
    state.add_sparse_index_entry(7, b"f", 20)
    assert state.find_key_in_sparse_index(7, b"a") is None
    assert state.find_key_in_sparse_index(7, b"b") == 0
    assert state.find_key_in_sparse_index(7, b"c") == 0
    assert state.find_key_in_sparse_index(7, b"d") == 10
    assert state.find_key_in_sparse_index(7, b"e") == 10
    assert state.find_key_in_sparse_index(7, b"z") == 20


def test_find_key_in_unknown_segment_is_none():
    state = MemState()
    assert state.find_key_in_sparse_index(3, b"anything") is None


def test_segment_ids_descending():
    state = MemState()
    for segment_id in (2, 9, 4):
        state.add_sparse_index_entry(segment_id, b"k", 0)
    assert state.segment_ids_descending() == [9, 4, 2]


def test_flush_writes_sorted_records_and_indexes_every_other(tmp_path):
    state = _filled()
    path = tmp_path / "segment-000001"
    state.flush(path)

    records = _record_offsets(path)
    assert [(key, value) for key, value, _ in records] == sorted(PAIRS.items())

    expected_index = [(key, offset) for key, _, offset in records[::2]]
    assert [tuple(entry) for entry in state.sparse_index(1)] == expected_index
    assert state.segment_ids_descending() == [1]


def test_flush_then_lookup_through_sparse_index(tmp_path):
    state = _filled()
    path = tmp_path / "segment-000002"
    state.flush(path)
    records = _record_offsets(path)
    offsets = {key: offset for key, _, offset in records}
    # key-2 is not indexed itself; the scan starts at key-1.
    assert state.find_key_in_sparse_index(2, b"key-2") == offsets[b"key-1"]
    assert state.find_key_in_sparse_index(2, b"key-5") == offsets[b"key-5"]


def test_flush_rejects_bad_file_name(tmp_path):
    with pytest.raises(ValueError):
        _filled().flush(tmp_path / "segment-abc")


def test_flush_sparse_index_round_trip(tmp_path):
    state = _filled()
    state.flush(tmp_path / "segment-000003")
    index_path = tmp_path / "index-000003"
    state.flush_sparse_index(index_path)

    read_back = []
    with open(index_path, "rb") as handle:
        while (record := read_sparse_index_record(handle)) is not None:
            assert record.segment_id == 3
            read_back.append((record.key, record.offset))
    assert read_back == [tuple(entry) for entry in state.sparse_index(3)]


def test_flush_sparse_index_rejects_bad_file_name(tmp_path):
    with pytest.raises(ValueError):
        MemState().flush_sparse_index(tmp_path / "index-x1")


def test_recover_from_segment_round_trip(tmp_path):
    path = tmp_path / "segment-000004"
    _filled().flush(path)
    recovered = recover_from_segment(path)
    assert recovered.sorted_pairs() == sorted(PAIRS.items())


def test_recover_from_segment_truncates_damaged_tail(tmp_path):
    path = tmp_path / "segment-000005"
    _filled().flush(path)
    records = _record_offsets(path)
    size = os.path.getsize(path)
    os.truncate(path, size - 1)

    recovered = recover_from_segment(path)
    expected = sorted(PAIRS.items())[:-1]
    assert recovered.sorted_pairs() == expected
    assert os.path.getsize(path) == records[-1][2]


def test_recover_from_segment_detects_bit_flip(tmp_path):
    path = tmp_path / "segment-000006"
    _filled().flush(path)
    data = bytearray(path.read_bytes())
    data[-1] ^= 0xFF
    path.write_bytes(bytes(data))

    recovered = recover_from_segment(path)
    assert b"key-5" not in recovered
    assert len(recovered) == len(PAIRS) - 1


def test_recover_from_missing_segment_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        recover_from_segment(tmp_path / "segment-000099")


def test_dump_prints_contents(capsys):
    state = MemState()
    state.put(b"color", b"blue")
    state.dump()
    lines = capsys.readouterr().out.splitlines()
    assert lines == [
        "========== MemState starts ==========",
        "color: blue",
        "========== MemState ends ==========",
    ]