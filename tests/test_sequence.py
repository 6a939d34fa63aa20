"""Tests for the bounded-sequence accessor contract."""

import pytest

from uncpi.analysis.models import StateField, StateRecord
from uncpi.errors import SequenceOverflow
from uncpi.layout import BoundedSequence, LayoutEngine


def make_sequence(capacity=3, element_size=2):
    data = bytearray(8 + capacity * element_size + 1)
    return BoundedSequence(data, 8, capacity, element_size)


class TestBoundedSequence:
    def test_starts_empty(self):
        seq = make_sequence()
        assert len(seq) == 0
        assert seq.is_empty()
        assert list(seq) == []

    def test_append_and_iterate_live_prefix(self):
        seq = make_sequence()
        seq.append(b"\x01\x00")
        seq.append(b"\x02\x00")

        assert len(seq) == 2
        assert not seq.is_empty()
        assert list(seq) == [b"\x01\x00", b"\x02\x00"]
        assert seq.get(1) == b"\x02\x00"
        assert seq.get(2) is None

    def test_append_beyond_capacity_raises(self):
        seq = make_sequence(capacity=2)
        seq.append(b"aa")
        seq.append(b"bb")
        before = bytes(seq.data)

        with pytest.raises(SequenceOverflow) as exc:
            seq.append(b"cc")

        assert exc.value.capacity == 2
        assert bytes(seq.data) == before
        assert len(seq) == 2

    def test_append_rejects_wrong_element_size(self):
        seq = make_sequence(element_size=2)
        with pytest.raises(ValueError):
            seq.append(b"abc")

    def test_clear_keeps_storage(self):
        seq = make_sequence()
        seq.append(b"zz")
        seq.clear()

        assert len(seq) == 0
        assert list(seq) == []
        assert seq.data[8:10] == b"zz"

    def test_remove_shifts_left(self):
        seq = make_sequence(capacity=4, element_size=1)
        for item in (b"a", b"b", b"c", b"d"):
            seq.append(item)

        removed = seq.remove(1)

        assert removed == b"b"
        assert list(seq) == [b"a", b"c", b"d"]

    def test_remove_out_of_range(self):
        seq = make_sequence()
        seq.append(b"xx")
        with pytest.raises(IndexError):
            seq.remove(1)

    def test_buffer_too_small(self):
        with pytest.raises(ValueError):
            BoundedSequence(bytearray(4), 0, 3, 2)

    def test_for_field_uses_layout(self):
        record = StateRecord("Group", (
            StateField("admin", "Pubkey"),
            StateField("members", "Vec<u64>", max_len=2),
        ))
        layout = LayoutEngine().layout_record(record)
        data = bytearray(layout.size)

        seq = BoundedSequence.for_field(data, layout.get_field("members"))
        seq.append((7).to_bytes(8, "little"))

        assert seq.capacity == 2
        assert data[layout.get_field("members").counter_offset] == 1

    def test_for_field_rejects_fixed_field(self):
        layout = LayoutEngine().layout_record(StateRecord("R", (StateField("x", "u8"),)))
        with pytest.raises(ValueError):
            BoundedSequence.for_field(bytearray(layout.size), layout.get_field("x"))
