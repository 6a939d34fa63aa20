"""
Bounded sequences: the accessor contract for Vec-like fields in a fixed layout.

A bounded sequence is a backing array of `capacity` fixed-size elements
followed by a little-endian length counter. Only the first `len` elements are
live; everything past them is stale storage that readers must ignore.
"""

import struct
from typing import Iterator, Optional

from ..errors import SequenceOverflow
from .engine import FieldLayout, counter_size

_COUNTER_FORMATS = {1: "<B", 2: "<H", 8: "<Q"}


class BoundedSequence:
    """
    View over a bounded-sequence field inside raw account data.

    Mirrors the operations the body rewriter lowers `Vec` methods into, so
    the generated index-and-counter code and this class agree on semantics.
    """

    def __init__(
        self,
        data: bytearray,
        offset: int,
        capacity: int,
        element_size: int,
    ):
        """
        Args:
            data: Account data buffer (including the 8-byte header)
            offset: Offset of the backing array within `data`
            capacity: Maximum number of live elements
            element_size: Size in bytes of one element
        """
        if element_size <= 0:
            raise ValueError(f"Element size must be positive, got {element_size}")

        self.data = data
        self.offset = offset
        self.capacity = capacity
        self.element_size = element_size
        self.counter_offset = offset + capacity * element_size
        self._format = _COUNTER_FORMATS[counter_size(capacity)]

        end = self.counter_offset + struct.calcsize(self._format)
        if end > len(data):
            raise ValueError(f"Sequence ends at byte {end} but buffer holds {len(data)}")

    @classmethod
    def for_field(cls, data: bytearray, layout: FieldLayout) -> "BoundedSequence":
        """Build a view from a field placed by the layout engine."""
        if not layout.is_sequence:
            raise ValueError(f"Field '{layout.name}' is not a bounded sequence")
        return cls(data, layout.offset, layout.capacity, layout.element_size)

    def _read_len(self) -> int:
        return struct.unpack_from(self._format, self.data, self.counter_offset)[0]

    def _write_len(self, value: int):
        struct.pack_into(self._format, self.data, self.counter_offset, value)

    def _slot(self, index: int) -> slice:
        start = self.offset + index * self.element_size
        return slice(start, start + self.element_size)

    def __len__(self) -> int:
        return self._read_len()

    def is_empty(self) -> bool:
        return self._read_len() == 0

    def append(self, item: bytes):
        """Append one element; raises SequenceOverflow when full."""
        if len(item) != self.element_size:
            raise ValueError(f"Expected {self.element_size}-byte element, got {len(item)}")

        length = self._read_len()
        if length >= self.capacity:
            raise SequenceOverflow(self.capacity)

        self.data[self._slot(length)] = item
        self._write_len(length + 1)

    def clear(self):
        """Reset the length to zero. Backing storage is left as is."""
        self._write_len(0)

    def get(self, index: int) -> Optional[bytes]:
        if 0 <= index < self._read_len():
            return bytes(self.data[self._slot(index)])
        return None

    def __iter__(self) -> Iterator[bytes]:
        for index in range(self._read_len()):
            yield bytes(self.data[self._slot(index)])

    def remove(self, index: int) -> bytes:
        """Remove the element at `index`, shifting later elements left."""
        length = self._read_len()
        if not 0 <= index < length:
            raise IndexError(f"Index {index} out of range for length {length}")

        removed = bytes(self.data[self._slot(index)])
        for i in range(index, length - 1):
            self.data[self._slot(i)] = self.data[self._slot(i + 1)]
        self._write_len(length - 1)
        return removed
