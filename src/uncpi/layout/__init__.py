"""
Layout module: fixed account-data layouts and the bounded-sequence contract.
"""

from .engine import (
    LayoutEngine,
    FieldLayout,
    RecordLayout,
    TypeDescriptor,
    TypeShape,
    parse_type,
    counter_size,
    counter_type,
    length_field_name,
    HEADER_SIZE,
)
from .sequence import BoundedSequence

__all__ = [
    "LayoutEngine",
    "FieldLayout",
    "RecordLayout",
    "TypeDescriptor",
    "TypeShape",
    "parse_type",
    "counter_size",
    "counter_type",
    "length_field_name",
    "HEADER_SIZE",
    "BoundedSequence",
]
