"""
Layout Engine: fixed-size, offset-addressed layouts for account records.

Every record starts with an 8-byte discriminator header. Fields follow in
declaration order with no padding. Variable-length fields (Vec<T>, String)
are given a fixed capacity and stored as a backing array followed by a
length counter whose width depends on that capacity.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple
from enum import Enum

from ..analysis.models import StateRecord, StateField
from ..errors import LayoutEstimateFallback

logger = logging.getLogger(__name__)


HEADER_SIZE = 8

# Conservative size for any type we cannot resolve
FALLBACK_SIZE = 32

# Default capacity for String fields without #[max_len]
DEFAULT_STRING_CAPACITY = 32

# Default capacity for Vec<T> fields without #[max_len], by element type
DEFAULT_SEQUENCE_CAPACITIES = {
    "pubkey": 32,       # Max signers in multisig
    "u64": 100,
    "u32": 100,
    "u16": 256,
    "u8": 256,
    "i64": 100,
    "string": 10,
    "accountinfo": 16,  # Max remaining accounts
}

FALLBACK_CAPACITY = 32

PRIMITIVE_SIZES = {
    "bool": 1,
    "u8": 1,
    "i8": 1,
    "u16": 2,
    "i16": 2,
    "u32": 4,
    "i32": 4,
    "f32": 4,
    "u64": 8,
    "i64": 8,
    "f64": 8,
    "u128": 16,
    "i128": 16,
    "pubkey": 32,
    "publickey": 32,
}

_ARRAY_RE = re.compile(r"^\[(.+);(\d+)\]$")
_GENERIC_RE = re.compile(r"^(\w+(?:::\w+)*)<(.+)>$")


class TypeShape(Enum):
    """Structural shape of a field type."""
    PRIMITIVE = "primitive"
    ARRAY = "array"
    OPTION = "option"
    SEQUENCE = "sequence"
    STRING = "string"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TypeDescriptor:
    """Parsed form of a Rust type string."""
    shape: TypeShape
    name: str
    inner: Optional["TypeDescriptor"] = None
    length: Optional[int] = None


def parse_type(ty: str) -> TypeDescriptor:
    """Parse a Rust type string such as `Option<Vec<Pubkey>>`."""
    compact = ty.replace(" ", "")
    key = compact.lower()

    if key in PRIMITIVE_SIZES:
        return TypeDescriptor(TypeShape.PRIMITIVE, compact)

    if key == "string":
        return TypeDescriptor(
            TypeShape.STRING, compact, inner=TypeDescriptor(TypeShape.PRIMITIVE, "u8")
        )

    array = _ARRAY_RE.match(compact)
    if array:
        return TypeDescriptor(
            TypeShape.ARRAY, compact, inner=parse_type(array.group(1)), length=int(array.group(2))
        )

    generic = _GENERIC_RE.match(compact)
    if generic:
        wrapper = generic.group(1).split("::")[-1].lower()
        inner = parse_type(generic.group(2))
        if wrapper == "option":
            return TypeDescriptor(TypeShape.OPTION, compact, inner=inner)
        if wrapper == "vec":
            return TypeDescriptor(TypeShape.SEQUENCE, compact, inner=inner)

    return TypeDescriptor(TypeShape.UNKNOWN, compact)


def counter_size(capacity: int) -> int:
    """Width in bytes of the length counter for a given capacity."""
    if capacity <= 0xFF:
        return 1
    if capacity <= 0xFFFF:
        return 2
    return 8


def counter_type(capacity: int) -> str:
    """Rust type of the length counter for a given capacity."""
    return {1: "u8", 2: "u16"}.get(counter_size(capacity), "usize")


def default_capacity(element: TypeDescriptor) -> int:
    """Default bound for a sequence whose element type is `element`."""
    return DEFAULT_SEQUENCE_CAPACITIES.get(element.name.lower(), FALLBACK_CAPACITY)


def length_field_name(name: str) -> str:
    """Name of the counter field that tracks a sequence's live length."""
    return f"{name}_len"


@dataclass(frozen=True)
class FieldLayout:
    """Placement of one source field inside a record."""
    name: str
    ty: str
    size: int
    offset: int
    capacity: Optional[int] = None
    element_size: int = 0
    counter_size: int = 0

    @property
    def is_sequence(self) -> bool:
        return self.capacity is not None

    @property
    def backing_size(self) -> int:
        return self.size - self.counter_size

    @property
    def counter_offset(self) -> int:
        return self.offset + self.backing_size


@dataclass(frozen=True)
class RecordLayout:
    """Placement of every field of a record, plus any size assumptions."""
    name: str
    size: int
    fields: Tuple[FieldLayout, ...]
    assumptions: Tuple[LayoutEstimateFallback, ...] = ()

    def get_field(self, name: str) -> Optional[FieldLayout]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def sequence_fields(self) -> List[FieldLayout]:
        return [f for f in self.fields if f.is_sequence]


class LayoutEngine:
    """
    Computes byte sizes and offsets for state records.

    The engine is stateless; sizes depend only on the type string and the
    explicit bound, so it is safe to share between threads.
    """

    def size_of(self, ty: str, bound: Optional[int] = None) -> int:
        """Byte size of a field of type `ty` with an optional explicit bound."""
        return self._size(parse_type(ty), bound, [])

    def capacity_of(self, ty: str, bound: Optional[int] = None) -> Optional[int]:
        """Resolved capacity of a sequence type, or None for fixed types."""
        desc = parse_type(ty)
        if desc.shape == TypeShape.SEQUENCE:
            return bound if bound is not None else default_capacity(desc.inner)
        if desc.shape == TypeShape.STRING:
            return bound if bound is not None else DEFAULT_STRING_CAPACITY
        return None

    def layout_field(self, f: StateField, offset: int, record: str = "") -> Tuple[FieldLayout, List[LayoutEstimateFallback]]:
        """Lay out a single field starting at `offset`."""
        desc = parse_type(f.ty)
        unknown: List[str] = []
        size = self._size(desc, f.max_len, unknown)

        fallbacks = [
            LayoutEstimateFallback(record, f.name, name, FALLBACK_SIZE) for name in unknown
        ]
        for fallback in fallbacks:
            logger.warning("Layout assumption: %s", fallback)

        capacity = self.capacity_of(f.ty, f.max_len)
        if capacity is None:
            return FieldLayout(name=f.name, ty=f.ty, size=size, offset=offset), fallbacks

        counter = counter_size(capacity)
        return FieldLayout(
            name=f.name,
            ty=f.ty,
            size=size,
            offset=offset,
            capacity=capacity,
            element_size=(size - counter) // capacity if capacity else 0,
            counter_size=counter,
        ), fallbacks

    def layout_record(self, record: StateRecord) -> RecordLayout:
        """
        Lay out a whole record.

        Offsets start immediately after the header and grow by each field's
        size, so the total is always HEADER_SIZE plus the sum of field sizes.
        """
        offset = HEADER_SIZE
        fields = []
        assumptions: List[LayoutEstimateFallback] = []

        for f in record.fields:
            placed, fallbacks = self.layout_field(f, offset, record.name)
            fields.append(placed)
            assumptions.extend(fallbacks)
            offset += placed.size

        return RecordLayout(
            name=record.name,
            size=offset,
            fields=tuple(fields),
            assumptions=tuple(assumptions),
        )

    def _size(self, desc: TypeDescriptor, bound: Optional[int], unknown: List[str]) -> int:
        if desc.shape == TypeShape.PRIMITIVE:
            return PRIMITIVE_SIZES[desc.name.lower()]

        if desc.shape == TypeShape.ARRAY:
            return desc.length * self._size(desc.inner, None, unknown)

        if desc.shape == TypeShape.OPTION:
            # One discriminant byte in front of the value
            return 1 + self._size(desc.inner, bound, unknown)

        if desc.shape == TypeShape.STRING:
            capacity = bound if bound is not None else DEFAULT_STRING_CAPACITY
            return capacity + counter_size(capacity)

        if desc.shape == TypeShape.SEQUENCE:
            capacity = bound if bound is not None else default_capacity(desc.inner)
            element = self._size(desc.inner, None, unknown)
            return capacity * element + counter_size(capacity)

        unknown.append(desc.name)
        return FALLBACK_SIZE
