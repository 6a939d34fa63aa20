"""
Error taxonomy for the transpiler core.

Only structural problems and discriminator collisions abort a run. Everything
else is recovered locally and surfaces as data (markers in bodies, layout
assumptions) so one hard instruction never blocks the rest of a program.
"""

from dataclasses import dataclass


class UncpiError(Exception):
    """Base class for all transpiler errors."""
    pass


class StructuralModelError(UncpiError):
    """Raised when the source-form model is malformed or incomplete."""
    pass


class DiscriminatorCollision(UncpiError):
    """Raised when two instructions in one program share a discriminator."""

    def __init__(self, first: str, second: str, discriminator: bytes):
        self.first = first
        self.second = second
        self.discriminator = discriminator
        super().__init__(
            f"Instructions '{first}' and '{second}' share discriminator {discriminator.hex()}"
        )


class SequenceOverflow(UncpiError):
    """Raised when appending to a bounded sequence that is already full."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(f"Bounded sequence is full (capacity {capacity})")


@dataclass(frozen=True)
class UnresolvedPattern:
    """A body fragment a rewrite pass could not recognize.

    Never raised: the pass leaves an inert marker in the body and the
    pipeline collects these back out of the final text.
    """
    pass_name: str
    fragment: str

    def __str__(self) -> str:
        return f"[{self.pass_name}] {self.fragment}"


@dataclass(frozen=True)
class LayoutEstimateFallback:
    """An unknown type that received a conservative size estimate."""
    record: str
    field: str
    type_name: str
    assumed_size: int

    def __str__(self) -> str:
        return (
            f"{self.record}.{self.field}: unknown type '{self.type_name}' "
            f"assumed {self.assumed_size} bytes"
        )
