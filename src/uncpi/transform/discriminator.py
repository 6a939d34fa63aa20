"""Instruction discriminators."""

import hashlib
import struct
from typing import Dict, Iterable, Tuple

from ..errors import DiscriminatorCollision

DISCRIMINATOR_SIZE = 8


def to_snake_case(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, c in enumerate(name):
        if c.isupper() and i > 0 and name[i - 1] != "_":
            result.append("_")
        result.append(c.lower())
    return "".join(result)


def anchor_discriminator(name: str) -> bytes:
    """Anchor-compatible discriminator: sha256("global:<snake_case_name>")[:8]."""
    preimage = f"global:{to_snake_case(name)}"
    return hashlib.sha256(preimage.encode()).digest()[:DISCRIMINATOR_SIZE]


def placeholder_discriminator(index: int) -> bytes:
    """Fixed discriminator used without Anchor compatibility: the index, little-endian."""
    return struct.pack("<Q", index)


def compute_discriminator(name: str, index: int, anchor_compat: bool = True) -> bytes:
    if anchor_compat:
        return anchor_discriminator(name)
    return placeholder_discriminator(index)


def check_unique(entries: Iterable[Tuple[str, bytes]]):
    """Raise DiscriminatorCollision if two names share a discriminator."""
    seen: Dict[bytes, str] = {}
    for name, discriminator in entries:
        if discriminator in seen:
            raise DiscriminatorCollision(seen[discriminator], name, discriminator)
        seen[discriminator] = name
