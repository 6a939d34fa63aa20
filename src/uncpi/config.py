"""Transformation configuration."""

import math
import os
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TransformConfig:
    """Configuration for a transformation run."""
    # Replace heap collections in bodies with fixed arrays
    no_alloc: bool = False

    # Emit the lazy program entrypoint
    lazy_entrypoint: bool = False

    # Inline lamport transfers out of program-owned accounts
    inline_cpi: bool = False

    # Anchor-compatible content-derived discriminators
    anchor_compat: bool = True

    # Strip all logging from bodies
    no_logs: bool = False

    # Accepted for compatibility; has no effect
    unsafe_math: bool = False

    # Worker count for per-instruction transformation (None = auto)
    max_workers: Optional[int] = None

    def worker_count(self) -> int:
        """Workers to use: explicit, else ceil(0.75 * cpu count)."""
        if self.max_workers is not None:
            return max(1, self.max_workers)
        return max(1, math.ceil((os.cpu_count() or 1) * 0.75))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
