"""
Transform module: target-form models, discriminators, validation synthesis
and the transformation engine.
"""

from .models import (
    ValidationKind,
    PdaMode,
    Validation,
    TargetAccount,
    TargetField,
    TargetStateRecord,
    TargetError,
    TargetInstruction,
    TargetProgram,
)
from .discriminator import (
    to_snake_case,
    anchor_discriminator,
    placeholder_discriminator,
    compute_discriminator,
    check_unique,
)
from .validations import ValidationBuilder, select_pda_mode, is_self_referential
from .engine import TransformationEngine, transpile

__all__ = [
    "ValidationKind",
    "PdaMode",
    "Validation",
    "TargetAccount",
    "TargetField",
    "TargetStateRecord",
    "TargetError",
    "TargetInstruction",
    "TargetProgram",
    "to_snake_case",
    "anchor_discriminator",
    "placeholder_discriminator",
    "compute_discriminator",
    "check_unique",
    "ValidationBuilder",
    "select_pda_mode",
    "is_self_referential",
    "TransformationEngine",
    "transpile",
]
