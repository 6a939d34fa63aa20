"""
Analysis module: the source-form program model, its JSON loader and the
relationship analyzer that derives the fact set.
"""

from .models import (
    AccountKind,
    ConstraintKind,
    Constraint,
    AccountDeclaration,
    InstructionArg,
    AccountGroup,
    Instruction,
    StateField,
    StateRecord,
    ErrorDef,
    Program,
    PdaInfo,
    CpiCallInfo,
    AccountSizeInfo,
    FactSet,
)
from .loader import ModelLoader
from .analyzer import RelationshipAnalyzer, CPI_SHAPES

__all__ = [
    "AccountKind",
    "ConstraintKind",
    "Constraint",
    "AccountDeclaration",
    "InstructionArg",
    "AccountGroup",
    "Instruction",
    "StateField",
    "StateRecord",
    "ErrorDef",
    "Program",
    "PdaInfo",
    "CpiCallInfo",
    "AccountSizeInfo",
    "FactSet",
    "ModelLoader",
    "RelationshipAnalyzer",
    "CPI_SHAPES",
]
