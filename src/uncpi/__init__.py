"""
uncpi: Anchor to Pinocchio transpiler core.

Turns a source-form program model plus the facts derived from it into a
target-form model for an external emitter.
"""

# Import order matters: transform pulls in analysis and rewrite in a
# sequence that keeps their cross-references resolvable.
from .config import TransformConfig
from .errors import (
    UncpiError,
    StructuralModelError,
    DiscriminatorCollision,
    SequenceOverflow,
    UnresolvedPattern,
    LayoutEstimateFallback,
)
from .transform import TransformationEngine, TargetProgram, transpile
from .analysis import ModelLoader, RelationshipAnalyzer, Program, FactSet
from .layout import LayoutEngine, BoundedSequence
from .rewrite import BodyRewritePipeline, RewriteContext

__version__ = "0.1.0"

__all__ = [
    "TransformConfig",
    "UncpiError",
    "StructuralModelError",
    "DiscriminatorCollision",
    "SequenceOverflow",
    "UnresolvedPattern",
    "LayoutEstimateFallback",
    "TransformationEngine",
    "TargetProgram",
    "transpile",
    "ModelLoader",
    "RelationshipAnalyzer",
    "Program",
    "FactSet",
    "LayoutEngine",
    "BoundedSequence",
    "BodyRewritePipeline",
    "RewriteContext",
]
