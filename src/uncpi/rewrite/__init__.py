"""
Body rewrite module: ordered, narrowly-scoped passes over instruction bodies.
"""

from .base import RewritePass, register_pass, get_pass, registered_passes
from .context import RewriteContext, StateBinding, SequenceField
from .pipeline import BodyRewritePipeline, RewriteResult, DEFAULT_PASS_ORDER
from .sequences import BoundedSequencePass
from .accounts import ContextPass, dereference_context
from .state import StateFieldPass, route_state_fields
from .cpi import CpiPass
from .assertions import AssertionPass, dereference_key_comparisons, dereference_key
from .diagnostics import DiagnosticsPass
from .formatting import FormattingPass

__all__ = [
    "RewritePass",
    "register_pass",
    "get_pass",
    "registered_passes",
    "RewriteContext",
    "StateBinding",
    "SequenceField",
    "BodyRewritePipeline",
    "RewriteResult",
    "DEFAULT_PASS_ORDER",
    "BoundedSequencePass",
    "ContextPass",
    "dereference_context",
    "StateFieldPass",
    "route_state_fields",
    "CpiPass",
    "AssertionPass",
    "dereference_key_comparisons",
    "dereference_key",
    "DiagnosticsPass",
    "FormattingPass",
]
