"""Body rewrite pipeline."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..errors import UnresolvedPattern
from ..matchers import collect_markers
from .base import RewritePass, get_pass
from .context import RewriteContext

# Importing the pass modules registers them
from . import sequences, accounts, state, cpi, assertions, diagnostics, formatting  # noqa: F401

logger = logging.getLogger(__name__)

# Later passes assume the shapes earlier passes normalize to
DEFAULT_PASS_ORDER = (
    "bounded_sequences",
    "context",
    "state_fields",
    "cpi",
    "assertions",
    "diagnostics",
    "format",
)


@dataclass(frozen=True)
class RewriteResult:
    """A rewritten body and the patterns left unresolved in it."""
    body: str
    issues: Tuple[UnresolvedPattern, ...] = ()


class BodyRewritePipeline:
    """
    Runs the rewrite passes over one instruction body.

    Usage:
        pipeline = BodyRewritePipeline()
        result = pipeline.run(body, ctx)
    """

    def __init__(self, passes: Optional[Sequence[RewritePass]] = None):
        if passes is None:
            passes = [get_pass(name) for name in DEFAULT_PASS_ORDER]
        self.passes: List[RewritePass] = list(passes)

    def run(self, body: str, ctx: RewriteContext) -> RewriteResult:
        for rewrite_pass in self.passes:
            rewritten = rewrite_pass.apply(body, ctx)
            if rewritten != body:
                logger.debug("%s: pass %s rewrote body", ctx.instruction, rewrite_pass.name)
            body = rewritten

        issues = tuple(collect_markers(body))
        for issue in issues:
            logger.info("%s: unresolved %s", ctx.instruction, issue)
        return RewriteResult(body=body, issues=issues)
