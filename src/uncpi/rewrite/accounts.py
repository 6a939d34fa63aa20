"""
Context dereferencing.

Anchor handlers reach every account and bump through the injected `ctx`.
The target entrypoint binds accounts and bumps as plain locals, so those
accesses are flattened to direct references.
"""

import re

from ..matchers import sub_code, sub_matches
from .base import RewritePass, register_pass
from .context import RewriteContext

# Order matters: the `bumps.get("x")` form must be handled before `bumps.x`
CONTEXT_RULES = [
    (re.compile(r"\bctx\s*\.\s*bumps\s*\.\s*get\s*\(\s*\"(\w+)\"\s*\)(?:\s*\.\s*unwrap\s*\(\s*\))?"), r"\1_bump"),
    (re.compile(r"\bctx\s*\.\s*bumps\s*\.\s*(\w+)"), r"\1_bump"),
    (re.compile(r"\bctx\s*\.\s*accounts\s*\.\s*(\w+)"), r"\1"),
    (re.compile(r"\bctx\s*\.\s*program_id\b"), "program_id"),
    (re.compile(r"\bctx\s*\.\s*remaining_accounts\b"), "remaining_accounts"),
    (re.compile(r"\s*\.\s*to_account_info\s*\(\s*\)"), ""),
]

_LEFTOVER_CONTEXT_RE = re.compile(r"&?\s*\bctx\s*\.\s*accounts\b")


def dereference_context(text: str) -> str:
    """Flatten every `ctx.` access in `text`."""
    for pattern, replacement in CONTEXT_RULES:
        text = sub_matches(pattern, replacement, text)
    return text


class ContextPass(RewritePass):
    """Flattens `ctx.accounts.X`, `ctx.bumps.X` and friends to locals."""

    @property
    def name(self) -> str:
        return "context"

    def apply(self, body: str, ctx: RewriteContext) -> str:
        body = dereference_context(body)
        # The accounts struct as a whole has no target counterpart
        return sub_code(_LEFTOVER_CONTEXT_RE, lambda m: self.unresolved(m.group(0)), body)


register_pass(ContextPass())
