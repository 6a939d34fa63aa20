"""Diagnostic call lowering: msg! and emit!."""

import re

from ..matchers import RewriteDirective, apply_directives, find_calls
from .base import RewritePass, register_pass
from .context import RewriteContext

_MSG_HEAD = re.compile(r"\bmsg\s*!")
_EMIT_HEAD = re.compile(r"\bemit\s*!")
_STRING_LITERAL_RE = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)
_PLACEHOLDER_RE = re.compile(r"\{[^{}]*\}")


def is_literal_message(args) -> bool:
    """True for `msg!("text")` with no format placeholders."""
    if len(args) != 1 or not _STRING_LITERAL_RE.fullmatch(args[0]):
        return False
    text = args[0].replace("{{", "").replace("}}", "")
    return _PLACEHOLDER_RE.search(text) is None


def comment_out(text: str) -> str:
    return "/* " + " ".join(text.split()).replace("*/", "* /") + " */"


class DiagnosticsPass(RewritePass):
    """
    Keeps literal messages, comments out formatted ones (the target's log
    call takes a literal only) and removes everything under `no_logs`.
    """

    @property
    def name(self) -> str:
        return "diagnostics"

    def apply(self, body: str, ctx: RewriteContext) -> str:
        no_logs = ctx.config.no_logs
        directives = []

        for call in find_calls(body, _MSG_HEAD):
            if no_logs:
                directives.append(RewriteDirective(call.start, call.end, ""))
            elif not is_literal_message(call.args):
                directives.append(
                    RewriteDirective(call.start, call.end, comment_out(body[call.start:call.end]))
                )

        for call in find_calls(body, _EMIT_HEAD):
            replacement = "" if no_logs else self.unresolved(body[call.start:call.end])
            directives.append(RewriteDirective(call.start, call.end, replacement))

        return apply_directives(body, directives)


register_pass(DiagnosticsPass())
