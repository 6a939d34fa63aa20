"""
Formatting pass.

Reflows a rewritten body into one top-level statement per line and
normalizes token spacing left behind by token-stream stringification
(`ctx . accounts . pool`, `msg ! (`) outside strings and comments.
"""

import re
from typing import List

from ..matchers import opaque_end, segments
from .base import RewritePass, register_pass
from .context import RewriteContext

_KEYWORDS = "if|while|return|match|else|in|let|for|loop|as|mut|move|break|continue"

SPACING_RULES = [
    (re.compile(r"\s+"), " "),
    (re.compile(r"\s*::\s*"), "::"),
    (re.compile(r"(?<=[\w\)\]\?])\s*\.\s*(?=[A-Za-z_])"), "."),
    (re.compile(r"([\(\[])\s+"), r"\1"),
    (re.compile(r"\s+([\)\],;\?])"), r"\1"),
    (re.compile(rf"\b(?!(?:{_KEYWORDS})\b)(\w+)\s+!\s*(?=[\(\[\{{])"), r"\1!"),
    (re.compile(r"(?<=\w)!\s+(?=[\(\[\{])"), "!"),
    (re.compile(rf"\b(?!(?:{_KEYWORDS})\b)(\w+)\s+(?=\()"), r"\1"),
    (re.compile(r"&\s+mut\b"), "&mut"),
    (re.compile(r"(?<=[\(\[,=])(\s*)&\s+(?=[\w\[\(\*])"), r"\1&"),
    (re.compile(r"(?<=[\(\[,=])(\s*)\*\s+(?=[\w\(])"), r"\1*"),
]

# A `}` followed by one of these does not end the statement
_CONTINUATION_RE = re.compile(r"\s*(?:else\b|as\b|[\.\?;,\)\]])")


def normalize_spacing(statement: str) -> str:
    """Apply the spacing rules to code regions of one statement."""
    parts = []
    for is_code, chunk in segments(statement):
        if is_code:
            for pattern, replacement in SPACING_RULES:
                chunk = pattern.sub(replacement, chunk)
        parts.append(chunk)
    return "".join(parts).strip()


def split_statements(body: str) -> List[str]:
    """Split a body into top-level statements and standalone comments."""
    statements: List[str] = []
    current: List[str] = []
    depth = 0

    def flush():
        text = normalize_spacing("".join(current))
        if text:
            statements.append(text)
        current.clear()

    i = 0
    while i < len(body):
        end = opaque_end(body, i)
        if end is not None:
            chunk = body[i:end]
            is_line_comment = chunk.startswith("//")
            is_comment = is_line_comment or chunk.startswith("/*")
            pending = "".join(current).strip()

            if is_comment and depth == 0 and not pending:
                statements.append(chunk.rstrip())
                current.clear()
            elif is_line_comment:
                # Line comments cannot survive being joined onto one line
                current.append("/* " + chunk[2:].strip().replace("*/", "* /") + " */")
            else:
                current.append(chunk)
            i = end
            continue

        c = body[i]
        current.append(c)
        if c in "([{":
            depth += 1
        elif c in ")]}":
            depth = max(depth - 1, 0)
            if c == "}" and depth == 0 and not _CONTINUATION_RE.match(body, i + 1):
                flush()
        elif c == ";" and depth == 0:
            flush()
        i += 1

    flush()
    return statements


class FormattingPass(RewritePass):
    """Runs last: one top-level statement per line."""

    @property
    def name(self) -> str:
        return "format"

    def apply(self, body: str, ctx: RewriteContext) -> str:
        return "\n".join(split_statements(body))


register_pass(FormattingPass())
