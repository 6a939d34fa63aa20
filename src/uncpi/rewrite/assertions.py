"""
Assertion macro lowering.

`require!` and friends become explicit `if` guards returning an error.
Key handles (`x.key()`) are references in the target runtime while stored
keys are values, so mixed comparisons dereference the handle side.
"""

import re
from typing import Match, Optional

from ..matchers import RewriteDirective, apply_directives, collapse_whitespace, find_calls, sub_code
from .base import RewritePass, register_pass
from .context import RewriteContext

DEFAULT_ERROR = "ProgramError::InvalidArgument"
DEFAULT_KEY_ERROR = "ProgramError::InvalidAccountData"

# macro -> (negated comparison operator, default error); None = boolean condition
ASSERTION_MACROS = {
    "require_keys_neq": ("==", DEFAULT_KEY_ERROR),
    "require_keys_eq": ("!=", DEFAULT_KEY_ERROR),
    "require_neq": ("==", DEFAULT_ERROR),
    "require_eq": ("!=", DEFAULT_ERROR),
    "require_gte": ("<", DEFAULT_ERROR),
    "require_gt": ("<=", DEFAULT_ERROR),
    "require": (None, None),
}

_ASSERTION_HEAD = re.compile(r"\b(" + "|".join(ASSERTION_MACROS) + r")\s*!")
_ERR_HEAD = re.compile(r"\berr\s*!")
_ERROR_HEAD = re.compile(r"\berror\s*!")

_OPERAND = r"[\*&]?(?:\b\w+\s*\.\s*)*\b\w+(?:\s*\(\s*\))?"
_COMPARISON_RE = re.compile(
    rf"(?<![\w\.\*&])({_OPERAND})(\s*(?:==|!=)\s*)({_OPERAND})(?!\s*[\.\(\[\w])"
)
_KEY_HANDLE_RE = re.compile(r"(?:\b\w+\s*\.\s*)+key\s*\(\s*\)")
_SIMPLE_OPERAND_RE = re.compile(r"[\*&]?[\w\.]+(?:\(\))?(?:\[[^\]]*\])?")


def _is_key_handle(operand: str) -> bool:
    return not operand.startswith(("*", "&")) and _KEY_HANDLE_RE.fullmatch(operand) is not None


def _dereference_pair(m: Match) -> str:
    lhs, op, rhs = m.group(1), m.group(2), m.group(3)
    lhs_key, rhs_key = _is_key_handle(lhs), _is_key_handle(rhs)
    if lhs_key and not rhs_key:
        lhs = "*" + lhs
    elif rhs_key and not lhs_key:
        rhs = "*" + rhs
    return lhs + op + rhs


def dereference_key_comparisons(text: str) -> str:
    """`stored == acc.key()` -> `stored == *acc.key()`."""
    return sub_code(_COMPARISON_RE, _dereference_pair, text)


def dereference_key(operand: str) -> str:
    operand = collapse_whitespace(operand)
    if _is_key_handle(operand):
        return "*" + operand
    return operand


def _operand(expr: str) -> str:
    expr = collapse_whitespace(expr)
    if _SIMPLE_OPERAND_RE.fullmatch(expr):
        return expr
    return f"({expr})"


def error_value(error: Optional[str], default: str) -> str:
    """Expression for the `Err(...)` payload."""
    if not error:
        return default
    error = collapse_whitespace(error)
    if error.endswith(".into()") or error.startswith("ProgramError::"):
        return error
    return f"{error}.into()"


def guard(condition: str, error: str) -> str:
    """`if condition { return Err(error); }`"""
    return f"if {condition} {{ return Err({error}); }}"


class AssertionPass(RewritePass):
    """Lowers require!-family macros and err! to explicit guards."""

    @property
    def name(self) -> str:
        return "assertions"

    def apply(self, body: str, ctx: RewriteContext) -> str:
        directives = []
        for call in find_calls(body, _ASSERTION_HEAD):
            macro = _ASSERTION_HEAD.match(body, call.start).group(1)
            replacement = self._lower(macro, call.args)
            if replacement is None:
                replacement = self.unresolved(body[call.start:call.end])
            directives.append(RewriteDirective(call.start, call.end, replacement))
        body = apply_directives(body, directives)

        directives = [
            RewriteDirective(c.start, c.end, f"Err({error_value(c.args_text, DEFAULT_ERROR)})")
            for c in find_calls(body, _ERR_HEAD, consume_suffix=False)
            if c.args_text.strip()
        ]
        directives.extend(
            RewriteDirective(c.start, c.end, error_value(c.args_text, DEFAULT_ERROR))
            for c in find_calls(body, _ERROR_HEAD, consume_suffix=False)
            if c.args_text.strip()
        )
        body = apply_directives(body, directives)

        return dereference_key_comparisons(body)

    def _lower(self, macro: str, args) -> Optional[str]:
        operator, default = ASSERTION_MACROS[macro]

        if operator is None:
            if len(args) != 2:
                return None
            condition = dereference_key_comparisons(collapse_whitespace(args[0]))
            return guard(f"!({condition})", error_value(args[1], DEFAULT_ERROR))

        if len(args) not in (2, 3):
            return None
        error = error_value(args[2] if len(args) == 3 else None, default)
        if macro.startswith("require_keys"):
            lhs, rhs = dereference_key(args[0]), dereference_key(args[1])
        else:
            lhs, rhs = _operand(args[0]), _operand(args[1])
        return guard(f"{lhs} {operator} {rhs}", error)


register_pass(AssertionPass())
