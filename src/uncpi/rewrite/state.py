"""
State-field promotion.

Field accesses on a state-holding account are routed through a handle
deserialized once at entry. The handle is mutable only when the body
writes through it.
"""

import logging
import re
from typing import Match

from ..matchers import CHAIN, RECEIVER_START, SourceText, sub_code
from .base import RewritePass, register_pass
from .context import RewriteContext, StateBinding, account_aliases

logger = logging.getLogger(__name__)

_ALIAS_STATEMENT_RE = re.compile(
    r"[ \t]*\blet\s+(?:mut\s+)?(\w+)\s*=\s*(?:&\s*(?:mut\s+)?)?(\w+)\s*;[ \t]*\n?"
)
_COMPOUND_OP = r"(?:<<|>>|[-+*/%&|^])?"


def _field_re(binding: StateBinding) -> re.Pattern:
    names = "|".join(re.escape(f) for f in sorted(binding.fields, key=len, reverse=True))
    return re.compile(
        rf"{RECEIVER_START}{re.escape(binding.account)}\s*\.\s*({names})\b(?!\s*\()"
    )


def _load_re(binding: StateBinding) -> re.Pattern:
    return re.compile(
        rf"{RECEIVER_START}{re.escape(binding.account)}\s*\.\s*load(_mut|_init)?\s*\(\s*\)\s*\?"
    )


def _binding_re(binding: StateBinding) -> re.Pattern:
    return re.compile(rf"\blet\s+(?:mut\s+)?{re.escape(binding.handle)}\b")


def _mutation_res(binding: StateBinding):
    handle = re.escape(binding.handle)
    return [
        # handle.field[..] = x, handle.field += x
        re.compile(
            rf"\b{handle}\s*\.\s*\w+(?:\s*\[[^\]]*\])*(?:\s*\.\s*\w+(?:\s*\[[^\]]*\])*)*"
            rf"\s*{_COMPOUND_OP}=(?!=)"
        ),
        re.compile(rf"&\s*mut\s+{handle}\b"),
        re.compile(
            rf"\b{handle}\s*\.\s*{CHAIN}(?:iter_mut|get_mut|first_mut|last_mut|"
            rf"copy_from_slice|fill|swap|sort|reverse)\s*\("
        ),
    ]


def route_state_fields(text: str, ctx: RewriteContext) -> str:
    """Route `account.field` to `account_state.field` for every state binding."""
    for binding in ctx.states:
        if binding.fields:
            text = sub_code(_field_re(binding), rf"{binding.handle}.\1", text)
    return text


def deserialization(binding: StateBinding, mutable: bool) -> str:
    if mutable:
        return f"let mut {binding.handle} = {binding.record}::from_account_info_mut({binding.account})?;"
    return f"let {binding.handle} = {binding.record}::from_account_info({binding.account})?;"


class StateFieldPass(RewritePass):
    """Promotes field accesses on state accounts to a deserialized handle."""

    @property
    def name(self) -> str:
        return "state_fields"

    def apply(self, body: str, ctx: RewriteContext) -> str:
        if not ctx.states:
            return body

        forced_mutable = set()
        for binding in ctx.states:
            pattern = _load_re(binding)
            if any(m.group(1) for m in SourceText(body).finditer(pattern)):
                forced_mutable.add(binding.account)
            body = sub_code(pattern, binding.account, body)

        body = self._fold_aliases(body, ctx)
        body = route_state_fields(body, ctx)
        body = self._dereference_key_assignments(body, ctx)

        prologue = []
        for binding in ctx.states:
            source = SourceText(body)
            if not source.contains(re.compile(rf"{RECEIVER_START}{re.escape(binding.handle)}\b")):
                continue
            if source.contains(_binding_re(binding)):
                continue

            mutable = binding.account in forced_mutable or any(
                source.contains(p) for p in _mutation_res(binding)
            )
            logger.debug(
                "%s: deserializing %s as %s",
                ctx.instruction, binding.account, "mutable" if mutable else "read-only",
            )
            prologue.append(deserialization(binding, mutable))

        if prologue:
            body = "\n".join(prologue) + "\n" + body
        return body

    def _fold_aliases(self, body: str, ctx: RewriteContext) -> str:
        aliases = account_aliases(body, ctx)

        def drop(m: Match) -> str:
            alias, target = m.group(1), m.group(2)
            if ctx.get_account(target) is None:
                return m.group(0)
            if alias != target and aliases.get(alias) != target:
                return m.group(0)
            return ""

        body = sub_code(_ALIAS_STATEMENT_RE, drop, body)
        for alias, target in aliases.items():
            if alias != target:
                body = sub_code(re.compile(rf"{RECEIVER_START}{re.escape(alias)}\b"), target, body)
        return body

    def _dereference_key_assignments(self, body: str, ctx: RewriteContext) -> str:
        # A stored key is a value; `.key()` yields a reference
        handles = "|".join(re.escape(b.handle) for b in ctx.states)
        pattern = re.compile(
            rf"(\b(?:{handles})\s*\.\s*\w+(?:\s*\[[^\]]*\])*\s*=(?!=)\s*)"
            rf"((?:\b\w+\s*\.\s*)+key\s*\(\s*\))(?!\s*\.)"
        )
        return sub_code(pattern, r"\1*\2", body)


register_pass(StateFieldPass())
