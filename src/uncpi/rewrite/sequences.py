"""
Bounded-sequence lowering.

`Vec` operations on record fields are rewritten to the index-and-counter
convention of the layout engine: the field becomes a fixed backing array
and `<name>_len` tracks how many slots are live. Appending past capacity
returns an error instead of writing out of range.
"""

import logging
import re
from typing import Dict, List, Match, Optional

from ..layout.engine import FALLBACK_CAPACITY, default_capacity, parse_type
from ..matchers import CHAIN, SourceText, find_calls, sub_code
from .base import RewritePass, register_pass
from .context import RewriteContext, SequenceField, account_aliases

logger = logging.getLogger(__name__)


OVERFLOW_ERROR = "ProgramError::InvalidArgument"

_SLICE_METHODS = ("iter_mut", "iter", "contains", "get", "first", "last")
_OPERATIONS = ("push", "len", "is_empty", "clear", "remove", "extend_from_slice") + _SLICE_METHODS

_SEQUENCE_OP_RE = re.compile(
    rf"({CHAIN})\b(\w+)\s*\.\s*({'|'.join(_OPERATIONS)})\b(?=\s*\()"
)
_FOR_RE = re.compile(
    rf"\bfor\s+(\S.*?)\s+in\s+&\s*(mut\s+)?({CHAIN})\b(\w+)\s*(?=\{{)"
)
_RESET_RE = re.compile(
    rf"(?<!let )(?<!mut )({CHAIN})\b(\w+)\s*=(?!=)\s*"
    r"(?:Vec\s*::\s*new\s*\(\s*\)|vec\s*!\s*\[\s*\])"
)

_LOCAL_VEC_RE = re.compile(
    r"\blet\s+mut\s+(\w+)\s*(?::\s*Vec\s*<\s*(.+?)\s*>\s*)?=\s*"
    r"Vec\s*::\s*(?:new\s*\(\s*\)|with_capacity\s*\(\s*(\d+)\s*\))\s*;"
)
_LOWERED_LOCAL_RE = re.compile(
    r"\blet\s+mut\s+(\w+)\s*(?::\s*\[[^\]]*\]\s*)?=\s*\[\s*Default\s*::\s*default\s*\(\s*\)\s*;\s*(\d+)\s*\]\s*;"
    r"\s*let\s+mut\s+\1_len\s*:\s*usize\s*=\s*0\s*;"
)

# Heap-allocating idioms with no fixed-capacity equivalent
_HEAP_CALL_HEADS = [
    re.compile(r"\bvec\s*!"),
    re.compile(r"\bformat\s*!"),
    re.compile(r"\bString\s*::\s*from\b"),
    re.compile(r"\bBox\s*::\s*new\b"),
    re.compile(r"\bVec\s*::\s*(?:new|with_capacity)\b"),
]
_HEAP_METHOD_RE = re.compile(
    r"(?:\b\w+\s*\.\s*)*\b\w+\s*\.\s*(?:to_vec|to_string|to_owned)\s*\(\s*\)"
)
_LOG_MACRO_RE = re.compile(r"\b(?:msg|emit)\s*!")


def _as_usize(expr: str) -> str:
    expr = expr.strip()
    if re.fullmatch(r"\w+", expr):
        return f"{expr} as usize"
    return f"({expr}) as usize"


class BoundedSequencePass(RewritePass):
    """Lowers Vec operations on bounded fields (and, under no_alloc, locals)."""

    @property
    def name(self) -> str:
        return "bounded_sequences"

    def apply(self, body: str, ctx: RewriteContext) -> str:
        aliases = account_aliases(body, ctx)
        locals_: Dict[str, SequenceField] = {}

        if ctx.config.no_alloc:
            body = self._lower_locals(body, locals_)

        body = self._lower_operations(body, ctx, aliases, locals_)
        body = self._lower_loops(body, ctx, aliases, locals_)
        body = self._lower_resets(body, ctx, aliases, locals_)

        if ctx.config.no_alloc:
            body = self._slice_local_refs(body, locals_)
            body = self._mark_heap_idioms(body)
        return body

    def _resolve(
        self,
        prefix: str,
        name: str,
        ctx: RewriteContext,
        aliases: Dict[str, str],
        locals_: Dict[str, SequenceField],
    ) -> Optional[SequenceField]:
        if not prefix:
            return locals_.get(name)
        owner = ctx.resolve_owner(prefix.rstrip(".").split(".")[-1], aliases)
        if owner is None:
            return None
        return ctx.sequence_for(owner, name)

    def _lower_locals(self, body: str, locals_: Dict[str, SequenceField]) -> str:
        for m in SourceText(body).finditer(_LOWERED_LOCAL_RE):
            locals_[m.group(1)] = SequenceField(None, m.group(1), int(m.group(2)), "usize")

        def lower(m: Match) -> str:
            name, element, explicit = m.group(1), m.group(2), m.group(3)
            if explicit:
                capacity = int(explicit)
            elif element:
                capacity = default_capacity(parse_type(element))
            else:
                capacity = FALLBACK_CAPACITY
            locals_[name] = SequenceField(None, name, capacity, "usize")

            annotation = f": [{element}; {capacity}]" if element else ""
            return (
                f"let mut {name}{annotation} = [Default::default(); {capacity}]; "
                f"let mut {name}_len: usize = 0;"
            )

        return sub_code(_LOCAL_VEC_RE, lower, body)

    def _lower_operations(
        self,
        body: str,
        ctx: RewriteContext,
        aliases: Dict[str, str],
        locals_: Dict[str, SequenceField],
    ) -> str:
        matches = list(SourceText(body).finditer(_SEQUENCE_OP_RE))

        # Right to left, so nested operations are lowered before the ones
        # containing them and earlier offsets stay valid
        for m in reversed(matches):
            prefix = re.sub(r"\s+", "", m.group(1))
            name, op = m.group(2), m.group(3)
            sequence = self._resolve(prefix, name, ctx, aliases, locals_)
            if sequence is None:
                continue

            source = SourceText(body)
            open_index = m.end()
            while body[open_index].isspace():
                open_index += 1
            close = source.matching_close(open_index)
            if close is None:
                continue

            end = close + 1
            args = body[open_index + 1:close].strip()
            if op in ("push", "extend_from_slice"):
                j = end
                while j < len(body) and body[j].isspace():
                    j += 1
                if j < len(body) and body[j] == "?":
                    end = j + 1
                    j += 1
                    while j < len(body) and body[j].isspace():
                        j += 1
                # A lowered unit-valued operation is a block statement of its own
                if j < len(body) and body[j] == ";" and self._starts_statement(body, m.start()):
                    end = j + 1

            replacement = self._lower(prefix, sequence, op, args)
            if replacement is None:
                continue
            body = body[:m.start()] + replacement + body[end:]
        return body

    def _starts_statement(self, body: str, index: int) -> bool:
        before = body[:index].rstrip()
        return not before or before[-1] in ";{}"

    def _lower(self, prefix: str, sequence: SequenceField, op: str, args: str) -> Optional[str]:
        target = f"{prefix}{sequence.name}"
        length = f"{prefix}{sequence.length_name}"
        live = f"{length} as usize"
        capacity = sequence.capacity

        if op in ("len", "is_empty", "clear") and args:
            return None
        if op in ("push", "remove", "extend_from_slice") and not args:
            return None

        if op == "push":
            return (
                f"{{ if {live} >= {capacity} {{ return Err({OVERFLOW_ERROR}); }} "
                f"{target}[{live}] = {args}; {length} += 1; }}"
            )
        if op == "len":
            return f"({live})"
        if op == "is_empty":
            return f"({length} == 0)"
        if op == "clear":
            return f"{length} = 0"
        if op == "remove":
            return (
                f"{{ let remove_at = {_as_usize(args)}; "
                f"if remove_at >= {live} {{ return Err({OVERFLOW_ERROR}); }} "
                f"let removed = {target}[remove_at]; "
                f"for shift_at in remove_at..{live} - 1 {{ {target}[shift_at] = {target}[shift_at + 1]; }} "
                f"{length} -= 1; removed }}"
            )
        if op == "extend_from_slice":
            return (
                f"{{ let extend_src = {args}; let extend_at = {live}; "
                f"if extend_at + extend_src.len() > {capacity} {{ return Err({OVERFLOW_ERROR}); }} "
                f"{target}[extend_at..extend_at + extend_src.len()].copy_from_slice(extend_src); "
                f"{length} += extend_src.len() as {sequence.counter_type}; }}"
            )
        return f"{target}[..{live}].{op}({args})"

    def _lower_loops(self, body, ctx, aliases, locals_) -> str:
        def lower(m: Match) -> str:
            prefix = re.sub(r"\s+", "", m.group(3))
            sequence = self._resolve(prefix, m.group(4), ctx, aliases, locals_)
            if sequence is None:
                return m.group(0)
            mutability = "mut " if m.group(2) else ""
            return (
                f"for {m.group(1)} in &{mutability}{prefix}{sequence.name}"
                f"[..{prefix}{sequence.length_name} as usize] "
            )

        return sub_code(_FOR_RE, lower, body)

    def _lower_resets(self, body, ctx, aliases, locals_) -> str:
        def lower(m: Match) -> str:
            prefix = re.sub(r"\s+", "", m.group(1))
            sequence = self._resolve(prefix, m.group(2), ctx, aliases, locals_)
            if sequence is None:
                return m.group(0)
            return f"{prefix}{sequence.length_name} = 0"

        return sub_code(_RESET_RE, lower, body)

    def _slice_local_refs(self, body: str, locals_: Dict[str, SequenceField]) -> str:
        for name in sorted(locals_, key=len, reverse=True):
            pattern = re.compile(rf"(?<![\w\.])&\s*(mut\s+)?{re.escape(name)}\b(?!\s*[\.\[\(])")
            body = sub_code(
                pattern,
                lambda m, n=name: f"&{m.group(1) or ''}{n}[..{n}_len]",
                body,
            )
        return body

    def _mark_heap_idioms(self, body: str) -> str:
        spans = []
        for head in _HEAP_CALL_HEADS:
            spans.extend((c.start, c.end) for c in find_calls(body, head, consume_suffix=False))
        spans.extend((m.start(), m.end()) for m in SourceText(body).finditer(_HEAP_METHOD_RE))

        # Diagnostics are handled by their own pass
        logging_spans = [
            (c.start, c.end) for c in find_calls(body, _LOG_MACRO_RE, consume_suffix=False)
        ]

        chosen: List[tuple] = []
        for start, end in sorted(spans):
            if any(s <= start < e for s, e in logging_spans):
                continue
            if chosen and start < chosen[-1][1]:
                continue
            chosen.append((start, end))

        for start, end in reversed(chosen):
            fragment = body[start:end]
            logger.debug("Heap idiom without fixed-capacity form: %s", fragment)
            body = body[:start] + self.unresolved(fragment) + body[end:]
        return body


register_pass(BoundedSequencePass())
