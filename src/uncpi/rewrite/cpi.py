"""
CPI call rewriting.

Anchor wraps cross-program calls in a `CpiContext` holding the program, an
accounts struct and optional signer seeds. The target runtime instead builds
the instruction struct directly and invokes it, signing with explicit seeds
when a program-derived account must authorize the call.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..analysis.models import AccountKind
from ..matchers import (
    CallMatch,
    LetBinding,
    RewriteDirective,
    StructLiteral,
    SourceText,
    apply_directives,
    collapse_whitespace,
    find_calls,
    find_let_binding,
    parse_struct_literal,
    split_top_level,
    sub_code,
)
from .base import RewritePass, register_pass
from .context import RewriteContext
from .state import route_state_fields

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CpiTarget:
    """A recognized Anchor CPI helper and its Pinocchio counterpart."""
    head: re.Pattern
    operation: str
    struct_path: str
    # (target field, source field) pairs
    roles: Tuple[Tuple[str, str], ...]
    amount_field: str
    signer_role: str
    is_system: bool = False


CPI_TARGETS = [
    CpiTarget(
        head=re.compile(r"(?:\b\w+\s*::\s*)*\btoken\s*::\s*transfer\b"),
        operation="transfer",
        struct_path="pinocchio_token::instructions::Transfer",
        roles=(("from", "from"), ("to", "to"), ("authority", "authority")),
        amount_field="amount",
        signer_role="authority",
    ),
    CpiTarget(
        head=re.compile(r"(?:\b\w+\s*::\s*)*\btoken\s*::\s*mint_to\b"),
        operation="mint_to",
        struct_path="pinocchio_token::instructions::MintTo",
        roles=(("mint", "mint"), ("account", "to"), ("mint_authority", "authority")),
        amount_field="amount",
        signer_role="mint_authority",
    ),
    CpiTarget(
        head=re.compile(r"(?:\b\w+\s*::\s*)*\btoken\s*::\s*burn\b"),
        operation="burn",
        struct_path="pinocchio_token::instructions::Burn",
        roles=(("account", "from"), ("mint", "mint"), ("authority", "authority")),
        amount_field="amount",
        signer_role="authority",
    ),
    CpiTarget(
        head=re.compile(r"(?:\b\w+\s*::\s*)*\bsystem_program\s*::\s*transfer\b"),
        operation="system_transfer",
        struct_path="pinocchio_system::instructions::Transfer",
        roles=(("from", "from"), ("to", "to")),
        amount_field="lamports",
        signer_role="from",
        is_system=True,
    ),
]

_CPI_CONTEXT_HEAD = re.compile(r"(?:\b\w+\s*::\s*)*\bCpiContext\s*::\s*(?:new_with_signer|new)\b")
_WITH_SIGNER_RE = re.compile(r"\.\s*with_signer\s*\((.*)\)", re.DOTALL)
_NESTED_SEEDS_RE = re.compile(r"&\s*\[\s*&\s*\[(.*)\]\s*(?:\[\s*\.\.\s*\])?\s*\]", re.DOTALL)
_SEED_LIST_REF_RE = re.compile(r"&\s*\[\s*&?\s*(\w+)\s*(?:\[\s*\.\.\s*\])?\s*\]")
_ARRAY_RE = re.compile(r"&?\s*\[(.*)\]", re.DOTALL)
_BYTE_SEED_RE = re.compile(r"&\s*\[(?!\s*\.\.)(.+)\]", re.DOTALL)
_IDENT_RE = re.compile(r"\w+")

_LAMPORT_RULES = [
    (
        re.compile(r"(\*\*?\s*)?((?:\b\w+\s*\.\s*)*\b\w+)\s*\.\s*lamports\s*\.\s*borrow_mut\s*\(\s*\)"),
        lambda m: ("*" if m.group(1) else "") + f"{m.group(2)}.try_borrow_mut_lamports()?",
    ),
    (
        re.compile(r"(\*\*?\s*)?((?:\b\w+\s*\.\s*)*\b\w+)\s*\.\s*lamports\s*\.\s*borrow\s*\(\s*\)"),
        lambda m: ("*" if m.group(1) else "") + f"{m.group(2)}.try_borrow_lamports()?",
    ),
    (
        re.compile(r"\*\*\s*((?:\b\w+\s*\.\s*)*\b\w+\s*\.\s*try_borrow(?:_mut)?_lamports)\b"),
        r"*\1",
    ),
]


@dataclass(frozen=True)
class CpiContextShape:
    """The parts of a `CpiContext::new[_with_signer](...)` expression."""
    program: str
    accounts: StructLiteral
    signer: Optional[str] = None


def parse_cpi_context(expr: str) -> Optional[CpiContextShape]:
    """Parse a CpiContext constructor, including a trailing `.with_signer(..)`."""
    expr = expr.strip()
    calls = find_calls(expr, _CPI_CONTEXT_HEAD, consume_suffix=False)
    if not calls or calls[0].start != 0:
        return None

    call = calls[0]
    args = call.args
    signer = None
    if "new_with_signer" in call.head:
        if len(args) != 3:
            return None
        signer = args[2]
    elif len(args) != 2:
        return None

    rest = expr[call.end:].strip()
    if rest:
        chained = _WITH_SIGNER_RE.fullmatch(rest)
        if not chained:
            return None
        signer = chained.group(1).strip()

    accounts = parse_struct_literal(args[1])
    if accounts is None:
        return None
    return CpiContextShape(program=args[0], accounts=accounts, signer=signer)


def resolve_signer_seeds(
    expr: str,
    body: str,
    depth: int = 0,
    used: Optional[List[LetBinding]] = None,
) -> Optional[List[str]]:
    """
    Resolve a signer-seeds expression to its list of seed expressions.

    Handles inline `&[&[a, b, &[bump]]]`, `&[&seeds[..]]` where `seeds` is
    a local array, and a local bound to either form. Bindings read along
    the way are appended to `used`.
    """
    if depth > 3:
        return None
    expr = collapse_whitespace(expr)

    nested = _NESTED_SEEDS_RE.fullmatch(expr)
    if nested:
        return [s for s in (collapse_whitespace(x) for x in split_top_level(nested.group(1))) if s]

    ref = _SEED_LIST_REF_RE.fullmatch(expr)
    if ref:
        binding = find_let_binding(body, ref.group(1))
        if binding is None:
            return None
        array = _ARRAY_RE.fullmatch(binding.value)
        if array is None:
            return None
        if used is not None:
            used.append(binding)
        return [collapse_whitespace(x) for x in split_top_level(array.group(1))]

    if _IDENT_RE.fullmatch(expr):
        binding = find_let_binding(body, expr)
        if binding is not None:
            if used is not None:
                used.append(binding)
            return resolve_signer_seeds(binding.value, body, depth + 1, used)
    return None


def dead_bindings(
    body: str,
    bindings: List[LetBinding],
    spans: List[Tuple[int, int]],
) -> List[Tuple[int, int]]:
    """
    Spans of the bindings nothing else reads once `spans` are rewritten.

    Bindings are checked in order, each dropped one joining `spans`, so a
    chain such as `let seeds = ..; let signer = &[&seeds[..]];` goes whole.
    """
    source = SourceText(body)
    excluded = list(spans)
    dropped = []
    for binding in bindings:
        span = (binding.start, binding.end)
        if span in excluded:
            continue
        pattern = re.compile(rf"\b{re.escape(binding.name)}\b")
        readers = [
            m.start() for m in source.finditer(pattern)
            if not any(start <= m.start() < end for start, end in excluded + [span])
        ]
        if not readers:
            excluded.append(span)
            dropped.append(span)
    return dropped


def seed_reference(seed: str) -> str:
    """Express one seed as a byte slice."""
    seed = collapse_whitespace(seed)
    if seed.startswith(("&", 'b"')) or seed.endswith((".as_ref()", ".as_bytes()")):
        return seed
    return f"{seed}.as_ref()"


def _route_if_bound(expr: str, body: str, ctx: RewriteContext) -> str:
    """Route state fields in `expr` only through handles the body already binds."""
    routed = route_state_fields(expr, ctx)
    source = SourceText(body)
    for binding in ctx.states:
        if binding.handle in routed and not source.contains(
            re.compile(rf"\blet\s+(?:mut\s+)?{re.escape(binding.handle)}\b")
        ):
            return expr
    return routed


def _account_ref(expr: str) -> str:
    expr = collapse_whitespace(expr)
    expr = re.sub(r"\s*\.\s*(?:to_account_info|clone)\s*\(\s*\)$", "", expr)
    return expr.lstrip("&").strip()


class CpiPass(RewritePass):
    """Rewrites Anchor CPI helpers into Pinocchio instruction invocations."""

    @property
    def name(self) -> str:
        return "cpi"

    def apply(self, body: str, ctx: RewriteContext) -> str:
        body = self._rewrite_lamports(body)

        calls = []
        for target in CPI_TARGETS:
            calls.extend((call, target) for call in find_calls(body, target.head))
        calls.sort(key=lambda item: item[0].start)

        directives = []
        dropped = set()
        signer_count = 0
        for call, target in calls:
            replacement, spans, signed = self._rewrite_call(body, call, target, ctx, signer_count)
            if signed:
                signer_count += 1
            directives.append(RewriteDirective(call.start, call.end, replacement))
            dropped.update(spans)

        for start, end in sorted(dropped):
            directives.append(RewriteDirective(start, end, ""))

        return apply_directives(body, directives)

    def _rewrite_lamports(self, body: str) -> str:
        for pattern, replacement in _LAMPORT_RULES:
            body = sub_code(pattern, replacement, body)
        return body

    def _rewrite_call(
        self,
        body: str,
        call: CallMatch,
        target: CpiTarget,
        ctx: RewriteContext,
        signer_index: int,
    ) -> Tuple[str, List[Tuple[int, int]], bool]:
        original = body[call.start:call.end]
        args = call.args
        if len(args) != 2:
            return self.unresolved(original), [], False

        context_expr, amount = args
        amount = collapse_whitespace(amount)
        shape = parse_cpi_context(context_expr)
        spans = []
        if shape is None and _IDENT_RE.fullmatch(context_expr.strip()):
            binding = find_let_binding(body, context_expr.strip())
            if binding is not None:
                shape = parse_cpi_context(binding.value)
                spans.append((binding.start, binding.end))
        if shape is None:
            logger.debug("%s: unrecognized CPI context in %s", ctx.instruction, original)
            return self.unresolved(original), [], False

        accounts = {}
        for target_field, source_field in target.roles:
            value = shape.accounts.fields.get(source_field)
            if value is None:
                return self.unresolved(original), [], False
            accounts[target_field] = _account_ref(value)

        signer_account = accounts[target.signer_role]
        pda = ctx.pda_for(signer_account)
        suffix = call.suffix

        if target.is_system and ctx.config.inline_cpi and self._program_owned(signer_account, ctx):
            return self._inline_lamports(accounts["from"], accounts["to"], amount), spans, False

        fields = ", ".join(f"{name}: {value}" for name, value in accounts.items())
        instruction = f"{target.struct_path} {{ {fields}, {target.amount_field}: {amount} }}"

        if shape.signer is None and pda is None:
            return f"{instruction}.invoke(){suffix}", spans, False

        used: List[LetBinding] = []
        seeds = resolve_signer_seeds(shape.signer, body, used=used) if shape.signer else None
        bump_seed = None
        if seeds is None and pda is not None:
            seeds = [_route_if_bound(s, body, ctx) for s in pda.seeds]
            bump_seed = self._bump_expression(signer_account, pda.bump_source, body, ctx)
        if seeds is None:
            logger.debug("%s: unresolved signer seeds in %s", ctx.instruction, original)
            return self.unresolved(original), [], False

        statements = []
        refs = []
        for k, seed in enumerate(seeds):
            byte_seed = _BYTE_SEED_RE.fullmatch(seed)
            if byte_seed:
                # Hoisted so the array outlives the seed list borrowing it
                local = f"cpi_seed_{signer_index}_{k}"
                statements.append(f"let {local} = [{byte_seed.group(1).strip()}];")
                refs.append(f"Seed::from(&{local})")
            else:
                refs.append(f"Seed::from({seed_reference(seed)})")
        if bump_seed is not None:
            statements.append(f"let cpi_bump_{signer_index} = [{bump_seed}];")
            refs.append(f"Seed::from(&cpi_bump_{signer_index})")

        seeds_name = f"cpi_seeds_{signer_index}"
        signer_name = f"cpi_signer_{signer_index}"
        statements.append(f"let {seeds_name} = [{', '.join(refs)}];")
        statements.append(f"let {signer_name} = Signer::from(&{seeds_name});")
        statements.append(f"{instruction}.invoke_signed(&[{signer_name}]){suffix}")
        # Seed bindings read only by this call go with it
        spans.extend(dead_bindings(body, used, spans + [(call.start, call.end)]))
        return " ".join(statements), spans, True

    def _program_owned(self, name: str, ctx: RewriteContext) -> bool:
        account = ctx.get_account(name)
        if account is None or account.is_signer:
            return False
        return account.is_pda and account.kind in (AccountKind.ACCOUNT, AccountKind.UNCHECKED)

    def _inline_lamports(self, source: str, destination: str, amount: str) -> str:
        return (
            f"{{ let lamports = {amount}; "
            f"*{source}.try_borrow_mut_lamports()? -= lamports; "
            f"*{destination}.try_borrow_mut_lamports()? += lamports; }}"
        )

    def _bump_expression(self, account: str, source: Optional[str], body: str, ctx: RewriteContext) -> str:
        if source:
            routed = _route_if_bound(source, body, ctx)
            if routed != source or ctx.state_for(source.split(".")[0].strip()) is None:
                return routed
        return f"{account}_bump"


register_pass(CpiPass())
