"""
Validation synthesis.

Builds the ordered guard list that replaces Anchor's implicit account
checks. Validations are emitted as sequential guards, so the order
produced here is part of the output contract:

    1. IsSigner for every signer-kind account
    2. IsWritable for every `mut` account
    3. PdaCheck for every account with seeds
    4. Lowered constraints (`constraint`, `has_one`, `address`)

Each group follows account declaration order.
"""

import logging
import re
from typing import List, Optional, Sequence

from ..analysis.models import AccountDeclaration, AccountKind, ConstraintKind
from ..matchers import RECEIVER_START
from ..rewrite.accounts import dereference_context
from ..rewrite.assertions import dereference_key_comparisons, error_value, guard
from ..rewrite.context import RewriteContext
from ..rewrite.state import route_state_fields
from .models import PdaMode, TargetAccount, Validation

logger = logging.getLogger(__name__)

DEFAULT_CONSTRAINT_ERROR = "ProgramError::Custom(0)"
DEFAULT_HAS_ONE_ERROR = "ProgramError::InvalidAccountData"

# Constraint shapes with no validation variant
GAP_CONSTRAINTS = (
    ConstraintKind.CLOSE,
    ConstraintKind.MINT_DECIMALS,
    ConstraintKind.MINT_AUTHORITY,
    ConstraintKind.TOKEN_MINT,
    ConstraintKind.TOKEN_AUTHORITY,
)


def _self_reference_re(name: str) -> re.Pattern:
    return re.compile(rf"{RECEIVER_START}{re.escape(name)}\s*\.\s*\w")


def is_self_referential(name: str, seeds: Sequence[str], bump: Optional[str]) -> bool:
    """True when the seeds or bump read the account's own (not yet verified) data."""
    pattern = _self_reference_re(name)
    if any(pattern.search(seed) for seed in seeds):
        return True
    return bump is not None and pattern.search(bump) is not None


def select_pda_mode(is_init: bool, self_referential: bool, bump: Optional[str]) -> PdaMode:
    """
    Pick how a PDA check establishes the expected address.

    A supplied bump is only trusted when the account already exists and the
    bump does not come from the account's own data.
    """
    if is_init or self_referential or bump is None:
        return PdaMode.DERIVE_AND_COMPARE
    return PdaMode.RECONSTRUCT_FROM_BUMP


class ValidationBuilder:
    """
    Generates the validation list for one instruction's accounts.

    Usage:
        builder = ValidationBuilder()
        validations = builder.build(declarations, accounts, ctx)
    """

    def build(
        self,
        declarations: Sequence[AccountDeclaration],
        accounts: Sequence[TargetAccount],
        ctx: RewriteContext,
    ) -> List[Validation]:
        pairs = list(zip(declarations, accounts))

        validations: List[Validation] = []
        validations.extend(self._signer_checks(pairs))
        validations.extend(self._writable_checks(pairs))
        validations.extend(self._pda_checks(pairs))
        validations.extend(self._constraint_checks(pairs, ctx))
        return validations

    def _signer_checks(self, pairs) -> List[Validation]:
        return [
            Validation.is_signer(account.index, account.name)
            for decl, account in pairs
            if decl.effective_kind == AccountKind.SIGNER
        ]

    def _writable_checks(self, pairs) -> List[Validation]:
        return [
            Validation.is_writable(account.index, account.name)
            for decl, account in pairs
            if decl.has(ConstraintKind.MUT)
        ]

    def _pda_checks(self, pairs) -> List[Validation]:
        checks = []
        for decl, account in pairs:
            seeds = decl.find(ConstraintKind.SEEDS)
            if seeds is None:
                continue

            bump_constraint = decl.find(ConstraintKind.BUMP)
            bump = bump_constraint.value if bump_constraint else None
            mode = select_pda_mode(
                account.is_init,
                is_self_referential(decl.name, seeds.seeds, bump),
                bump,
            )
            checks.append(Validation.pda_check(account.index, account.name, seeds.seeds, bump, mode))
        return checks

    def _constraint_checks(self, pairs, ctx: RewriteContext) -> List[Validation]:
        checks = []
        for decl, account in pairs:
            for constraint in decl.constraints:
                if constraint.kind == ConstraintKind.CONSTRAINT:
                    condition = self.lower_expression(constraint.value or "", ctx)
                    code = guard(
                        f"!({condition})",
                        error_value(constraint.error, DEFAULT_CONSTRAINT_ERROR),
                    )
                    checks.append(Validation.custom(code, account.index, account.name))

                elif constraint.kind == ConstraintKind.HAS_ONE:
                    target = constraint.value
                    state = ctx.state_for(account.name)
                    stored = f"{state.handle}.{target}" if state else f"{account.name}.{target}"
                    code = guard(
                        f"{stored} != *{target}.key()",
                        error_value(constraint.error, DEFAULT_HAS_ONE_ERROR),
                    )
                    checks.append(Validation.custom(code, account.index, account.name))

                elif constraint.kind == ConstraintKind.ADDRESS:
                    checks.append(Validation.key_equals(account.index, account.name, constraint.value))

                elif constraint.kind in GAP_CONSTRAINTS:
                    logger.debug(
                        "%s: no validation for %s constraint on %s",
                        ctx.instruction, constraint.kind.value, account.name,
                    )
        return checks

    def lower_expression(self, expr: str, ctx: RewriteContext) -> str:
        """Rewrite a constraint expression into target form."""
        expr = " ".join(expr.split())
        expr = dereference_context(expr)
        expr = route_state_fields(expr, ctx)
        return dereference_key_comparisons(expr)
