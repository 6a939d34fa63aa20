"""
Data models for the source-form (Anchor) program and the analysis fact set.

The source-form entities are produced once by the upstream parser and are
never mutated afterwards, so every model here is a frozen dataclass holding
tuples rather than lists.
"""

from dataclasses import dataclass
from typing import Tuple, Optional, Dict
from enum import Enum


class AccountKind(Enum):
    """Declared kind of an account in an Anchor accounts struct."""
    SIGNER = "signer"                  # Signer<'info>
    ACCOUNT = "account"                # Account<'info, T>
    PROGRAM = "program"                # Program<'info, T>
    TOKEN_ACCOUNT = "token_account"    # Account<'info, TokenAccount>
    MINT = "mint"                      # Account<'info, Mint>
    WRAPPED = "wrapped"                # Box<...>
    SYSTEM_ACCOUNT = "system_account"  # SystemAccount<'info>
    UNCHECKED = "unchecked"            # UncheckedAccount<'info>
    SYSVAR = "sysvar"                  # Sysvar<'info, T>


class ConstraintKind(Enum):
    """Variants of an `#[account(...)]` constraint."""
    MUT = "mut"
    INIT = "init"
    INIT_IF_NEEDED = "init_if_needed"
    SEEDS = "seeds"
    BUMP = "bump"
    TOKEN_MINT = "token_mint"
    TOKEN_AUTHORITY = "token_authority"
    MINT_DECIMALS = "mint_decimals"
    MINT_AUTHORITY = "mint_authority"
    CONSTRAINT = "constraint"
    HAS_ONE = "has_one"
    ADDRESS = "address"
    CLOSE = "close"


@dataclass(frozen=True)
class Constraint:
    """A single account constraint.

    Which attributes are meaningful depends on `kind`:
    INIT/INIT_IF_NEEDED use `payer` and `space`, SEEDS uses `seeds`,
    BUMP uses `value` (None means canonical bump), CONSTRAINT uses `value`
    as the boolean expression, HAS_ONE uses `value` as the field name, and
    the remaining single-target variants keep their target in `value`.
    """
    kind: ConstraintKind
    value: Optional[str] = None
    payer: Optional[str] = None
    space: Optional[str] = None
    seeds: Tuple[str, ...] = ()
    error: Optional[str] = None

    @classmethod
    def mut(cls) -> "Constraint":
        return cls(ConstraintKind.MUT)

    @classmethod
    def init(cls, payer: str, space: str = "", if_needed: bool = False) -> "Constraint":
        kind = ConstraintKind.INIT_IF_NEEDED if if_needed else ConstraintKind.INIT
        return cls(kind, payer=payer, space=space)

    @classmethod
    def seeds_of(cls, *seeds: str) -> "Constraint":
        return cls(ConstraintKind.SEEDS, seeds=tuple(seeds))

    @classmethod
    def bump(cls, source: Optional[str] = None) -> "Constraint":
        return cls(ConstraintKind.BUMP, value=source)

    @classmethod
    def custom(cls, expr: str, error: Optional[str] = None) -> "Constraint":
        return cls(ConstraintKind.CONSTRAINT, value=expr, error=error)

    @classmethod
    def has_one(cls, field_name: str, error: Optional[str] = None) -> "Constraint":
        return cls(ConstraintKind.HAS_ONE, value=field_name, error=error)

    @property
    def is_init(self) -> bool:
        return self.kind in (ConstraintKind.INIT, ConstraintKind.INIT_IF_NEEDED)


@dataclass(frozen=True)
class AccountDeclaration:
    """An account field of an accounts struct."""
    name: str
    kind: AccountKind
    inner: Optional[str] = None  # Record type for ACCOUNT, program name for PROGRAM
    wrapped: Optional[AccountKind] = None  # Kind inside Box<...>
    constraints: Tuple[Constraint, ...] = ()

    @property
    def effective_kind(self) -> AccountKind:
        """The kind with any Box<...> wrapper removed."""
        if self.kind == AccountKind.WRAPPED and self.wrapped is not None:
            return self.wrapped
        return self.kind

    def find(self, kind: ConstraintKind) -> Optional[Constraint]:
        """First constraint of the given kind, if any."""
        for constraint in self.constraints:
            if constraint.kind == kind:
                return constraint
        return None

    def has(self, kind: ConstraintKind) -> bool:
        return self.find(kind) is not None


@dataclass(frozen=True)
class InstructionArg:
    """A typed instruction argument."""
    name: str
    ty: str


@dataclass(frozen=True)
class AccountGroup:
    """An `#[derive(Accounts)]` struct."""
    name: str
    accounts: Tuple[AccountDeclaration, ...] = ()
    instruction_args: Tuple[InstructionArg, ...] = ()


@dataclass(frozen=True)
class Instruction:
    """A handler function in the `#[program]` module."""
    name: str
    accounts_group: str
    args: Tuple[InstructionArg, ...] = ()
    body: str = ""


@dataclass(frozen=True)
class StateField:
    """A field of an `#[account]` state struct."""
    name: str
    ty: str
    max_len: Optional[int] = None


@dataclass(frozen=True)
class StateRecord:
    """An `#[account]` state struct."""
    name: str
    fields: Tuple[StateField, ...] = ()
    has_init_space: bool = False


@dataclass(frozen=True)
class ErrorDef:
    """A variant of the program's `#[error_code]` enum."""
    name: str
    msg: str = ""
    code: Optional[int] = None


@dataclass(frozen=True)
class Program:
    """Complete source-form Anchor program."""
    name: str
    program_id: Optional[str] = None
    instructions: Tuple[Instruction, ...] = ()
    account_groups: Tuple[AccountGroup, ...] = ()
    state_records: Tuple[StateRecord, ...] = ()
    errors: Tuple[ErrorDef, ...] = ()

    def get_group(self, name: str) -> Optional[AccountGroup]:
        """Get an accounts struct by name."""
        for group in self.account_groups:
            if group.name == name:
                return group
        return None

    def get_record(self, name: str) -> Optional[StateRecord]:
        """Get a state struct by name."""
        for record in self.state_records:
            if record.name == name:
                return record
        return None


# ============================================================================
# Fact set
# ============================================================================


@dataclass(frozen=True)
class PdaInfo:
    """A program-derived account and how its address is derived."""
    account_name: str
    seeds: Tuple[str, ...]
    bump_source: Optional[str] = None  # None = canonical bump
    program_id: str = "program_id"
    group: Optional[str] = None  # Declaring accounts struct


@dataclass(frozen=True)
class CpiCallInfo:
    """A recognized cross-program call in an instruction body."""
    instruction: str
    target_program: str
    program_address: str
    operation: str
    account_roles: Tuple[str, ...]


@dataclass(frozen=True)
class AccountSizeInfo:
    """Byte size of a state record as computed by the layout engine."""
    record_name: str
    size: int
    field_sizes: Tuple[Tuple[str, int], ...]
    assumptions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FactSet:
    """Everything the analyzer learned about a program.

    Built once before transformation starts and shared read-only by all
    instruction workers.
    """
    pdas: Tuple[PdaInfo, ...] = ()
    cpi_calls: Tuple[CpiCallInfo, ...] = ()
    account_sizes: Tuple[AccountSizeInfo, ...] = ()

    def pda_for(self, account_name: str, group: Optional[str] = None) -> Optional[PdaInfo]:
        """PdaInfo for an account, preferring the one declared in `group`."""
        fallback = None
        for pda in self.pdas:
            if pda.account_name != account_name:
                continue
            if group is None or pda.group == group:
                return pda
            if fallback is None and pda.group is None:
                fallback = pda
        return fallback

    def size_for(self, record_name: str) -> Optional[AccountSizeInfo]:
        for size in self.account_sizes:
            if size.record_name == record_name:
                return size
        return None

    def calls_in(self, instruction: str) -> Tuple[CpiCallInfo, ...]:
        return tuple(c for c in self.cpi_calls if c.instruction == instruction)

    def summary(self) -> Dict[str, int]:
        return {
            "pdas": len(self.pdas),
            "cpi_calls": len(self.cpi_calls),
            "records": len(self.account_sizes),
        }
