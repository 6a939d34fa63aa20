"""
Data models for the target-form (Pinocchio) program.

Target entities are built exactly once per instruction or record by the
transformation engine and handed to the downstream emitter; nothing mutates
them afterwards.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum

from ..analysis.models import AccountKind, InstructionArg
from ..config import TransformConfig
from ..errors import UnresolvedPattern


class ValidationKind(Enum):
    """Kinds of runtime checks emitted ahead of an instruction body."""
    IS_SIGNER = "is_signer"
    IS_WRITABLE = "is_writable"
    PDA_CHECK = "pda_check"
    OWNER_CHECK = "owner_check"
    KEY_EQUALS = "key_equals"
    CUSTOM = "custom"


class PdaMode(Enum):
    """How a PDA check establishes the expected address."""
    DERIVE_AND_COMPARE = "derive_and_compare"      # find the canonical bump, then compare
    RECONSTRUCT_FROM_BUMP = "reconstruct_from_bump"  # rebuild with a stored bump


@dataclass(frozen=True)
class Validation:
    """A single check. Attributes beyond `kind` depend on the kind."""
    kind: ValidationKind
    account_index: Optional[int] = None
    account: Optional[str] = None
    seeds: Tuple[str, ...] = ()
    bump: Optional[str] = None
    mode: Optional[PdaMode] = None
    owner: Optional[str] = None
    expected: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def is_signer(cls, index: int, account: str) -> "Validation":
        return cls(ValidationKind.IS_SIGNER, account_index=index, account=account)

    @classmethod
    def is_writable(cls, index: int, account: str) -> "Validation":
        return cls(ValidationKind.IS_WRITABLE, account_index=index, account=account)

    @classmethod
    def pda_check(
        cls,
        index: int,
        account: str,
        seeds: Tuple[str, ...],
        bump: Optional[str],
        mode: PdaMode,
    ) -> "Validation":
        return cls(
            ValidationKind.PDA_CHECK,
            account_index=index,
            account=account,
            seeds=tuple(seeds),
            bump=bump,
            mode=mode,
        )

    @classmethod
    def owner_check(cls, index: int, account: str, owner: str) -> "Validation":
        return cls(ValidationKind.OWNER_CHECK, account_index=index, account=account, owner=owner)

    @classmethod
    def key_equals(cls, index: int, account: str, expected: str) -> "Validation":
        return cls(ValidationKind.KEY_EQUALS, account_index=index, account=account, expected=expected)

    @classmethod
    def custom(cls, code: str, index: Optional[int] = None, account: Optional[str] = None) -> "Validation":
        return cls(ValidationKind.CUSTOM, account_index=index, account=account, code=code)

    def describe(self) -> str:
        """One-line human readable form."""
        if self.kind == ValidationKind.PDA_CHECK:
            return f"pda_check({self.account}, {self.mode.value})"
        if self.kind == ValidationKind.OWNER_CHECK:
            return f"owner_check({self.account} == {self.owner})"
        if self.kind == ValidationKind.KEY_EQUALS:
            return f"key_equals({self.account} == {self.expected})"
        if self.kind == ValidationKind.CUSTOM:
            return "custom(" + " ".join(self.code.split()) + ")"
        return f"{self.kind.value}({self.account})"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value}
        if self.account_index is not None:
            data["account_index"] = self.account_index
        if self.kind == ValidationKind.PDA_CHECK:
            data.update(seeds=list(self.seeds), bump=self.bump, mode=self.mode.value)
        elif self.kind == ValidationKind.OWNER_CHECK:
            data["owner"] = self.owner
        elif self.kind == ValidationKind.KEY_EQUALS:
            data["expected"] = self.expected
        elif self.kind == ValidationKind.CUSTOM:
            data["code"] = self.code
        return data


@dataclass(frozen=True)
class TargetAccount:
    """An account slot of a target instruction."""
    name: str
    index: int
    kind: AccountKind
    is_signer: bool = False
    is_writable: bool = False
    is_pda: bool = False
    seeds: Tuple[str, ...] = ()
    bump: Optional[str] = None
    is_init: bool = False
    payer: Optional[str] = None
    token_mint: Optional[str] = None
    token_authority: Optional[str] = None
    state_type: Optional[str] = None  # Record type held in the account's data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "index": self.index,
            "isSigner": self.is_signer,
            "isWritable": self.is_writable,
            "isPda": self.is_pda,
            "seeds": list(self.seeds) if self.is_pda else None,
            "isInit": self.is_init,
            "payer": self.payer,
            "tokenMint": self.token_mint,
            "tokenAuthority": self.token_authority,
            "stateType": self.state_type,
        }


@dataclass(frozen=True)
class TargetField:
    """A field of a target record at a fixed offset."""
    name: str
    ty: str
    size: int
    offset: int
    bound: Optional[int] = None


@dataclass(frozen=True)
class TargetStateRecord:
    """A fixed-layout account record."""
    name: str
    size: int
    fields: Tuple[TargetField, ...] = ()
    assumptions: Tuple[str, ...] = ()

    def get_field(self, name: str) -> Optional[TargetField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass(frozen=True)
class TargetError:
    """A program error with its numeric code."""
    name: str
    code: int
    msg: str = ""


@dataclass(frozen=True)
class TargetInstruction:
    """A fully transformed instruction."""
    name: str
    discriminator: bytes
    accounts: Tuple[TargetAccount, ...] = ()
    args: Tuple[InstructionArg, ...] = ()
    validations: Tuple[Validation, ...] = ()
    body: str = ""
    issues: Tuple[UnresolvedPattern, ...] = ()
    failed: bool = False

    def get_account(self, name: str) -> Optional[TargetAccount]:
        for account in self.accounts:
            if account.name == name:
                return account
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "discriminator": list(self.discriminator),
            "accounts": [a.to_dict() for a in self.accounts],
            "args": [{"name": a.name, "type": a.ty} for a in self.args],
            "validations": [v.to_dict() for v in self.validations],
            "body": self.body,
            "issues": [{"pass": i.pass_name, "fragment": i.fragment} for i in self.issues],
            "failed": self.failed,
        }


@dataclass(frozen=True)
class TargetProgram:
    """Complete target-form program."""
    name: str
    program_id: Optional[str]
    config: TransformConfig
    instructions: Tuple[TargetInstruction, ...] = ()
    records: Tuple[TargetStateRecord, ...] = ()
    errors: Tuple[TargetError, ...] = ()

    def get_instruction(self, name: str) -> Optional[TargetInstruction]:
        for ix in self.instructions:
            if ix.name == name:
                return ix
        return None

    def get_record(self, name: str) -> Optional[TargetStateRecord]:
        for record in self.records:
            if record.name == name:
                return record
        return None

    def issues(self) -> List[Tuple[str, UnresolvedPattern]]:
        """Every unresolved pattern, tagged with its instruction."""
        return [(ix.name, issue) for ix in self.instructions for issue in ix.issues]

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form consumed by the IDL generator."""
        return {
            "name": self.name,
            "address": self.program_id,
            "config": self.config.to_dict(),
            "instructions": [ix.to_dict() for ix in self.instructions],
            "accounts": [
                {
                    "name": record.name,
                    "size": record.size,
                    "fields": [
                        {
                            "name": f.name,
                            "type": f.ty,
                            "size": f.size,
                            "offset": f.offset,
                            "bound": f.bound,
                        }
                        for f in record.fields
                    ],
                }
                for record in self.records
            ],
            "errors": [{"code": e.code, "name": e.name, "msg": e.msg} for e in self.errors],
        }

    def summary(self) -> str:
        """Generate summary report."""
        lines = [
            "=" * 60,
            f"TRANSPILED PROGRAM: {self.name}",
            "=" * 60,
            f"Program ID: {self.program_id or '(none)'}",
            f"Instructions: {len(self.instructions)}",
            f"Records: {len(self.records)}",
            f"Errors: {len(self.errors)}",
            "",
        ]

        for ix in self.instructions:
            status = "FAILED" if ix.failed else f"{len(ix.issues)} unresolved"
            lines.append(
                f"  {ix.name} [{ix.discriminator.hex()}] "
                f"{len(ix.accounts)} accounts, {len(ix.validations)} checks, {status}"
            )

        for record in self.records:
            lines.append(f"  {record.name}: {record.size} bytes")

        lines.append("=" * 60)
        return "\n".join(lines)
