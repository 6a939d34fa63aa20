"""
Model loader for source-form programs.

The upstream Rust parser serializes its model as JSON using serde's default
(externally tagged) enum representation, e.g. `"Mut"`, `{"Seeds": [...]}` or
`{"Account": {"inner": "Pool"}}`. This module turns such a document into the
frozen dataclasses in `models`.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from solders.pubkey import Pubkey

from ..errors import StructuralModelError
from .models import (
    Program,
    Instruction,
    InstructionArg,
    AccountGroup,
    AccountDeclaration,
    AccountKind,
    Constraint,
    ConstraintKind,
    StateRecord,
    StateField,
    ErrorDef,
)

logger = logging.getLogger(__name__)


# serde variant name -> AccountKind
ACCOUNT_TYPES = {
    "Account": AccountKind.ACCOUNT,
    "Signer": AccountKind.SIGNER,
    "SystemAccount": AccountKind.SYSTEM_ACCOUNT,
    "UncheckedAccount": AccountKind.UNCHECKED,
    "Program": AccountKind.PROGRAM,
    "Sysvar": AccountKind.SYSVAR,
    "TokenAccount": AccountKind.TOKEN_ACCOUNT,
    "Mint": AccountKind.MINT,
    "Box": AccountKind.WRAPPED,
}

# Variants carrying a single string target
SINGLE_VALUE_CONSTRAINTS = {
    "TokenMint": ConstraintKind.TOKEN_MINT,
    "TokenAuthority": ConstraintKind.TOKEN_AUTHORITY,
    "MintDecimals": ConstraintKind.MINT_DECIMALS,
    "MintAuthority": ConstraintKind.MINT_AUTHORITY,
    "Address": ConstraintKind.ADDRESS,
    "Close": ConstraintKind.CLOSE,
}


def _variant(value: Any, where: str) -> Tuple[str, Any]:
    """Split a serde externally-tagged enum value into (tag, payload)."""
    if isinstance(value, str):
        return value, None
    if isinstance(value, dict) and len(value) == 1:
        tag, payload = next(iter(value.items()))
        return tag, payload
    raise StructuralModelError(f"{where}: expected an enum variant, got {value!r}")


def _require(data: Dict, key: str, where: str, kind: type = str) -> Any:
    if not isinstance(data, dict) or key not in data:
        raise StructuralModelError(f"{where}: missing '{key}'")
    value = data[key]
    if not isinstance(value, kind):
        raise StructuralModelError(
            f"{where}: '{key}' must be {kind.__name__}, got {type(value).__name__}"
        )
    return value


def _list(data: Dict, key: str, where: str) -> List:
    value = data.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list):
        raise StructuralModelError(f"{where}: '{key}' must be a list")
    return value


class ModelLoader:
    """
    Loader for JSON-serialized source-form programs.

    Usage:
        loader = ModelLoader()
        program = loader.load("stableswap.json")
    """

    def load(self, path: Union[str, Path]) -> Program:
        """Load a program model from disk."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Model file not found: {path}")

        with open(path, "r") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise StructuralModelError(f"{path}: invalid JSON ({e})") from e

        return self.parse(data)

    def parse(self, data: Dict) -> Program:
        """Build a Program from its JSON dictionary form."""
        if not isinstance(data, dict):
            raise StructuralModelError("Program model must be a JSON object")

        name = _require(data, "name", "program")
        program_id = data.get("program_id")
        if program_id is not None:
            self._check_program_id(program_id)

        program = Program(
            name=name,
            program_id=program_id,
            instructions=tuple(
                self._parse_instruction(ix, i)
                for i, ix in enumerate(_list(data, "instructions", "program"))
            ),
            account_groups=tuple(
                self._parse_group(group, i)
                for i, group in enumerate(_list(data, "account_structs", "program"))
            ),
            state_records=tuple(
                self._parse_record(record, i)
                for i, record in enumerate(_list(data, "state_structs", "program"))
            ),
            errors=tuple(
                self._parse_error(error, i)
                for i, error in enumerate(_list(data, "errors", "program"))
            ),
        )

        logger.info(
            "Loaded program %s: %d instructions, %d account groups, %d records",
            program.name,
            len(program.instructions),
            len(program.account_groups),
            len(program.state_records),
        )
        return program

    def _check_program_id(self, program_id: Any):
        if not isinstance(program_id, str):
            raise StructuralModelError("program_id must be a string")
        try:
            Pubkey.from_string(program_id)
        except ValueError as e:
            raise StructuralModelError(f"Invalid program id '{program_id}': {e}") from e

    def _parse_args(self, items: List, where: str) -> Tuple[InstructionArg, ...]:
        return tuple(
            InstructionArg(
                name=_require(arg, "name", f"{where}.args[{i}]"),
                ty=_require(arg, "ty", f"{where}.args[{i}]"),
            )
            for i, arg in enumerate(items)
        )

    def _parse_instruction(self, data: Dict, index: int) -> Instruction:
        where = f"instructions[{index}]"
        return Instruction(
            name=_require(data, "name", where),
            accounts_group=_require(data, "accounts_struct", where),
            args=self._parse_args(_list(data, "args", where), where),
            body=data.get("body") or "",
        )

    def _parse_group(self, data: Dict, index: int) -> AccountGroup:
        where = f"account_structs[{index}]"
        name = _require(data, "name", where)
        return AccountGroup(
            name=name,
            accounts=tuple(
                self._parse_account(account, f"{name}.accounts[{i}]")
                for i, account in enumerate(_list(data, "accounts", where))
            ),
            instruction_args=self._parse_args(_list(data, "instruction_args", where), where),
        )

    def _parse_account(self, data: Dict, where: str) -> AccountDeclaration:
        name = _require(data, "name", where)
        kind, inner, wrapped = self._parse_account_type(data.get("ty"), f"{where}.ty")
        return AccountDeclaration(
            name=name,
            kind=kind,
            inner=inner,
            wrapped=wrapped,
            constraints=tuple(
                self._parse_constraint(c, f"{where}.constraints[{i}]")
                for i, c in enumerate(_list(data, "constraints", where))
            ),
        )

    def _parse_account_type(
        self, value: Any, where: str
    ) -> Tuple[AccountKind, Optional[str], Optional[AccountKind]]:
        tag, payload = _variant(value, where)
        kind = ACCOUNT_TYPES.get(tag)
        if kind is None:
            raise StructuralModelError(f"{where}: unknown account type '{tag}'")

        if kind == AccountKind.WRAPPED:
            inner_kind, inner, _ = self._parse_account_type(
                _require(payload, "inner", where, object), f"{where}.inner"
            )
            return kind, inner, inner_kind

        inner = None
        if isinstance(payload, dict):
            inner = payload.get("inner") or None
        return kind, inner, None

    def _parse_constraint(self, value: Any, where: str) -> Constraint:
        tag, payload = _variant(value, where)

        if tag == "Mut":
            return Constraint.mut()
        if tag in ("Init", "InitIfNeeded"):
            return Constraint.init(
                payer=_require(payload, "payer", where),
                space=payload.get("space") or "",
                if_needed=tag == "InitIfNeeded",
            )
        if tag == "Seeds":
            if not isinstance(payload, list):
                raise StructuralModelError(f"{where}: Seeds must be a list")
            return Constraint.seeds_of(*[str(seed) for seed in payload])
        if tag == "Bump":
            return Constraint.bump(payload)
        if tag == "Constraint":
            return Constraint.custom(_require(payload, "expr", where), payload.get("error"))
        if tag == "HasOne":
            return Constraint.has_one(_require(payload, "field", where), payload.get("error"))
        if tag in SINGLE_VALUE_CONSTRAINTS:
            if payload is None:
                raise StructuralModelError(f"{where}: {tag} requires a value")
            return Constraint(SINGLE_VALUE_CONSTRAINTS[tag], value=str(payload))

        raise StructuralModelError(f"{where}: unknown constraint '{tag}'")

    def _parse_record(self, data: Dict, index: int) -> StateRecord:
        where = f"state_structs[{index}]"
        name = _require(data, "name", where)
        fields = []
        for i, f in enumerate(_list(data, "fields", where)):
            field_where = f"{name}.fields[{i}]"
            max_len = f.get("max_len") if isinstance(f, dict) else None
            if max_len is not None and (not isinstance(max_len, int) or max_len < 0):
                raise StructuralModelError(f"{field_where}: max_len must be a non-negative integer")
            fields.append(StateField(
                name=_require(f, "name", field_where),
                ty=_require(f, "ty", field_where),
                max_len=max_len,
            ))
        return StateRecord(
            name=name,
            fields=tuple(fields),
            has_init_space=bool(data.get("has_init_space", False)),
        )

    def _parse_error(self, data: Dict, index: int) -> ErrorDef:
        where = f"errors[{index}]"
        code = data.get("code") if isinstance(data, dict) else None
        if code is not None and not isinstance(code, int):
            raise StructuralModelError(f"{where}: code must be an integer")
        return ErrorDef(
            name=_require(data, "name", where),
            msg=data.get("msg") or "",
            code=code,
        )
