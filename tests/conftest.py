"""Shared fixtures: a small vault program in source form and JSON form."""

import pytest

from uncpi.analysis.models import (
    AccountDeclaration,
    AccountGroup,
    AccountKind,
    Constraint,
    ErrorDef,
    Instruction,
    InstructionArg,
    Program,
    StateField,
    StateRecord,
)
from uncpi.config import TransformConfig
from uncpi.layout.engine import LayoutEngine
from uncpi.rewrite.context import RewriteContext
from uncpi.transform.models import TargetAccount


VAULT = StateRecord(
    name="Vault",
    fields=(
        StateField("authority", "Pubkey"),
        StateField("bump", "u8"),
        StateField("members", "Vec<Pubkey>", max_len=4),
        StateField("total", "u64"),
    ),
)

INITIALIZE_ACCOUNTS = AccountGroup(
    name="Initialize",
    accounts=(
        AccountDeclaration("payer", AccountKind.SIGNER, constraints=(Constraint.mut(),)),
        AccountDeclaration(
            "vault",
            AccountKind.ACCOUNT,
            inner="Vault",
            constraints=(
                Constraint.init(payer="payer", space="8 + Vault::INIT_SPACE"),
                Constraint.seeds_of('b"vault"', "payer.key().as_ref()"),
                Constraint.bump(),
            ),
        ),
        AccountDeclaration("system_program", AccountKind.PROGRAM, inner="System"),
    ),
)

DEPOSIT_ACCOUNTS = AccountGroup(
    name="Deposit",
    accounts=(
        AccountDeclaration("user", AccountKind.SIGNER, constraints=(Constraint.mut(),)),
        AccountDeclaration(
            "vault",
            AccountKind.ACCOUNT,
            inner="Vault",
            constraints=(
                Constraint.mut(),
                Constraint.seeds_of('b"vault"', "vault.authority.as_ref()"),
                Constraint.bump("vault.bump"),
                Constraint.has_one("authority", "VaultError::Unauthorized"),
            ),
        ),
        AccountDeclaration("authority", AccountKind.UNCHECKED),
        AccountDeclaration("user_token", AccountKind.TOKEN_ACCOUNT, constraints=(Constraint.mut(),)),
        AccountDeclaration(
            "vault_token",
            AccountKind.TOKEN_ACCOUNT,
            constraints=(
                Constraint.mut(),
                Constraint.custom("vault_token.owner == vault.key()", "VaultError::BadOwner"),
            ),
        ),
        AccountDeclaration("token_program", AccountKind.PROGRAM, inner="Token"),
    ),
)

INITIALIZE_BODY = """{
    let vault = &mut ctx.accounts.vault;
    vault.authority = ctx.accounts.payer.key();
    vault.bump = ctx.bumps.vault;
    msg!("vault initialized");
    Ok(())
}"""

DEPOSIT_BODY = """{
    require!(amount > 0, VaultError::ZeroAmount);
    let cpi_ctx = CpiContext::new(
        ctx.accounts.token_program.to_account_info(),
        Transfer {
            from: ctx.accounts.user_token.to_account_info(),
            to: ctx.accounts.vault_token.to_account_info(),
            authority: ctx.accounts.user.to_account_info(),
        },
    );
    token::transfer(cpi_ctx, amount)?;
    ctx.accounts.vault.total += amount;
    msg!("deposited {}", amount);
    Ok(())
}"""


@pytest.fixture
def vault_program() -> Program:
    return Program(
        name="vault",
        program_id="Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS",
        instructions=(
            Instruction("initialize", "Initialize", (), INITIALIZE_BODY),
            Instruction("deposit", "Deposit", (InstructionArg("amount", "u64"),), DEPOSIT_BODY),
        ),
        account_groups=(INITIALIZE_ACCOUNTS, DEPOSIT_ACCOUNTS),
        state_records=(VAULT,),
        errors=(
            ErrorDef("ZeroAmount", "Amount must be positive"),
            ErrorDef("Unauthorized", "Not the vault authority"),
            ErrorDef("BadOwner", "Wrong token owner", code=7000),
        ),
    )


@pytest.fixture
def vault_json() -> dict:
    return {
        "name": "vault",
        "program_id": "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS",
        "instructions": [
            {
                "name": "deposit",
                "accounts_struct": "Deposit",
                "args": [{"name": "amount", "ty": "u64"}],
                "body": DEPOSIT_BODY,
            }
        ],
        "account_structs": [
            {
                "name": "Deposit",
                "accounts": [
                    {"name": "user", "ty": "Signer", "constraints": ["Mut"]},
                    {
                        "name": "vault",
                        "ty": {"Box": {"inner": {"Account": {"inner": "Vault"}}}},
                        "constraints": [
                            "Mut",
                            {"Seeds": ['b"vault"', "vault.authority.as_ref()"]},
                            {"Bump": "vault.bump"},
                            {"HasOne": {"field": "authority", "error": "VaultError::Unauthorized"}},
                        ],
                    },
                    {"name": "authority", "ty": "UncheckedAccount", "constraints": []},
                    {"name": "user_token", "ty": "TokenAccount", "constraints": ["Mut"]},
                    {
                        "name": "vault_token",
                        "ty": "TokenAccount",
                        "constraints": [
                            "Mut",
                            {"TokenAuthority": "vault"},
                            {"Constraint": {"expr": "vault_token.owner == vault.key()", "error": None}},
                        ],
                    },
                    {"name": "token_program", "ty": {"Program": {"inner": "Token"}}, "constraints": []},
                ],
                "instruction_args": [],
            }
        ],
        "state_structs": [
            {
                "name": "Vault",
                "fields": [
                    {"name": "authority", "ty": "Pubkey", "max_len": None},
                    {"name": "bump", "ty": "u8", "max_len": None},
                    {"name": "members", "ty": "Vec<Pubkey>", "max_len": 4},
                    {"name": "total", "ty": "u64", "max_len": None},
                ],
                "has_init_space": True,
            }
        ],
        "errors": [
            {"name": "ZeroAmount", "code": None, "msg": "Amount must be positive"},
            {"name": "Unauthorized", "code": 6001, "msg": "Not the vault authority"},
        ],
    }


def make_context(accounts=(), records=(), pdas=(), config=None, instruction="test") -> RewriteContext:
    """Build a RewriteContext from target accounts and source records."""
    engine = LayoutEngine()
    layouts = {r.name: engine.layout_record(r) for r in records}
    return RewriteContext.build(instruction, list(accounts), layouts, pdas, config or TransformConfig())


def vault_accounts():
    """Target accounts for a vault-holding instruction."""
    return [
        TargetAccount("user", 0, AccountKind.SIGNER, is_signer=True, is_writable=True),
        TargetAccount(
            "vault", 1, AccountKind.ACCOUNT, is_writable=True, is_pda=True,
            seeds=('b"vault"', "user.key().as_ref()"), bump="vault.bump", state_type="Vault",
        ),
        TargetAccount("recipient", 2, AccountKind.SYSTEM_ACCOUNT, is_writable=True),
    ]
