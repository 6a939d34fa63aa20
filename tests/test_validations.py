"""Tests for validation synthesis."""

import logging

from uncpi.analysis import RelationshipAnalyzer
from uncpi.analysis.models import (
    AccountDeclaration,
    AccountGroup,
    AccountKind,
    Constraint,
    ConstraintKind,
    Instruction,
    Program,
)
from uncpi.config import TransformConfig
from uncpi.transform import TransformationEngine
from uncpi.transform.models import PdaMode, ValidationKind
from uncpi.transform.validations import (
    ValidationBuilder,
    is_self_referential,
    select_pda_mode,
)

from conftest import make_context


def build(group: AccountGroup):
    program = Program(
        name="p",
        instructions=(Instruction("ix", group.name),),
        account_groups=(group,),
    )
    facts = RelationshipAnalyzer().analyze(program)
    engine = TransformationEngine(TransformConfig(max_workers=1))
    accounts = [engine.map_account(d, i, facts, group.name) for i, d in enumerate(group.accounts)]
    ctx = make_context(accounts, pdas=facts.pdas)
    return ValidationBuilder().build(group.accounts, accounts, ctx)


def kinds(validations):
    return [(v.kind, v.account) for v in validations]


class TestOrdering:
    def test_mutable_non_signer(self):
        group = AccountGroup("G", (
            AccountDeclaration("data", AccountKind.ACCOUNT, constraints=(Constraint.mut(),)),
        ))
        validations = build(group)

        assert [v.kind for v in validations] == [ValidationKind.IS_WRITABLE]
        assert validations[0].account_index == 0

    def test_groups_follow_fixed_order(self):
        group = AccountGroup("G", (
            AccountDeclaration("a", AccountKind.ACCOUNT, constraints=(
                Constraint.mut(),
                Constraint.custom("a.value > 0"),
            )),
            AccountDeclaration("b", AccountKind.SIGNER, constraints=(Constraint.mut(),)),
            AccountDeclaration("c", AccountKind.UNCHECKED, constraints=(
                Constraint.seeds_of('b"c"'),
                Constraint.bump("c_bump"),
            )),
            AccountDeclaration("d", AccountKind.SIGNER),
        ))
        validations = build(group)

        assert kinds(validations) == [
            (ValidationKind.IS_SIGNER, "b"),
            (ValidationKind.IS_SIGNER, "d"),
            (ValidationKind.IS_WRITABLE, "a"),
            (ValidationKind.IS_WRITABLE, "b"),
            (ValidationKind.PDA_CHECK, "c"),
            (ValidationKind.CUSTOM, "a"),
        ]

    def test_wrapped_signer_counts_as_signer(self):
        group = AccountGroup("G", (
            AccountDeclaration("boxed", AccountKind.WRAPPED, wrapped=AccountKind.SIGNER),
        ))
        assert kinds(build(group)) == [(ValidationKind.IS_SIGNER, "boxed")]

    def test_init_without_mut_has_no_writable_check(self):
        group = AccountGroup("G", (
            AccountDeclaration("payer", AccountKind.SIGNER, constraints=(Constraint.mut(),)),
            AccountDeclaration("fresh", AccountKind.ACCOUNT, constraints=(Constraint.init("payer"),)),
        ))
        assert kinds(build(group)) == [
            (ValidationKind.IS_SIGNER, "payer"),
            (ValidationKind.IS_WRITABLE, "payer"),
        ]


class TestPdaBranch:
    def test_supplied_bump_is_reconstructed(self):
        group = AccountGroup("G", (
            AccountDeclaration("pool", AccountKind.ACCOUNT, constraints=(
                Constraint.seeds_of('b"pool"', "authority.key().as_ref()"),
                Constraint.bump("pool_bump"),
            )),
        ))
        (check,) = build(group)

        assert check.kind == ValidationKind.PDA_CHECK
        assert check.mode == PdaMode.RECONSTRUCT_FROM_BUMP
        assert check.seeds == ('b"pool"', "authority.key().as_ref()")
        assert check.bump == "pool_bump"

    def test_init_derives(self):
        group = AccountGroup("G", (
            AccountDeclaration("pool", AccountKind.ACCOUNT, constraints=(
                Constraint.init("payer"),
                Constraint.seeds_of('b"pool"'),
                Constraint.bump("pool_bump"),
            )),
        ))
        (check,) = build(group)
        assert check.mode == PdaMode.DERIVE_AND_COMPARE

    def test_self_reference_derives(self):
        group = AccountGroup("G", (
            AccountDeclaration("pool", AccountKind.ACCOUNT, constraints=(
                Constraint.seeds_of('b"pool"', "pool.mint.as_ref()"),
                Constraint.bump("pool.bump"),
            )),
        ))
        (check,) = build(group)
        assert check.mode == PdaMode.DERIVE_AND_COMPARE

    def test_missing_bump_derives(self):
        group = AccountGroup("G", (
            AccountDeclaration("pool", AccountKind.ACCOUNT, constraints=(
                Constraint.seeds_of('b"pool"'),
                Constraint.bump(),
            )),
        ))
        (check,) = build(group)
        assert check.mode == PdaMode.DERIVE_AND_COMPARE
        assert check.bump is None

    def test_branch_is_per_account(self):
        group = AccountGroup("G", (
            AccountDeclaration("fresh", AccountKind.ACCOUNT, constraints=(
                Constraint.init("payer"),
                Constraint.seeds_of('b"fresh"'),
                Constraint.bump(),
            )),
            AccountDeclaration("known", AccountKind.ACCOUNT, constraints=(
                Constraint.seeds_of('b"known"'),
                Constraint.bump("known_bump"),
            )),
        ))
        modes = [v.mode for v in build(group)]
        assert modes == [PdaMode.DERIVE_AND_COMPARE, PdaMode.RECONSTRUCT_FROM_BUMP]

    def test_self_reference_detection(self):
        assert is_self_referential("pool", ["pool.key_a.as_ref()"], None)
        assert is_self_referential("pool", ['b"x"'], "pool . bump")
        assert not is_self_referential("pool", ['b"pool"', "pool_mint.key().as_ref()"], None)
        assert not is_self_referential("pool", ["other.pool.as_ref()"], "bump")
        assert is_self_referential("pool", ['b"p"', "&data[..pool.len]"], None)
        assert not is_self_referential("pool", ["config.pool.key().as_ref()"], None)

    def test_select_mode(self):
        assert select_pda_mode(False, False, "b") == PdaMode.RECONSTRUCT_FROM_BUMP
        assert select_pda_mode(True, False, "b") == PdaMode.DERIVE_AND_COMPARE
        assert select_pda_mode(False, True, "b") == PdaMode.DERIVE_AND_COMPARE
        assert select_pda_mode(False, False, None) == PdaMode.DERIVE_AND_COMPARE


class TestConstraintLowering:
    def test_custom_constraint_guard(self):
        group = AccountGroup("G", (
            AccountDeclaration("vault_token", AccountKind.TOKEN_ACCOUNT, constraints=(
                Constraint.custom("vault_token.owner == ctx.accounts.vault.key()", "VaultError::BadOwner"),
            )),
            AccountDeclaration("vault", AccountKind.UNCHECKED),
        ))
        (check,) = build(group)

        assert check.kind == ValidationKind.CUSTOM
        assert check.code == (
            "if !(vault_token.owner == *vault.key()) { return Err(VaultError::BadOwner.into()); }"
        )

    def test_custom_constraint_default_error(self):
        group = AccountGroup("G", (
            AccountDeclaration("a", AccountKind.UNCHECKED, constraints=(Constraint.custom("x > 1"),)),
        ))
        (check,) = build(group)
        assert check.code == "if !(x > 1) { return Err(ProgramError::Custom(0)); }"

    def test_address_becomes_key_equals(self):
        group = AccountGroup("G", (
            AccountDeclaration("oracle", AccountKind.UNCHECKED, constraints=(
                Constraint(ConstraintKind.ADDRESS, value="ORACLE_ID"),
            )),
        ))
        (check,) = build(group)
        assert check.kind == ValidationKind.KEY_EQUALS
        assert check.expected == "ORACLE_ID"

    def test_unsupported_shapes_produce_nothing(self, caplog):
        group = AccountGroup("G", (
            AccountDeclaration("ata", AccountKind.TOKEN_ACCOUNT, constraints=(
                Constraint(ConstraintKind.TOKEN_MINT, value="mint"),
                Constraint(ConstraintKind.TOKEN_AUTHORITY, value="owner"),
                Constraint(ConstraintKind.CLOSE, value="receiver"),
            )),
        ))
        with caplog.at_level(logging.DEBUG, logger="uncpi.transform.validations"):
            assert build(group) == []
        assert "close" in caplog.text


def test_vault_program_validations(vault_program):
    target = TransformationEngine(TransformConfig(max_workers=2)).transform(vault_program)
    deposit = target.get_instruction("deposit")

    assert [v.describe() for v in deposit.validations] == [
        "is_signer(user)",
        "is_writable(user)",
        "is_writable(vault)",
        "is_writable(user_token)",
        "is_writable(vault_token)",
        "pda_check(vault, derive_and_compare)",
        "custom(if vault_state.authority != *authority.key() "
        "{ return Err(VaultError::Unauthorized.into()); })",
        "custom(if !(vault_token.owner == *vault.key()) "
        "{ return Err(VaultError::BadOwner.into()); })",
    ]

    initialize = target.get_instruction("initialize")
    pda = [v for v in initialize.validations if v.kind == ValidationKind.PDA_CHECK]
    assert [v.mode for v in pda] == [PdaMode.DERIVE_AND_COMPARE]
