"""Tests for the transformation engine and the full rewrite pipeline."""

import json
import logging

import pytest

from uncpi.analysis.models import (
    AccountGroup,
    Instruction,
    InstructionArg,
    Program,
)
from uncpi.config import TransformConfig
from uncpi.errors import DiscriminatorCollision, StructuralModelError
from uncpi.rewrite import BodyRewritePipeline, RewritePass, get_pass
from uncpi.transform import TransformationEngine, ValidationKind, transpile
from uncpi.transform.discriminator import anchor_discriminator, placeholder_discriminator
from uncpi.transform.engine import unwrap_body

from conftest import DEPOSIT_BODY, make_context, vault_accounts, VAULT


class ExplodingPass(RewritePass):
    """Fails on one named instruction."""

    def __init__(self, target: str):
        self.target = target

    @property
    def name(self) -> str:
        return "explode"

    def apply(self, body, ctx):
        if ctx.instruction == self.target:
            raise RuntimeError("boom")
        return body


class TestPipeline:
    def test_deposit_body(self):
        ctx = make_context(vault_accounts(), records=[VAULT])
        result = BodyRewritePipeline().run(unwrap_body(DEPOSIT_BODY), ctx)
        assert result.body.splitlines() == [
            "let mut vault_state = Vault::from_account_info_mut(vault)?;",
            "if !(amount > 0) { return Err(VaultError::ZeroAmount.into()); }",
            "pinocchio_token::instructions::Transfer "
            "{ from: user_token, to: vault_token, authority: user, amount: amount }.invoke()?;",
            "vault_state.total += amount;",
            '/* msg!("deposited {}", amount); */',
            "Ok(())",
        ]
        assert result.issues == ()

    def test_pipeline_is_idempotent(self):
        ctx = make_context(vault_accounts(), records=[VAULT])
        pipeline = BodyRewritePipeline()
        once = pipeline.run(unwrap_body(DEPOSIT_BODY), ctx).body
        assert pipeline.run(once, ctx).body == once

    def test_sequence_counters_routed_through_state(self):
        ctx = make_context(vault_accounts(), records=[VAULT])
        body = (
            "for m in ctx.accounts.vault.members.iter() { check(m); }\n"
            "ctx.accounts.vault.members.remove(0);"
        )
        result = BodyRewritePipeline().run(body, ctx)
        assert result.body.splitlines()[0] == "let mut vault_state = Vault::from_account_info_mut(vault)?;"
        assert "for m in vault_state.members[..vault_state.members_len as usize].iter()" in result.body
        assert "for shift_at in remove_at..vault_state.members_len as usize - 1" in result.body
        assert "vault.members_len" not in result.body

    def test_pushed_key_is_stored_by_value(self):
        ctx = make_context(vault_accounts(), records=[VAULT])
        body = "ctx.accounts.vault.members.push(ctx.accounts.user.key());"
        result = BodyRewritePipeline().run(body, ctx)
        assert "vault_state.members[vault_state.members_len as usize] = *user.key();" in result.body
        assert "vault_state.members_len += 1;" in result.body

    def test_markers_become_issues(self):
        ctx = make_context(vault_accounts(), records=[VAULT])
        result = BodyRewritePipeline().run("emit!(Deposited { amount });\nOk(())", ctx)
        (issue,) = result.issues
        assert issue.pass_name == "diagnostics"

    def test_custom_pass_list(self):
        ctx = make_context()
        pipeline = BodyRewritePipeline([get_pass("format")])
        assert pipeline.run("a();   b();", ctx).body == "a();\nb();"


class TestTransform:
    def test_instruction_bodies(self, vault_program):
        target = TransformationEngine().transform(vault_program)

        initialize = target.get_instruction("initialize")
        assert initialize.body.splitlines() == [
            "let mut vault_state = Vault::from_account_info_mut(vault)?;",
            "vault_state.authority = *payer.key();",
            "vault_state.bump = vault_bump;",
            'msg!("vault initialized");',
            "Ok(())",
        ]

        deposit = target.get_instruction("deposit")
        assert deposit.body.splitlines()[0] == "let mut vault_state = Vault::from_account_info_mut(vault)?;"
        assert "vault_state.total += amount;" in deposit.body.splitlines()
        assert not deposit.failed
        assert target.issues() == []

    def test_instructions_in_source_order(self, vault_program):
        target = TransformationEngine(TransformConfig(max_workers=4)).transform(vault_program)
        assert [ix.name for ix in target.instructions] == ["initialize", "deposit"]

    def test_deterministic(self, vault_program):
        first = TransformationEngine(TransformConfig(max_workers=1)).transform(vault_program)
        second = TransformationEngine(TransformConfig(max_workers=4)).transform(vault_program)
        assert first.instructions == second.instructions
        assert first.records == second.records
        assert json.loads(json.dumps(first.to_dict()))["instructions"] == \
            json.loads(json.dumps(second.to_dict()))["instructions"]

    def test_discriminators(self, vault_program):
        target = transpile(vault_program)
        assert target.get_instruction("deposit").discriminator == anchor_discriminator("deposit")

        target = transpile(vault_program, TransformConfig(anchor_compat=False))
        assert target.get_instruction("initialize").discriminator == placeholder_discriminator(0)
        assert target.get_instruction("deposit").discriminator == placeholder_discriminator(1)

    def test_discriminator_collision(self):
        program = Program(
            name="amm",
            instructions=(
                Instruction("addLiquidity", "Missing"),
                Instruction("add_liquidity", "Missing"),
            ),
        )
        with pytest.raises(DiscriminatorCollision) as exc:
            TransformationEngine().transform(program)
        assert exc.value.first == "addLiquidity"
        assert exc.value.second == "add_liquidity"

    def test_placeholders_avoid_collision(self):
        program = Program(
            name="amm",
            instructions=(
                Instruction("addLiquidity", "Missing"),
                Instruction("add_liquidity", "Missing"),
            ),
        )
        target = transpile(program, TransformConfig(anchor_compat=False))
        assert len(target.instructions) == 2

    def test_error_codes(self, vault_program):
        target = transpile(vault_program)
        assert [(e.name, e.code) for e in target.errors] == [
            ("ZeroAmount", 6000),
            ("Unauthorized", 6001),
            ("BadOwner", 7000),
        ]

    def test_record_fields(self, vault_program):
        record = transpile(vault_program).get_record("Vault")
        assert record.size == 178
        assert [(f.name, f.ty, f.offset, f.size) for f in record.fields] == [
            ("authority", "Pubkey", 8, 32),
            ("bump", "u8", 40, 1),
            ("members", "[Pubkey; 4]", 41, 128),
            ("members_len", "u8", 169, 1),
            ("total", "u64", 170, 8),
        ]
        assert record.get_field("members").bound == 4
        assert record.get_field("total").bound is None

    def test_unsafe_math_warns(self, vault_program, caplog):
        with caplog.at_level(logging.WARNING, logger="uncpi.transform.engine"):
            transpile(vault_program, TransformConfig(unsafe_math=True))
        assert "unsafe_math is accepted but has no effect" in caplog.text

    def test_to_dict_is_json(self, vault_program):
        data = json.loads(json.dumps(transpile(vault_program).to_dict()))
        assert data["name"] == "vault"
        assert data["accounts"][0]["size"] == 178
        deposit = data["instructions"][1]
        assert deposit["args"] == [{"name": "amount", "type": "u64"}]
        assert deposit["validations"][0] == {"kind": "is_signer", "account_index": 0}

    def test_summary(self, vault_program):
        text = transpile(vault_program).summary()
        assert "TRANSPILED PROGRAM: vault" in text
        assert "deposit [" in text
        assert "Vault: 178 bytes" in text


class TestAccounts:
    def test_deposit_accounts(self, vault_program):
        deposit = transpile(vault_program).get_instruction("deposit")
        assert [a.name for a in deposit.accounts] == [
            "user", "vault", "authority", "user_token", "vault_token", "token_program",
        ]
        assert [a.index for a in deposit.accounts] == list(range(6))

        user = deposit.get_account("user")
        assert user.is_signer and user.is_writable

        vault = deposit.get_account("vault")
        assert vault.is_pda
        assert vault.seeds == ('b"vault"', "vault.authority.as_ref()")
        assert vault.bump == "vault.bump"
        assert vault.state_type == "Vault"
        assert vault.is_writable and not vault.is_signer

        assert deposit.get_account("token_program").state_type is None

    def test_init_account(self, vault_program):
        initialize = transpile(vault_program).get_instruction("initialize")
        vault = initialize.get_account("vault")
        assert vault.is_init
        assert vault.payer == "payer"
        assert vault.is_writable
        assert vault.bump is None

    def test_validation_order(self, vault_program):
        deposit = transpile(vault_program).get_instruction("deposit")
        kinds = [v.kind for v in deposit.validations]
        assert kinds == [
            ValidationKind.IS_SIGNER,
            ValidationKind.IS_WRITABLE,
            ValidationKind.IS_WRITABLE,
            ValidationKind.IS_WRITABLE,
            ValidationKind.IS_WRITABLE,
            ValidationKind.PDA_CHECK,
            ValidationKind.CUSTOM,
            ValidationKind.CUSTOM,
        ]

    def test_missing_group_gives_no_accounts(self):
        program = Program(name="p", instructions=(Instruction("orphan", "Missing", body="{ Ok(()) }"),))
        (ix,) = transpile(program).instructions
        assert ix.accounts == ()
        assert ix.validations == ()
        assert ix.body == "Ok(())"

    def test_args_fall_back_to_group(self):
        group = AccountGroup("Make", instruction_args=(InstructionArg("seed", "u64"),))
        program = Program(
            name="p",
            instructions=(Instruction("make", "Make", body="Ok(())"),),
            account_groups=(group,),
        )
        (ix,) = transpile(program).instructions
        assert ix.args == (InstructionArg("seed", "u64"),)


class TestFailureIsolation:
    def test_failed_instruction_is_contained(self, vault_program):
        pipeline = BodyRewritePipeline([ExplodingPass("deposit"), get_pass("format")])
        target = TransformationEngine(pipeline=pipeline).transform(vault_program)

        deposit = target.get_instruction("deposit")
        assert deposit.failed
        assert deposit.body == "/* UNRESOLVED(transform): RuntimeError: boom */"
        assert deposit.issues[0].pass_name == "transform"
        assert deposit.discriminator == anchor_discriminator("deposit")

        initialize = target.get_instruction("initialize")
        assert not initialize.failed
        assert initialize.issues == ()

    def test_failure_is_logged(self, vault_program, caplog):
        pipeline = BodyRewritePipeline([ExplodingPass("initialize")])
        with caplog.at_level(logging.ERROR, logger="uncpi.transform.engine"):
            TransformationEngine(pipeline=pipeline).transform(vault_program)
        assert "Failed to transform instruction initialize" in caplog.text

    def test_failure_flag_is_serialized(self, vault_program):
        pipeline = BodyRewritePipeline([ExplodingPass("deposit")])
        target = TransformationEngine(pipeline=pipeline).transform(vault_program)
        assert target.get_instruction("deposit").to_dict()["failed"] is True
        assert target.get_instruction("initialize").to_dict()["failed"] is False


class TestStructure:
    @pytest.mark.parametrize("program", [
        Program(name=""),
        Program(name="p", instructions=(Instruction("", "G"),)),
        Program(name="p", instructions=(Instruction("a", "G"), Instruction("a", "G"))),
        Program(name="p", account_groups=(AccountGroup(""),)),
    ])
    def test_malformed_programs_abort(self, program):
        with pytest.raises(StructuralModelError):
            TransformationEngine().transform(program)


class TestUnwrapBody:
    @pytest.mark.parametrize("body,expected", [
        ("{ a(); }", " a(); "),
        ("  {\n  Ok(())\n}  ", "\n  Ok(())\n"),
        ("{ a } { b }", "{ a } { b }"),
        ("a();", "a();"),
        ('{ msg!("}"); }', ' msg!("}"); '),
    ])
    def test_unwrap(self, body, expected):
        assert unwrap_body(body) == expected
