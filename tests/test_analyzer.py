"""Tests for the relationship analyzer."""

from uncpi.analysis import RelationshipAnalyzer
from uncpi.analysis.analyzer import SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID
from uncpi.analysis.models import Instruction, Program


def test_extracts_pdas_per_group(vault_program):
    facts = RelationshipAnalyzer().analyze(vault_program)

    assert [(p.group, p.account_name) for p in facts.pdas] == [
        ("Initialize", "vault"),
        ("Deposit", "vault"),
    ]
    assert facts.pda_for("vault", "Initialize").bump_source is None
    assert facts.pda_for("vault", "Deposit").bump_source == "vault.bump"
    assert facts.pda_for("vault", "Deposit").seeds == ('b"vault"', "vault.authority.as_ref()")
    assert facts.pda_for("missing") is None


def test_extracts_cpi_calls(vault_program):
    facts = RelationshipAnalyzer().analyze(vault_program)

    (call,) = facts.cpi_calls
    assert call.instruction == "deposit"
    assert call.target_program == "token"
    assert call.operation == "transfer"
    assert call.account_roles == ("from", "to", "authority")
    assert call.program_address == str(TOKEN_PROGRAM_ID)
    assert facts.calls_in("initialize") == ()


def test_cpi_calls_in_body_order_and_outside_comments():
    body = """
        // token::transfer(old_ctx, 1)?;
        token::burn(burn_ctx, amount)?;
        let note = "token::mint_to(fake)";
        token::mint_to(mint_ctx, amount)?;
        anchor_lang::system_program::transfer(sys_ctx, lamports)?;
    """
    program = Program(name="p", instructions=(Instruction("swap", "Swap", (), body),))
    calls = RelationshipAnalyzer().analyze(program).cpi_calls

    assert [(c.target_program, c.operation) for c in calls] == [
        ("token", "burn"),
        ("token", "mint_to"),
        ("system", "transfer"),
    ]
    assert calls[0].account_roles == ("mint", "from", "authority")
    assert calls[1].account_roles == ("mint", "to", "authority")
    assert calls[2].account_roles == ("from", "to")
    assert calls[2].program_address == str(SYSTEM_PROGRAM_ID)


def test_calculates_sizes(vault_program):
    facts = RelationshipAnalyzer().analyze(vault_program)

    size = facts.size_for("Vault")
    assert size.size == 8 + 32 + 1 + (4 * 32 + 1) + 8
    assert dict(size.field_sizes) == {"authority": 32, "bump": 1, "members": 129, "total": 8}
    assert size.assumptions == ()


def test_analysis_is_deterministic(vault_program):
    analyzer = RelationshipAnalyzer()
    assert analyzer.analyze(vault_program) == analyzer.analyze(vault_program)


def test_empty_program_has_no_facts():
    facts = RelationshipAnalyzer().analyze(Program(name="empty"))
    assert facts.summary() == {"pdas": 0, "cpi_calls": 0, "records": 0}
