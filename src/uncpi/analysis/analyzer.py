"""
Relationship Analyzer.

Walks a source-form program once and derives the facts the transformation
needs but that no single declaration states on its own: which accounts are
program-derived, which cross-program calls each body makes, and how large
every state record is once laid out.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from solders.pubkey import Pubkey

from ..layout.engine import LayoutEngine
from ..matchers import SourceText
from .models import (
    Program,
    ConstraintKind,
    PdaInfo,
    CpiCallInfo,
    AccountSizeInfo,
    FactSet,
)

logger = logging.getLogger(__name__)


TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")


@dataclass(frozen=True)
class CpiShape:
    """A recognizable cross-program call and the roles of its accounts."""
    pattern: re.Pattern
    target_program: str
    program_address: Pubkey
    operation: str
    account_roles: Tuple[str, ...]


CPI_SHAPES = [
    CpiShape(
        pattern=re.compile(r"\btoken\s*::\s*transfer\s*\("),
        target_program="token",
        program_address=TOKEN_PROGRAM_ID,
        operation="transfer",
        account_roles=("from", "to", "authority"),
    ),
    CpiShape(
        pattern=re.compile(r"\btoken\s*::\s*mint_to\s*\("),
        target_program="token",
        program_address=TOKEN_PROGRAM_ID,
        operation="mint_to",
        account_roles=("mint", "to", "authority"),
    ),
    CpiShape(
        pattern=re.compile(r"\btoken\s*::\s*burn\s*\("),
        target_program="token",
        program_address=TOKEN_PROGRAM_ID,
        operation="burn",
        account_roles=("mint", "from", "authority"),
    ),
    CpiShape(
        pattern=re.compile(r"\bsystem_program\s*::\s*transfer\s*\("),
        target_program="system",
        program_address=SYSTEM_PROGRAM_ID,
        operation="transfer",
        account_roles=("from", "to"),
    ),
]


class RelationshipAnalyzer:
    """
    Derives the fact set for a program.

    The analyzer is pure: the same program always yields the same fact set,
    and nothing here can fail other than by finding no facts.
    """

    def __init__(self, layout: Optional[LayoutEngine] = None):
        self.layout = layout or LayoutEngine()

    def analyze(self, program: Program) -> FactSet:
        """Run every extraction and bundle the results."""
        facts = FactSet(
            pdas=tuple(self.extract_pdas(program)),
            cpi_calls=tuple(self.extract_cpi_calls(program)),
            account_sizes=tuple(self.calculate_sizes(program)),
        )
        logger.debug("Analyzed %s: %s", program.name, facts.summary())
        return facts

    def extract_pdas(self, program: Program) -> List[PdaInfo]:
        """One PdaInfo per account declaration carrying a seeds constraint."""
        pdas = []
        for group in program.account_groups:
            for account in group.accounts:
                seeds = account.find(ConstraintKind.SEEDS)
                if seeds is None:
                    continue

                bump = account.find(ConstraintKind.BUMP)
                pdas.append(PdaInfo(
                    account_name=account.name,
                    seeds=seeds.seeds,
                    bump_source=bump.value if bump is not None else None,
                    group=group.name,
                ))
        return pdas

    def extract_cpi_calls(self, program: Program) -> List[CpiCallInfo]:
        """One CpiCallInfo per recognized call occurrence, in body order."""
        calls = []
        for instruction in program.instructions:
            source = SourceText(instruction.body)
            found = []
            for shape in CPI_SHAPES:
                for m in source.finditer(shape.pattern):
                    found.append((m.start(), shape))

            for _, shape in sorted(found, key=lambda item: item[0]):
                calls.append(CpiCallInfo(
                    instruction=instruction.name,
                    target_program=shape.target_program,
                    program_address=str(shape.program_address),
                    operation=shape.operation,
                    account_roles=shape.account_roles,
                ))
        return calls

    def calculate_sizes(self, program: Program) -> List[AccountSizeInfo]:
        """Total and per-field sizes of every state record."""
        sizes = []
        for record in program.state_records:
            layout = self.layout.layout_record(record)
            sizes.append(AccountSizeInfo(
                record_name=record.name,
                size=layout.size,
                field_sizes=tuple((f.name, f.size) for f in layout.fields),
                assumptions=tuple(str(a) for a in layout.assumptions),
            ))
        return sizes
