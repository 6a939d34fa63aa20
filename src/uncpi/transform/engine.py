"""
Transformation Engine: source-form Program + FactSet -> TargetProgram.

Instructions are transformed independently on a bounded thread pool. The
fact set and record layouts are computed before dispatch and only read by
the workers. A failure inside one instruction is contained: it yields a
TargetInstruction whose body is a single marker, and its siblings finish
normally.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from ..analysis.analyzer import RelationshipAnalyzer
from ..analysis.models import (
    AccountDeclaration,
    AccountKind,
    ConstraintKind,
    FactSet,
    Instruction,
    Program,
)
from ..config import TransformConfig
from ..errors import StructuralModelError
from ..layout.engine import (
    FieldLayout,
    LayoutEngine,
    RecordLayout,
    TypeShape,
    counter_type,
    length_field_name,
    parse_type,
)
from ..matchers import SourceText, collect_markers, marker
from ..rewrite.context import RewriteContext
from ..rewrite.pipeline import BodyRewritePipeline
from .discriminator import check_unique, compute_discriminator
from .models import (
    TargetAccount,
    TargetError,
    TargetField,
    TargetInstruction,
    TargetProgram,
    TargetStateRecord,
)
from .validations import ValidationBuilder

logger = logging.getLogger(__name__)

ERROR_CODE_BASE = 6000


def unwrap_body(body: str) -> str:
    """Strip the braces around a handler body, if the whole body is one block."""
    text = body.strip()
    if text.startswith("{") and SourceText(text).matching_close(0) == len(text) - 1:
        return text[1:-1]
    return text


class TransformationEngine:
    """
    Transforms a source-form program into its target form.

    Usage:
        engine = TransformationEngine(TransformConfig(no_logs=True))
        target = engine.transform(program, facts)
    """

    def __init__(
        self,
        config: Optional[TransformConfig] = None,
        layout: Optional[LayoutEngine] = None,
        pipeline: Optional[BodyRewritePipeline] = None,
    ):
        self.config = config or TransformConfig()
        self.layout = layout or LayoutEngine()
        self.pipeline = pipeline or BodyRewritePipeline()
        self.validations = ValidationBuilder()

    def transform(self, program: Program, facts: Optional[FactSet] = None) -> TargetProgram:
        """
        Transform a whole program.

        Args:
            program: Source-form program
            facts: Fact set from the Relationship Analyzer (computed if omitted)

        Returns:
            TargetProgram with instructions in source order

        Raises:
            StructuralModelError: the model is malformed
            DiscriminatorCollision: two instructions share a discriminator
        """
        self.check_structure(program)
        if facts is None:
            facts = RelationshipAnalyzer(self.layout).analyze(program)

        if self.config.unsafe_math:
            logger.warning("unsafe_math is accepted but has no effect on rewritten bodies")

        layouts = {r.name: self.layout.layout_record(r) for r in program.state_records}

        workers = min(self.config.worker_count(), max(1, len(program.instructions)))
        logger.debug("Transforming %d instructions with %d workers", len(program.instructions), workers)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._transform_isolated, program, ix, index, facts, layouts)
                for index, ix in enumerate(program.instructions)
            ]
            instructions = tuple(f.result() for f in futures)

        check_unique((ix.name, ix.discriminator) for ix in instructions)

        return TargetProgram(
            name=program.name,
            program_id=program.program_id,
            config=self.config,
            instructions=instructions,
            records=tuple(self.transform_record(layouts[r.name], facts) for r in program.state_records),
            errors=self.transform_errors(program),
        )

    def check_structure(self, program: Program):
        """Pre-flight checks; anything failing here aborts the run."""
        if not program.name:
            raise StructuralModelError("Program has no name")

        seen = set()
        for ix in program.instructions:
            if not ix.name:
                raise StructuralModelError("Instruction with empty name")
            if ix.name in seen:
                raise StructuralModelError(f"Duplicate instruction '{ix.name}'")
            seen.add(ix.name)

        for group in program.account_groups:
            if not group.name:
                raise StructuralModelError("Accounts struct with empty name")
            names = set()
            for account in group.accounts:
                if not account.name:
                    raise StructuralModelError(f"{group.name}: account with empty name")
                if account.name in names:
                    raise StructuralModelError(f"{group.name}: duplicate account '{account.name}'")
                names.add(account.name)

        for record in program.state_records:
            if not record.name:
                raise StructuralModelError("State struct with empty name")

    # ------------------------------------------------------------------
    # Instructions
    # ------------------------------------------------------------------

    def _transform_isolated(
        self,
        program: Program,
        ix: Instruction,
        index: int,
        facts: FactSet,
        layouts: Dict[str, RecordLayout],
    ) -> TargetInstruction:
        try:
            return self.transform_instruction(program, ix, index, facts, layouts)
        except Exception as e:
            logger.exception("Failed to transform instruction %s", ix.name)
            body = marker("transform", f"{type(e).__name__}: {e}")
            return TargetInstruction(
                name=ix.name,
                discriminator=compute_discriminator(ix.name, index, self.config.anchor_compat),
                args=ix.args,
                body=body,
                issues=tuple(collect_markers(body)),
                failed=True,
            )

    def transform_instruction(
        self,
        program: Program,
        ix: Instruction,
        index: int,
        facts: FactSet,
        layouts: Dict[str, RecordLayout],
    ) -> TargetInstruction:
        """Transform one instruction. Reads only immutable shared state."""
        group = program.get_group(ix.accounts_group)
        if group is None:
            logger.debug("%s: accounts struct %s not found", ix.name, ix.accounts_group)
            declarations: Tuple[AccountDeclaration, ...] = ()
        else:
            declarations = group.accounts

        accounts = [
            self.map_account(decl, i, facts, ix.accounts_group, layouts)
            for i, decl in enumerate(declarations)
        ]
        pdas = [
            pda for pda in (facts.pda_for(decl.name, ix.accounts_group) for decl in declarations)
            if pda is not None
        ]
        ctx = RewriteContext.build(ix.name, accounts, layouts, pdas, self.config)

        validations = self.validations.build(declarations, accounts, ctx)
        result = self.pipeline.run(unwrap_body(ix.body), ctx)

        args = ix.args
        if not args and group is not None:
            args = group.instruction_args

        return TargetInstruction(
            name=ix.name,
            discriminator=compute_discriminator(ix.name, index, self.config.anchor_compat),
            accounts=tuple(accounts),
            args=args,
            validations=tuple(validations),
            body=result.body,
            issues=result.issues,
        )

    def map_account(
        self,
        decl: AccountDeclaration,
        index: int,
        facts: FactSet,
        group: Optional[str] = None,
        layouts: Optional[Dict[str, RecordLayout]] = None,
    ) -> TargetAccount:
        """Map a declaration to a target account slot at `index`."""
        kind = decl.effective_kind
        init = next((c for c in decl.constraints if c.is_init), None)
        pda = facts.pda_for(decl.name, group)
        mint = decl.find(ConstraintKind.TOKEN_MINT)
        authority = decl.find(ConstraintKind.TOKEN_AUTHORITY)

        state_type = None
        if kind == AccountKind.ACCOUNT and decl.inner and decl.inner in (layouts or {}):
            state_type = decl.inner

        return TargetAccount(
            name=decl.name,
            index=index,
            kind=kind,
            is_signer=kind == AccountKind.SIGNER,
            is_writable=decl.has(ConstraintKind.MUT) or init is not None,
            is_pda=pda is not None,
            seeds=pda.seeds if pda else (),
            bump=pda.bump_source if pda else None,
            is_init=init is not None,
            payer=init.payer if init else None,
            token_mint=mint.value if mint else None,
            token_authority=authority.value if authority else None,
            state_type=state_type,
        )

    # ------------------------------------------------------------------
    # Records and errors
    # ------------------------------------------------------------------

    def transform_record(self, layout: RecordLayout, facts: FactSet) -> TargetStateRecord:
        """A sequence field becomes its backing array plus a length counter field."""
        fields: List[TargetField] = []
        for f in layout.fields:
            if f.is_sequence:
                fields.extend(self._sequence_fields(f))
            else:
                fields.append(TargetField(name=f.name, ty=f.ty, size=f.size, offset=f.offset))

        size_info = facts.size_for(layout.name)
        if size_info is not None and size_info.size != layout.size:
            logger.warning(
                "%s: analyzed size %d differs from layout size %d",
                layout.name, size_info.size, layout.size,
            )

        return TargetStateRecord(
            name=layout.name,
            size=layout.size,
            fields=tuple(fields),
            assumptions=tuple(str(a) for a in layout.assumptions),
        )

    def _sequence_fields(self, f: FieldLayout) -> List[TargetField]:
        desc = parse_type(f.ty)
        element = "u8" if desc.shape == TypeShape.STRING else desc.inner.name
        return [
            TargetField(
                name=f.name,
                ty=f"[{element}; {f.capacity}]",
                size=f.backing_size,
                offset=f.offset,
                bound=f.capacity,
            ),
            TargetField(
                name=length_field_name(f.name),
                ty=counter_type(f.capacity),
                size=f.counter_size,
                offset=f.counter_offset,
            ),
        ]

    def transform_errors(self, program: Program) -> Tuple[TargetError, ...]:
        return tuple(
            TargetError(
                name=e.name,
                code=e.code if e.code is not None else ERROR_CODE_BASE + i,
                msg=e.msg,
            )
            for i, e in enumerate(program.errors)
        )


def transpile(program: Program, config: Optional[TransformConfig] = None) -> TargetProgram:
    """Analyze and transform a program in one call."""
    engine = TransformationEngine(config)
    facts = RelationshipAnalyzer(engine.layout).analyze(program)
    return engine.transform(program, facts)
