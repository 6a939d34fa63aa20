"""Per-instruction context handed to every rewrite pass."""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

from ..analysis.models import PdaInfo
from ..config import TransformConfig
from ..layout.engine import RecordLayout, counter_type, length_field_name
from ..matchers import SourceText
from ..transform.models import TargetAccount

_ALIAS_RE = re.compile(
    r"\blet\s+(?:mut\s+)?(\w+)\s*=\s*(?:&\s*(?:mut\s+)?)?(?:ctx\s*\.\s*accounts\s*\.\s*)?(\w+)\s*;"
)


@dataclass(frozen=True)
class SequenceField:
    """A bounded sequence reachable from the body."""
    owner: Optional[str]  # Account holding the record; None for locals
    name: str
    capacity: int
    counter_type: str

    @property
    def length_name(self) -> str:
        return length_field_name(self.name)


@dataclass(frozen=True)
class StateBinding:
    """A state-holding account and the record fields it exposes."""
    account: str
    record: str
    fields: Tuple[str, ...]

    @property
    def handle(self) -> str:
        """Name of the local the record is deserialized into."""
        return f"{self.account}_state"


@dataclass(frozen=True)
class RewriteContext:
    """Everything a pass may consult about the instruction being rewritten."""
    instruction: str
    accounts: Tuple[TargetAccount, ...] = ()
    states: Tuple[StateBinding, ...] = ()
    sequences: Tuple[SequenceField, ...] = ()
    pdas: Tuple[PdaInfo, ...] = ()
    config: TransformConfig = field(default_factory=TransformConfig)

    @classmethod
    def build(
        cls,
        instruction: str,
        accounts: Sequence[TargetAccount],
        layouts: Dict[str, RecordLayout],
        pdas: Sequence[PdaInfo] = (),
        config: Optional[TransformConfig] = None,
    ) -> "RewriteContext":
        """Derive state bindings and sequences from the accounts' record layouts."""
        states = []
        sequences = []
        for account in accounts:
            layout = layouts.get(account.state_type) if account.state_type else None
            if layout is None:
                continue

            names = []
            for f in layout.fields:
                names.append(f.name)
                if f.is_sequence:
                    names.append(length_field_name(f.name))
                    sequences.append(SequenceField(
                        owner=account.name,
                        name=f.name,
                        capacity=f.capacity,
                        counter_type=counter_type(f.capacity),
                    ))
            states.append(StateBinding(account.name, layout.name, tuple(names)))

        return cls(
            instruction=instruction,
            accounts=tuple(accounts),
            states=tuple(states),
            sequences=tuple(sequences),
            pdas=tuple(pdas),
            config=config or TransformConfig(),
        )

    def get_account(self, name: str) -> Optional[TargetAccount]:
        for account in self.accounts:
            if account.name == name:
                return account
        return None

    def pda_for(self, name: str) -> Optional[PdaInfo]:
        for pda in self.pdas:
            if pda.account_name == name:
                return pda
        return None

    def state_for(self, account: str) -> Optional[StateBinding]:
        for state in self.states:
            if state.account == account:
                return state
        return None

    def sequence_for(self, owner: str, name: str) -> Optional[SequenceField]:
        for sequence in self.sequences:
            if sequence.owner == owner and sequence.name == name:
                return sequence
        return None

    def resolve_owner(self, name: str, aliases: Dict[str, str]) -> Optional[str]:
        """Account behind a receiver name: the account itself, an alias or a state handle."""
        name = aliases.get(name, name)
        if name.endswith("_state") and self.state_for(name[:-len("_state")]):
            name = name[:-len("_state")]
        return name if self.get_account(name) else None


def account_aliases(body: str, ctx: RewriteContext) -> Dict[str, str]:
    """Map `let alias = &mut account;` locals to the account they alias."""
    aliases = {}
    for m in SourceText(body).finditer(_ALIAS_RE):
        alias, target = m.group(1), m.group(2)
        if ctx.get_account(target) is not None:
            aliases[alias] = target
    return aliases
