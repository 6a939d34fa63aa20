"""Base rewrite pass interface."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..matchers import marker
from .context import RewriteContext


class RewritePass(ABC):
    """
    Base class for all body rewrite passes.

    A pass is a pure function of (body, context). Passes must be idempotent:
    applying one to its own output returns that output unchanged.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def apply(self, body: str, ctx: RewriteContext) -> str:
        pass

    def unresolved(self, fragment: str) -> str:
        """Marker for a fragment this pass could not rewrite."""
        return marker(self.name, fragment)


_passes: Dict[str, RewritePass] = {}


def register_pass(rewrite_pass: RewritePass):
    _passes[rewrite_pass.name] = rewrite_pass


def get_pass(name: str) -> Optional[RewritePass]:
    return _passes.get(name)


def registered_passes() -> List[str]:
    return list(_passes)
