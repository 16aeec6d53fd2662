"""Models describing a request to run part of the test tree."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from testing_manager.models.node import NodeId, TestNode

type RunProfile = Literal["run", "debug", "coverage"]


@dataclass(frozen=True, kw_only=True)
class RunRequest:
    """Nodes to include and exclude, and how to run them.

    An `include` of None means every root of the tree.
    """

    include: Sequence[TestNode] | None = None
    exclude: Sequence[TestNode] = field(default_factory=tuple)
    profile: RunProfile = "run"

    @property
    def coverage(self) -> bool:
        return self.profile == "coverage"

    @property
    def debug(self) -> bool:
        return self.profile == "debug"

    @property
    def method_target(self) -> TestNode | None:
        """The single method explicitly requested, if that is all there is."""
        if self.include is not None and len(self.include) == 1:
            node = self.include[0]
            if NodeId.parse(node.id).is_method:
                return node
        return None
