"""Models for test execution results."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

type TestStatus = Literal["passed", "failed", "errored", "skipped"]


@dataclass(frozen=True, kw_only=True)
class TestResult:
    """Outcome of a single test node within a run.

    Contains only execution outcome - the caller knows the run context.
    """

    __test__ = False

    node_id: str
    status: TestStatus
    duration_ms: float | None = None
    messages: Sequence[str] = field(default_factory=tuple)
