"""Coverage data produced for a run."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from testing_manager.models.node import ResourceUri, TestNode


@dataclass(frozen=True, kw_only=True)
class CoverageCount:
    """Covered out of total."""

    covered: int
    total: int


@dataclass(frozen=True, kw_only=True)
class MethodMarker:
    """First compiled line of a method."""

    line: int
    method: str


@dataclass(frozen=True, kw_only=True)
class StatementCoverage:
    """Coverage of one executable source line (1-based)."""

    line: int
    covered: bool


@dataclass(frozen=True, kw_only=True)
class DeclarationCoverage:
    """A method declaration spanning `start_line`..`end_line` inclusive.

    `end_line` is None when the method runs to the end of the file.
    """

    name: str
    start_line: int
    end_line: int | None
    covered: bool


@dataclass(frozen=True, kw_only=True)
class CoverageDetail:
    """Line and method coverage of one code unit."""

    executable_lines: bytes
    covered_lines: bytes
    statements: Sequence[StatementCoverage]
    declarations: Sequence[DeclarationCoverage]


class DetailLoader(Protocol):
    """Capability that fetches the detailed coverage of a code unit."""

    async def __call__(
        self, record: "CoverageRecord", for_test: TestNode | None = None
    ) -> CoverageDetail:
        """Load detail for `record`, optionally scoped to one test node."""
        ...


@dataclass(frozen=True, kw_only=True)
class CoverageRecord:
    """Aggregate coverage of one compiled code unit in one coverage run."""

    uri: ResourceUri
    code_unit: str
    coverage_index: int
    statement_coverage: CoverageCount
    declaration_coverage: CoverageCount
    includes_tests: Sequence[TestNode] = field(default_factory=tuple)
    detail_loader: DetailLoader | None = field(default=None, repr=False, compare=False)

    async def load_details(self, for_test: TestNode | None = None) -> CoverageDetail | None:
        """Load line and method detail, or None when no loader is attached."""
        if self.detail_loader is None:
            return None
        return await self.detail_loader(self, for_test)
