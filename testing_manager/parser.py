"""Parser for the line protocol printed by the server-side test manager.

The test manager reports progress as indented text::

        Pkg.MyTest begins ...
          TestSomething begins ...
            LogMessage:Duration of execution: 0.25 sec.
    AssertEquals:values differ (failed)  <<====
          TestSomething failed
        Pkg.MyTest failed

plus, for coverage runs, a URL of the aggregate coverage viewer carrying the
coverage index. Lines that match nothing are plain output.
"""

import enum
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from testing_manager.session import RunSession

log = logging.getLogger(__name__)

CLASS_BEGIN = re.compile(r"^    ([%\dA-Za-z][\dA-Za-z.]*) begins \.\.\.$")
METHOD_BEGIN = re.compile(r"^      Test([%\dA-Za-z][\dA-Za-z]*).* begins \.\.\.$")
ASSERT_PASSED = re.compile(r"^        (Assert\w+):(.*) \(passed\)$")
ASSERT_FAILED = re.compile(r"^(Assert\w+):(.*) \(failed\)  <<====")
LOG_MESSAGE = re.compile(r"^        LogMessage:(.*)$")
DURATION = re.compile(r"^Duration of execution: (\d*\.\d+) sec\.$")
COVERAGE_INDEX = re.compile(
    r"https?://\S*TestCoverage\.UI\.AggregateResultViewer\.cls\?(?:\S*&)?Index=(\d+)"
)

DEFAULT_FAILURE_MESSAGE = "Failed with no messages"


class ParserPhase(enum.Enum):
    """Nesting level the parser is at."""

    IDLE = "idle"
    IN_CLASS = "in_class"
    IN_METHOD = "in_method"


@dataclass(kw_only=True)
class ParserState:
    """Transient state of one session's parser."""

    class_name: str = ""
    method_name: str = ""
    failure_messages: list[str] = field(default_factory=list)
    duration_ms: float | None = None

    @property
    def phase(self) -> ParserPhase:
        if not self.class_name:
            return ParserPhase.IDLE
        if not self.method_name:
            return ParserPhase.IN_CLASS
        return ParserPhase.IN_METHOD

    def reset_method(self) -> None:
        self.method_name = ""
        self.failure_messages = []
        self.duration_ms = None


@dataclass(kw_only=True)
class ProtocolParser:
    """Turns a session's output lines into test lifecycle events.

    Lines are matched against one nesting level at a time. A class-begin line
    seen inside a class, or a method-begin line seen inside a method, is not
    recognized and stays plain output.
    """

    session: RunSession
    state: ParserState = field(default_factory=ParserState)

    @property
    def phase(self) -> ParserPhase:
        return self.state.phase

    def feed_lines(self, lines: Sequence[str]) -> None:
        for line in lines:
            self.feed(line)

    def feed(self, line: str) -> None:
        """Consume one line of output."""
        self.session.append_output(line)

        if match := COVERAGE_INDEX.search(line):
            self.session.coverage_index = int(match[1])
            log.debug("Captured coverage index %s", self.session.coverage_index)
            return

        match self.phase:
            case ParserPhase.IDLE:
                self._in_idle(line)
            case ParserPhase.IN_CLASS:
                self._in_class(line)
            case ParserPhase.IN_METHOD:
                self._in_method(line)

    def _method_id(self) -> str:
        return f"{self.session.id_prefix}:{self.state.class_name}:Test{self.state.method_name}"

    def _in_idle(self, line: str) -> None:
        if match := CLASS_BEGIN.match(line):
            self.state.class_name = match[1]
            log.debug("Class %s begins", self.state.class_name)

    def _in_class(self, line: str) -> None:
        if line.startswith(f"    {self.state.class_name} "):
            log.debug("Class %s ends", self.state.class_name)
            self.state.class_name = ""
            return

        if match := METHOD_BEGIN.match(line):
            self.state.reset_method()
            self.state.method_name = match[1]
            node = self.session.nodes.get(self._method_id())
            if node is not None:
                self.session.flush_output()
                self.session.recorder.started(node)
            else:
                log.debug("No test node for %s", self._method_id())

    def _in_method(self, line: str) -> None:
        end_prefix = f"      Test{self.state.method_name} "
        if line.startswith(end_prefix):
            self._end_method(line[len(end_prefix):].strip())
            return

        if match := ASSERT_PASSED.match(line):
            log.debug(
                "%s.Test%s %s passed: %s",
                self.state.class_name,
                self.state.method_name,
                match[1],
                match[2],
            )
        elif match := ASSERT_FAILED.match(line):
            log.debug(
                "%s.Test%s %s failed: %s",
                self.state.class_name,
                self.state.method_name,
                match[1],
                match[2],
            )
            self.state.failure_messages.append(match[2])
        elif match := LOG_MESSAGE.match(line):
            if duration := DURATION.match(match[1]):
                self.state.duration_ms = float(duration[1]) * 1000

    def _end_method(self, outcome: str) -> None:
        log.debug(
            "Class %s, method Test%s, outcome=%s",
            self.state.class_name,
            self.state.method_name,
            outcome,
        )
        node = self.session.nodes.get(self._method_id())
        if node is not None:
            recorder = self.session.recorder
            match outcome:
                case "passed":
                    self.session.flush_output()
                    recorder.passed(node, self.state.duration_ms)
                case "failed":
                    self.session.flush_output()
                    recorder.failed(
                        node,
                        self.state.failure_messages or [DEFAULT_FAILURE_MESSAGE],
                        self.state.duration_ms,
                    )
                case _:
                    pass
        self.state.reset_method()
